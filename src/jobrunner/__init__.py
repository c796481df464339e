"""jr - Job Runner: long-running jobs as systemd user units.

Jobs survive SSH disconnects and can be inspected, stopped, and pruned
from any later session through a small SQLite registry.
"""

__version__ = "0.3.0"

__all__ = ["__version__"]
