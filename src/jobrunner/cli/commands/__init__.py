# jobrunner/cli/commands: Command modules for the jr CLI.
#
# Each module in this package provides one or more CLI commands.

from .doctor import doctor
from .logs import logs
from .manage import prune, rm, stop
from .run import run, start
from .status import list_jobs, status

__all__ = [
    # doctor.py
    "doctor",
    # logs.py
    "logs",
    # manage.py
    "stop",
    "rm",
    "prune",
    # run.py
    "run",
    "start",
    # status.py
    "status",
    "list_jobs",
]
