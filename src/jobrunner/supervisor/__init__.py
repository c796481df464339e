"""Supervisor boundary: who actually keeps jr's jobs alive."""

from jobrunner.supervisor.base import Supervisor, UnitStatus
from jobrunner.supervisor.systemd import SystemdSupervisor

__all__ = ["Supervisor", "SystemdSupervisor", "UnitStatus"]
