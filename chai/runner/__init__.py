"""Claude CLI process management and its line protocol."""

from chai.runner.permissions import PermissionCorrelator
from chai.runner.supervisor import ProcessSupervisor

__all__ = ["PermissionCorrelator", "ProcessSupervisor"]
