"""Process control and supervision for the deployed application."""

from binarydeploy.process.controller import PosixProcessController, ProcessController
from binarydeploy.process.supervisor import (
    GROUP_TERM_GRACE,
    KILL_WAIT,
    TERM_GRACE,
    ManagedProcess,
    ProcessSupervisor,
)

__all__ = [
    "ProcessController",
    "PosixProcessController",
    "ProcessSupervisor",
    "ManagedProcess",
    "GROUP_TERM_GRACE",
    "TERM_GRACE",
    "KILL_WAIT",
]
