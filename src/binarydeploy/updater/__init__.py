"""Self-update of the agent's own executable.

The agent can rebuild itself from its repository and swap its executable on
disk. It:
- Backs up the live binary before anything destructive happens
- Builds and verifies the new binary
- Replaces the live binary with an atomic rename
- Rolls back from the backup if the installed binary is unusable
"""

from binarydeploy.updater.engine import (
    BACKUP_SUFFIX,
    SelfUpdateEngine,
    SelfUpdateResult,
)

__all__ = [
    "BACKUP_SUFFIX",
    "SelfUpdateEngine",
    "SelfUpdateResult",
]
