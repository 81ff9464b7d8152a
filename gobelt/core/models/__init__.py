"""
Domain models for gobelt.

All models are re-exported here for convenient access:

    from gobelt.core.models import BinaryEntry, Task, TaskState, UpdateInfo, Settings
"""

from gobelt.core.models.binary import BinaryEntry
from gobelt.core.models.settings import (
    AutoCheckConfig,
    AutoUpdateConfig,
    BinarySpec,
    Settings,
)
from gobelt.core.models.task import RunnerStats, Task, TaskMode, TaskState
from gobelt.core.models.update import CheckState, UpdateInfo

__all__ = [
    "AutoCheckConfig",
    "AutoUpdateConfig",
    # binary.py
    "BinaryEntry",
    "BinarySpec",
    # update.py
    "CheckState",
    # task.py
    "RunnerStats",
    # settings.py
    "Settings",
    "Task",
    "TaskMode",
    "TaskState",
    "UpdateInfo",
]
