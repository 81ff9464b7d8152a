"""
Update-check models — per-binary version drift and the persisted
check state (``state.json``).
"""

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, Field, model_validator


class UpdateInfo(BaseModel):
    """Installed vs. latest version of one binary."""

    name: str
    installed_version: Optional[str] = None
    latest_version: Optional[str] = None
    has_update: bool = False

    @classmethod
    def compare(
        cls,
        name: str,
        installed: Optional[str],
        latest: Optional[str],
    ) -> UpdateInfo:
        """Build an entry; ``has_update`` needs both versions and plain string inequality."""
        return cls(
            name=name,
            installed_version=installed,
            latest_version=latest,
            has_update=bool(installed and latest and installed != latest),
        )


class CheckState(BaseModel):
    """Root of the persisted update-check state."""

    last_check: int = 0  # epoch seconds
    update_info: dict[str, UpdateInfo] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def _fill_names(cls, data: Any) -> Any:
        """Entries are keyed by name on disk; the name field itself is optional there."""
        if isinstance(data, dict) and isinstance(data.get("update_info"), dict):
            info = {}
            for name, entry in data["update_info"].items():
                if isinstance(entry, dict):
                    entry = {"name": name, **entry}
                info[name] = entry
            data = {**data, "update_info": info}
        return data
