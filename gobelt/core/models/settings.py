"""
Settings model — loaded from gobelt.yml.

Everything has a default, so an absent config file yields a usable
(empty-registry) configuration.
"""

from __future__ import annotations

from typing import Optional, Union

from pydantic import BaseModel, Field, field_validator

FREQUENCY_SECONDS = {
    "daily": 86400,
    "weekly": 604800,
}


class AutoCheckConfig(BaseModel):
    """When to re-check for updates automatically."""

    enabled: bool = True
    frequency: Union[str, float] = "daily"  # daily, weekly, or hours

    @field_validator("frequency")
    @classmethod
    def _valid_frequency(cls, value: Union[str, float]) -> Union[str, float]:
        if isinstance(value, str):
            if value not in FREQUENCY_SECONDS:
                raise ValueError(
                    f"frequency must be one of {sorted(FREQUENCY_SECONDS)} or a number of hours"
                )
            return value
        if value <= 0:
            raise ValueError("frequency in hours must be positive")
        return value

    @property
    def frequency_seconds(self) -> int:
        if isinstance(self.frequency, str):
            return FREQUENCY_SECONDS.get(self.frequency, FREQUENCY_SECONDS["daily"])
        return int(self.frequency * 3600)


class AutoUpdateConfig(BaseModel):
    """Install updates found by the checker without asking."""

    enabled: bool = False


class BinarySpec(BaseModel):
    """A binary declared in gobelt.yml."""

    name: str
    source: str
    tags: list[str] = Field(default_factory=list)


class Settings(BaseModel):
    """Root configuration."""

    concurrency: int = Field(default=4, ge=1)
    go_cmd: list[str] = Field(default_factory=lambda: ["go"])
    auto_check: AutoCheckConfig = Field(default_factory=AutoCheckConfig)
    auto_update: AutoUpdateConfig = Field(default_factory=AutoUpdateConfig)
    state_file: Optional[str] = None
    binaries: list[BinarySpec] = Field(default_factory=list)

    @field_validator("go_cmd")
    @classmethod
    def _non_empty_cmd(cls, value: list[str]) -> list[str]:
        if not value or not value[0]:
            raise ValueError("go_cmd must name an executable")
        return value
