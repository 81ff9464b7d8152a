"""
Environment health — can gobelt actually install and find binaries?

Three probes, each producing a ComponentHealth:

    go        the Go toolchain (or goenv-managed Go) runs and reports a version
    gobin     the directory ``go install`` writes to is on PATH
    binaries  every registered binary resolves on PATH

The report's overall status is its worst component.  ``unknown`` (e.g.
GOBIN not created yet) never drags the report down on its own.
"""

from __future__ import annotations

import logging
import os
import time
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path
from typing import Any, Mapping

from gobelt.core.models.settings import Settings
from gobelt.core.services import go_tool
from gobelt.core.services.registry import BinaryRegistry

logger = logging.getLogger(__name__)


class HealthStatus(StrEnum):
    HEALTHY = "healthy"
    UNKNOWN = "unknown"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"

    @property
    def severity(self) -> int:
        return _SEVERITY[self]


_SEVERITY = {
    HealthStatus.HEALTHY: 0,
    HealthStatus.UNKNOWN: 0,
    HealthStatus.DEGRADED: 1,
    HealthStatus.UNHEALTHY: 2,
}


@dataclass
class ComponentHealth:
    """Result of one probe."""

    name: str
    status: HealthStatus = HealthStatus.UNKNOWN
    message: str = ""
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "status": self.status.value,
            "message": self.message,
            "details": self.details,
        }


@dataclass
class HealthReport:
    """All probe results plus when they were taken."""

    components: list[ComponentHealth] = field(default_factory=list)
    checked_at: float = field(default_factory=time.time)

    @property
    def status(self) -> HealthStatus:
        worst = HealthStatus.HEALTHY
        for component in self.components:
            if component.status.severity > worst.severity:
                worst = component.status
        return worst

    def add(self, component: ComponentHealth) -> None:
        self.components.append(component)

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "checked_at": self.checked_at,
            "components": [c.to_dict() for c in self.components],
        }


# ── Probes ──────────────────────────────────────────────────────


def check_go(go_cmd: list[str]) -> ComponentHealth:
    """Go must be runnable for installs and update checks."""
    details = {"command": list(go_cmd)}
    version = go_tool.go_version(go_cmd)
    if version:
        via = " (via goenv)" if go_cmd[0] == "goenv" else ""
        return ComponentHealth("go", HealthStatus.HEALTHY, f"{version}{via}", details)

    if go_tool.go_available(go_cmd):
        message = f"{go_cmd[0]} found but no Go version reported"
    else:
        message = "Go not found — install from https://go.dev/dl/"
    return ComponentHealth("go", HealthStatus.UNHEALTHY, message, details)


def resolve_gobin(env: Mapping[str, str] | None = None) -> Path:
    """Where ``go install`` puts binaries: $GOBIN, $GOPATH/bin, ~/go/bin."""
    env = os.environ if env is None else env
    if env.get("GOBIN"):
        return Path(env["GOBIN"])
    if env.get("GOPATH"):
        # GOPATH may be a list; go install uses the first entry
        return Path(env["GOPATH"].split(os.pathsep)[0]) / "bin"
    return Path.home() / "go" / "bin"


def check_gobin(env: Mapping[str, str] | None = None) -> ComponentHealth:
    """Installed binaries are only found if GOBIN is on PATH."""
    env = os.environ if env is None else env
    gobin = resolve_gobin(env)
    details = {"path": str(gobin)}

    if not gobin.is_dir():
        return ComponentHealth(
            "gobin", HealthStatus.UNKNOWN,
            f"GOBIN directory does not exist yet: {gobin}", details,
        )

    on_path = gobin in (Path(p) for p in env.get("PATH", "").split(os.pathsep) if p)
    if on_path:
        return ComponentHealth("gobin", HealthStatus.HEALTHY, f"GOBIN in PATH: {gobin}", details)
    return ComponentHealth(
        "gobin", HealthStatus.DEGRADED,
        f'GOBIN exists but is not in PATH: add export PATH="{gobin}:$PATH"', details,
    )


def check_binaries(registry: BinaryRegistry) -> ComponentHealth:
    """Every registered binary should be installed."""
    binaries = registry.binaries()
    if not binaries:
        return ComponentHealth("binaries", HealthStatus.HEALTHY, "No binaries registered")

    details: dict[str, Any] = {}
    for name, binary in binaries.items():
        installed = registry.is_installed(name)
        details[name] = {
            "status": "installed" if installed else "missing",
            "tags": list(binary.tags),
            "hint": None if installed else f"gobelt install {name}",
        }

    missing = [name for name, d in details.items() if d["status"] == "missing"]
    if missing:
        return ComponentHealth(
            "binaries", HealthStatus.DEGRADED,
            f"{len(missing)}/{len(binaries)} missing: {', '.join(missing)}", details,
        )
    return ComponentHealth(
        "binaries", HealthStatus.HEALTHY,
        f"All {len(binaries)} binary(ies) installed", details,
    )


def check_system_health(settings: Settings, registry: BinaryRegistry) -> HealthReport:
    """Run every probe against the current environment."""
    report = HealthReport()
    report.add(check_go(settings.go_cmd))
    report.add(check_gobin())
    report.add(check_binaries(registry))
    logger.debug("Health: %s", report.status.value)
    return report
