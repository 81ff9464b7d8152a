"""
Binary registry — name → BinaryEntry.

Populated from gobelt.yml at startup and by callers that register
binaries programmatically.  The runner and checker only read from it.

Installed-ness is decided by PATH lookup, exactly like a shell would:
a binary is "installed" when ``shutil.which(name)`` finds it.  The
``search_path`` argument narrows that lookup (tests point it at a
temp GOBIN).
"""

from __future__ import annotations

import logging
import shutil
import threading
from typing import Callable, Iterable, Optional

from gobelt.core.models.binary import BinaryEntry
from gobelt.core.models.settings import BinarySpec

logger = logging.getLogger(__name__)


class BinaryRegistry:
    """Registered binaries, keyed by executable name."""

    def __init__(self, search_path: str | None = None) -> None:
        self._lock = threading.Lock()
        self._binaries: dict[str, BinaryEntry] = {}
        self._search_path = search_path

    @classmethod
    def from_specs(
        cls,
        specs: Iterable[BinarySpec],
        search_path: str | None = None,
    ) -> BinaryRegistry:
        registry = cls(search_path=search_path)
        for spec in specs:
            registry.register(spec.name, spec.source, tags=spec.tags)
        return registry

    def register(
        self,
        name: str,
        source: str,
        *,
        tags: Iterable[str] | None = None,
        on_complete: Optional[Callable[[bool], None]] = None,
    ) -> BinaryEntry:
        """Register a binary; re-registering merges tags and callback."""
        entry = BinaryEntry(
            name=name,
            source=source,
            tags=list(tags or []),
            on_complete=on_complete,
        )
        with self._lock:
            existing = self._binaries.get(name)
            if existing is None:
                self._binaries[name] = entry
                logger.debug("Registered %s → %s", name, source)
                return entry
            existing.merge(entry)
            logger.debug("Merged registration for %s (tags=%s)", name, existing.tags)
            return existing

    def unregister(self, name: str) -> bool:
        with self._lock:
            return self._binaries.pop(name, None) is not None

    def get(self, name: str) -> BinaryEntry | None:
        with self._lock:
            return self._binaries.get(name)

    def binaries(self) -> dict[str, BinaryEntry]:
        """Snapshot of all entries, in registration order."""
        with self._lock:
            return dict(self._binaries)

    def names(self) -> list[str]:
        with self._lock:
            return list(self._binaries)

    def __len__(self) -> int:
        with self._lock:
            return len(self._binaries)

    def __contains__(self, name: object) -> bool:
        with self._lock:
            return name in self._binaries

    # ── Filesystem ──────────────────────────────────────────────

    def resolve_path(self, name: str) -> str | None:
        """Absolute path of the executable, or None if not on PATH."""
        return shutil.which(name, path=self._search_path)

    def is_installed(self, name: str) -> bool:
        return self.resolve_path(name) is not None

    def status(self, name: str) -> str:
        """``installed``, ``missing`` or ``unknown`` (not registered)."""
        if name not in self:
            return "unknown"
        return "installed" if self.is_installed(name) else "missing"
