"""
BinaryEntry — a Go binary managed by gobelt.

Entries are owned by the registry. The runner and checker hold
references to them for the lifetime of a task but never mutate them.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Optional


@dataclass
class BinaryEntry:
    """A registered binary: executable name + Go module path."""

    name: str
    source: str  # module path without @version
    tags: list[str] = field(default_factory=list)
    on_complete: Optional[Callable[[bool], None]] = None

    @property
    def install_target(self) -> str:
        """Argument passed to ``go install``."""
        return f"{self.source}@latest"

    def merge(self, other: BinaryEntry) -> None:
        """Fold a re-registration of the same name into this entry."""
        self.source = other.source
        for tag in other.tags:
            if tag not in self.tags:
                self.tags.append(tag)
        if other.on_complete is not None:
            self.on_complete = other.on_complete

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "source": self.source,
            "tags": list(self.tags),
        }
