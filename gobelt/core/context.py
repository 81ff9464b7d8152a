"""
Application context — the one place the runtime objects are wired.

Entry points build a single AppContext and pass it around; nothing in
gobelt keeps runner or checker state in module globals:

    - CLI:    main.py  → build_context(load_settings(...))
    - Tests:  build_context(Settings(...), search_path=str(tmp_bin))
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from gobelt.core.config.loader import state_path
from gobelt.core.models.settings import Settings
from gobelt.core.services.checker import UpdateChecker
from gobelt.core.services.dispatcher import Dispatcher
from gobelt.core.services.event_bus import EventBus
from gobelt.core.services.registry import BinaryRegistry
from gobelt.core.services.runner import TaskRunner


@dataclass
class AppContext:
    settings: Settings
    registry: BinaryRegistry
    bus: EventBus
    dispatcher: Dispatcher
    runner: TaskRunner
    checker: UpdateChecker

    def close(self) -> None:
        """Stop the dispatcher thread after queued work has run."""
        self.dispatcher.stop()


def build_context(
    settings: Settings,
    *,
    search_path: str | None = None,
    state_file: Path | None = None,
) -> AppContext:
    """Wire registry, bus, dispatcher, runner and checker from settings."""
    registry = BinaryRegistry.from_specs(settings.binaries, search_path=search_path)
    bus = EventBus()
    dispatcher = Dispatcher()
    runner = TaskRunner(
        registry,
        bus,
        dispatcher,
        go_cmd=settings.go_cmd,
        concurrency=settings.concurrency,
    )
    checker = UpdateChecker(
        registry,
        bus,
        dispatcher,
        runner,
        go_cmd=settings.go_cmd,
        state_path=state_file or state_path(settings),
        auto_check=settings.auto_check,
        auto_update=settings.auto_update,
    )
    return AppContext(
        settings=settings,
        registry=registry,
        bus=bus,
        dispatcher=dispatcher,
        runner=runner,
        checker=checker,
    )
