"""
Update checker — compares installed binaries against the module proxy.

For every registered binary two lookups run in parallel:

    installed  go version -m <path>               → "mod <module> vX.Y.Z"
    latest     go list -m -json <module>@latest   → {"Version": "vX.Y.Z"}

Lookups run on a thread pool sized to the number of lookups (no cap:
they are cheap metadata queries).  Each result is posted back to the
Dispatcher, where a countdown of ``2 × binaries`` gates finalisation
so it runs exactly once, after every lookup has resolved.

Finalisation persists ``{last_check, update_info}`` to the state file
and, when auto-update is on, hands the outdated binaries to the runner.
A failed lookup degrades that field to ``None``; it never fails the check.
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import Path
from typing import Callable

from gobelt.core.models.binary import BinaryEntry
from gobelt.core.models.settings import AutoCheckConfig, AutoUpdateConfig
from gobelt.core.models.update import CheckState, UpdateInfo
from gobelt.core.persistence.state_file import load_state, save_state
from gobelt.core.services import go_tool
from gobelt.core.services.dispatcher import Dispatcher
from gobelt.core.services.event_bus import EventBus
from gobelt.core.services.registry import BinaryRegistry
from gobelt.core.services.runner import TaskRunner

logger = logging.getLogger(__name__)

_INSTALLED = "installed"
_LATEST = "latest"


class UpdateChecker:
    """Asynchronous version-drift detection with a persisted cache."""

    def __init__(
        self,
        registry: BinaryRegistry,
        bus: EventBus,
        dispatcher: Dispatcher,
        runner: TaskRunner,
        *,
        go_cmd: list[str],
        state_path: Path,
        auto_check: AutoCheckConfig | None = None,
        auto_update: AutoUpdateConfig | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._registry = registry
        self._bus = bus
        self._dispatcher = dispatcher
        self._runner = runner
        self._go_cmd = list(go_cmd)
        self._state_path = state_path
        self._auto_check = auto_check or AutoCheckConfig()
        self._auto_update = auto_update or AutoUpdateConfig()
        self._clock = clock

        self._update_info: dict[str, UpdateInfo] = {}
        self._last_check = 0
        self._checking = False
        self._idle = threading.Event()
        self._idle.set()

        # Per-check scratch state (dispatcher thread only)
        self._generation = 0
        self._remaining = 0
        self._partial: dict[str, dict[str, str | None]] = {}
        self._results: dict[str, UpdateInfo] = {}
        self._silent = False

    @property
    def state_path(self) -> Path:
        return self._state_path

    # ── Entry points ────────────────────────────────────────────

    def check(self, silent: bool = False) -> None:
        """Start a check.  Returns immediately; completion is a ``checker:done`` event."""
        self._dispatcher.post(self._check, silent)

    def auto_check(self) -> bool:
        """Check if the configured frequency has elapsed since the last check.

        Cached results from the state file are loaded first, so they are
        available even while a fresh check is still in flight.

        Returns:
            True if a check was started.
        """
        state = load_state(self._state_path)
        self._dispatcher.post(self._load_cached, state)

        if not self._auto_check.enabled:
            logger.debug("Auto-check disabled")
            return False

        elapsed = int(self._clock()) - state.last_check
        frequency = self._auto_check.frequency_seconds
        if elapsed < frequency:
            logger.debug("Last check %ds ago (< %ds) — skipping", elapsed, frequency)
            return False

        self.check(silent=True)
        return True

    # ── Queries ─────────────────────────────────────────────────

    def get_update_info(self) -> dict[str, UpdateInfo]:
        return dict(self._update_info)

    def updates_available(self) -> list[str]:
        return [name for name, info in self._update_info.items() if info.has_update]

    @property
    def last_check(self) -> int:
        return self._last_check

    def is_checking(self) -> bool:
        return self._checking

    def wait(self, timeout: float | None = None) -> bool:
        """Block until no check is in flight.  False on timeout."""
        deadline = None if timeout is None else time.monotonic() + timeout
        if not self._dispatcher.flush(timeout):
            return False
        remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
        return self._idle.wait(remaining)

    # ── Dispatcher side ─────────────────────────────────────────

    def _load_cached(self, state: CheckState) -> None:
        merged = dict(self._update_info)
        merged.update(state.update_info)
        self._update_info = merged
        self._last_check = max(self._last_check, state.last_check)
        self._bus.publish("checker:cache", data={"count": len(state.update_info)})

    def _check(self, silent: bool) -> None:
        binaries = self._registry.binaries()
        if not binaries:
            if not silent:
                self._bus.notice("No binaries registered", "info")
            return

        if self._checking:
            if not silent:
                self._bus.notice("Already checking for updates", "warning")
            return

        self._checking = True
        self._idle.clear()
        self._generation += 1
        self._silent = silent
        self._remaining = 2 * len(binaries)
        self._partial = {name: {} for name in binaries}
        self._results = {}

        if not silent:
            self._bus.notice(f"Checking {len(binaries)} binary(ies) for updates…", "info")
        self._bus.publish("checker:start", data={"names": list(binaries)})

        pool = ThreadPoolExecutor(
            max_workers=self._remaining,
            thread_name_prefix="gobelt-check",
        )
        try:
            for name, binary in binaries.items():
                self._submit(pool, name, _INSTALLED, self._installed_version, binary)
                self._submit(pool, name, _LATEST, go_tool.query_latest_version, self._go_cmd, binary.source)
        except Exception as e:
            # Lookups already submitted report under a stale generation
            logger.exception("Could not start update check")
            self._generation += 1
            self._checking = False
            self._bus.notice(f"Update check failed: {e}", "error")
            self._idle.set()
        finally:
            pool.shutdown(wait=False)

    def _submit(self, pool: ThreadPoolExecutor, name: str, kind: str, fn, *args) -> None:
        generation = self._generation
        future = pool.submit(fn, *args)

        def _done(f: Future) -> None:
            try:
                value = f.result()
            except Exception:
                logger.exception("%s lookup for %s failed", kind, name)
                value = None
            self._dispatcher.post(self._on_lookup, generation, name, kind, value)

        future.add_done_callback(_done)

    def _installed_version(self, binary: BinaryEntry) -> str | None:
        path = self._registry.resolve_path(binary.name)
        return go_tool.query_installed_version(self._go_cmd, path, binary.source)

    def _on_lookup(self, generation: int, name: str, kind: str, value: str | None) -> None:
        if generation != self._generation:
            logger.debug("Dropping stale %s lookup for %s", kind, name)
            return
        partial = self._partial.setdefault(name, {})
        partial[kind] = value

        if _INSTALLED in partial and _LATEST in partial:
            info = UpdateInfo.compare(name, partial[_INSTALLED], partial[_LATEST])
            self._results[name] = info
            logger.debug(
                "%s: installed=%s latest=%s update=%s",
                name, info.installed_version, info.latest_version, info.has_update,
            )
            self._bus.publish("checker:binary", key=name, data=info.model_dump(mode="json"))

        self._remaining -= 1
        if self._remaining == 0:
            self._finalize()

    def _finalize(self) -> None:
        now = int(self._clock())
        # Registration order, not completion order
        results = {name: self._results[name] for name in self._partial if name in self._results}
        self._update_info = dict(results)
        self._last_check = now

        try:
            save_state(CheckState(last_check=now, update_info=results), self._state_path)
        except Exception as e:
            logger.error("Update check results not persisted: %s", e)

        updates = [name for name, info in results.items() if info.has_update]
        self._checking = False

        if updates and self._auto_update.enabled and self._auto_check.enabled:
            self._bus.notice(f"Auto-updating {len(updates)} binary(ies)…", "info")
            self._runner.update(updates)
        elif updates:
            self._bus.notice(
                f"{len(updates)} update(s) available — run `gobelt update`", "info",
            )
        elif not self._silent:
            self._bus.notice("All binaries up to date", "info")

        self._bus.publish(
            "checker:done",
            data={"updates": updates, "last_check": now},
        )
        self._idle.set()
