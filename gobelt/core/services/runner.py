"""
Task runner — parallel ``go install`` with a bounded worker pool.

A *batch* is the set of tasks created by one ``request()``.  Only one
batch is active at a time; a request made while a batch is running is
rejected, never queued or merged.

Flow:
    request → filter names → PENDING tasks → schedule → spawn up to
    ``concurrency`` processes → each exit frees a slot → schedule again
    → when nothing is pending or running, the batch is done

Threading
─────────
Public methods post onto the Dispatcher and return immediately.  All
task/batch mutation happens on the dispatcher thread.  Each running
process gets one reader thread that streams its merged stdout/stderr;
the reader only posts ``_on_output`` / ``_on_exit`` callbacks.

Outcomes are reported on the EventBus: user-facing messages as
``notice`` events, state changes as ``runner:*`` events.
"""

from __future__ import annotations

import logging
import os
import signal
import subprocess
import threading
import time
from typing import Iterable

from gobelt.core.models.binary import BinaryEntry
from gobelt.core.models.task import RunnerStats, Task, TaskMode, TaskState
from gobelt.core.services import go_tool
from gobelt.core.services.dispatcher import Dispatcher
from gobelt.core.services.event_bus import EventBus
from gobelt.core.services.registry import BinaryRegistry

logger = logging.getLogger(__name__)

ABORT_MESSAGE = "Aborted by user"


class TaskRunner:
    """Runs install/update batches with at most ``concurrency`` processes."""

    def __init__(
        self,
        registry: BinaryRegistry,
        bus: EventBus,
        dispatcher: Dispatcher,
        *,
        go_cmd: list[str],
        concurrency: int = 4,
    ) -> None:
        if concurrency < 1:
            raise ValueError(f"concurrency must be >= 1, got {concurrency}")
        self._registry = registry
        self._bus = bus
        self._dispatcher = dispatcher
        self._go_cmd = list(go_cmd)
        self._concurrency = concurrency

        self._tasks: list[Task] = []
        self._running = False
        self._idle = threading.Event()
        self._idle.set()

    @property
    def concurrency(self) -> int:
        return self._concurrency

    # ── Requests ────────────────────────────────────────────────

    def request(self, names: Iterable[str], mode: TaskMode | str) -> None:
        """Start a batch for ``names``.  Returns immediately."""
        self._dispatcher.post(self._request, list(names), TaskMode(mode))

    def install(self, names: Iterable[str]) -> None:
        self.request(names, TaskMode.INSTALL)

    def update(self, names: Iterable[str]) -> None:
        self.request(names, TaskMode.UPDATE)

    def update_all(self) -> None:
        self.request(self._registry.names(), TaskMode.UPDATE)

    def install_missing(self) -> None:
        """Install every registered binary that is not on PATH."""
        missing = [
            name for name in self._registry.names()
            if not self._registry.is_installed(name)
        ]
        if not missing:
            self._bus.notice("All binaries already installed", "info")
            return
        self.request(missing, TaskMode.INSTALL)

    def abort(self) -> None:
        """Kill running processes and end the batch.  Pending tasks stay pending."""
        self._dispatcher.post(self._abort)

    # ── Queries ─────────────────────────────────────────────────

    def tasks(self) -> list[Task]:
        """Current batch, in request order."""
        return list(self._tasks)

    def stats(self) -> RunnerStats:
        return RunnerStats.from_tasks(self.tasks())

    def is_running(self) -> bool:
        return self._running

    def wait(self, timeout: float | None = None) -> bool:
        """Block until no batch is running.  False on timeout.

        Requests posted before this call are accounted for, so
        ``request(); wait()`` waits for that request's batch.
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        if not self._dispatcher.flush(timeout):
            return False
        remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
        return self._idle.wait(remaining)

    # ── Dispatcher side ─────────────────────────────────────────

    def _request(self, names: list[str], mode: TaskMode) -> None:
        if self._running:
            self._bus.notice(
                "Tasks already running. Wait or abort first.",
                "warning",
            )
            return

        if not go_tool.go_available(self._go_cmd):
            self._bus.notice(
                "Go is not installed. Please install Go first: https://go.dev/dl/",
                "error",
            )
            return

        selected: list[BinaryEntry] = []
        seen: set[str] = set()
        for name in names:
            if name in seen:
                continue
            seen.add(name)

            binary = self._registry.get(name)
            if binary is None:
                self._bus.notice(f"Unknown binary: {name}", "warning")
                continue
            if mode is TaskMode.INSTALL and self._registry.is_installed(name):
                logger.debug("Skipping %s — already installed", name)
                continue
            selected.append(binary)

        if not selected:
            if mode is TaskMode.INSTALL:
                self._bus.notice("All binaries already installed", "info")
            return

        self._tasks = [Task(binary=b) for b in selected]
        self._running = True
        self._idle.clear()
        logger.info(
            "Starting %s batch: %s (concurrency=%d)",
            mode.value, ", ".join(b.name for b in selected), self._concurrency,
        )
        self._bus.publish(
            "runner:batch",
            data={"mode": mode.value, "names": [b.name for b in selected]},
        )
        self._schedule()

    def _schedule(self) -> None:
        """Fill free slots from the pending queue, then check for batch end."""
        running = sum(1 for t in self._tasks if t.state is TaskState.RUNNING)
        for task in self._tasks:
            if running >= self._concurrency:
                break
            if task.state is not TaskState.PENDING:
                continue
            if self._start(task):
                running += 1

        if self._running and not any(
            t.state in (TaskState.PENDING, TaskState.RUNNING) for t in self._tasks
        ):
            self._running = False
            self._idle.set()
            stats = self.stats()
            logger.info(
                "Batch complete: %d done, %d failed", stats.done, stats.failed,
            )
            self._bus.publish("runner:done", data=stats.to_dict())

    def _start(self, task: Task) -> bool:
        """Spawn the install process.  Returns True if it is now running."""
        task.state = TaskState.RUNNING
        task.started_at = time.monotonic()
        task.output = []

        cmd = go_tool.install_command(self._go_cmd, task.binary.source)
        logger.debug("Spawning %s", " ".join(cmd))
        try:
            proc = subprocess.Popen(
                cmd,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                encoding="utf-8",
                errors="replace",
                bufsize=1,
                start_new_session=True,
            )
        except OSError as e:
            logger.error("Cannot start %s: %s", cmd[0], e)
            task.output.append(f"Failed to start {cmd[0]}: {e}")
            self._finish(task, success=False)
            return False

        task.process = proc
        self._publish_task(task)

        threading.Thread(
            target=self._pump,
            args=(task, proc),
            name=f"gobelt-{task.name}",
            daemon=True,
        ).start()
        return True

    def _pump(self, task: Task, proc: subprocess.Popen) -> None:
        """Reader thread: stream lines, then report the exit code."""
        try:
            if proc.stdout is not None:
                for line in proc.stdout:
                    line = line.rstrip("\r\n")
                    if line.strip():
                        self._dispatcher.post(self._on_output, task, line)
        except (OSError, ValueError) as e:
            logger.debug("Output stream for %s closed: %s", task.name, e)
        code = proc.wait()
        self._dispatcher.post(self._on_exit, task, proc, code)

    def _on_output(self, task: Task, line: str) -> None:
        # Aborted tasks may still receive trailing output; appending is harmless.
        task.output.append(line)
        self._bus.publish("runner:output", key=task.name, data={"line": line})

    def _on_exit(self, task: Task, proc: subprocess.Popen, code: int) -> None:
        if task.state.terminal or task.process is not proc:
            logger.debug("Ignoring exit %s for %s (state=%s)", code, task.name, task.state.value)
            return
        self._finish(task, success=code == 0)
        self._schedule()

    def _finish(self, task: Task, *, success: bool) -> None:
        task.finished_at = time.monotonic()
        task.state = TaskState.DONE if success else TaskState.FAILED
        task.process = None
        logger.info(
            "%s %s (%.1fs)", "✓" if success else "✗", task.name, task.elapsed or 0.0,
        )

        callback = task.binary.on_complete
        if callback is not None:
            threading.Thread(
                target=_run_callback,
                args=(task.name, callback, success),
                name=f"gobelt-callback-{task.name}",
                daemon=True,
            ).start()

        self._publish_task(task)

    def _abort(self) -> None:
        aborted = 0
        for task in self._tasks:
            if task.state is not TaskState.RUNNING:
                continue
            proc = task.process
            if proc is not None:
                _kill_group(task.name, proc)
            task.output.append(ABORT_MESSAGE)
            task.state = TaskState.FAILED
            task.finished_at = time.monotonic()
            task.process = None
            aborted += 1
            self._publish_task(task)

        self._running = False
        self._idle.set()
        logger.info("Batch aborted (%d running task(s) killed)", aborted)
        self._bus.publish("runner:abort", data={"aborted": aborted})

    def _publish_task(self, task: Task) -> None:
        self._bus.publish(
            "runner:task",
            key=task.name,
            data={"state": task.state.value},
        )


def _kill_group(name: str, proc: subprocess.Popen) -> None:
    """Kill the process and anything it spawned (goenv exec → go → compiler)."""
    try:
        os.killpg(proc.pid, signal.SIGKILL)
        return
    except ProcessLookupError:
        return
    except (AttributeError, OSError) as e:
        logger.debug("killpg %s failed, killing process only: %s", name, e)
    try:
        proc.kill()
    except OSError as e:
        logger.debug("kill %s failed: %s", name, e)


def _run_callback(name: str, callback, success: bool) -> None:
    try:
        callback(success)
    except Exception:
        logger.exception("Completion callback for %s failed", name)
