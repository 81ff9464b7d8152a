"""
Progress printer — renders runner/checker events as terminal lines.

Subscribed to the EventBus by the CLI commands; it only reads from the
runner (never mutates) and is called on the dispatcher thread.
"""

from __future__ import annotations

import click

from gobelt.core.models.task import TaskState
from gobelt.core.services.runner import TaskRunner

ICONS = {
    TaskState.PENDING: "○",
    TaskState.RUNNING: "◐",
    TaskState.DONE: "●",
    TaskState.FAILED: "✗",
}

_COLORS = {
    TaskState.PENDING: "white",
    TaskState.RUNNING: "cyan",
    TaskState.DONE: "green",
    TaskState.FAILED: "red",
}

_NOTICE_STYLE = {
    "info": ("cyan", False),
    "warning": ("yellow", True),
    "error": ("red", True),
}

# Output lines shown under a failed task
FAILURE_TAIL = 10


class ProgressPrinter:
    """EventBus listener that echoes batch progress."""

    def __init__(self, runner: TaskRunner, *, verbose: bool = False, quiet: bool = False) -> None:
        self._runner = runner
        self._verbose = verbose
        self._quiet = quiet

    def __call__(self, event: dict) -> None:
        kind = event["type"]
        if kind == "notice":
            self._notice(event["data"])
        elif kind == "runner:batch":
            if not self._quiet:
                names = event["data"].get("names", [])
                click.secho(
                    f"\n⚡ {event['data'].get('mode', 'install')} {len(names)} binary(ies)"
                    f" (concurrency {self._runner.concurrency})",
                    fg="cyan",
                    bold=True,
                )
        elif kind == "runner:task":
            self._task(event["key"], TaskState(event["data"]["state"]))
        elif kind == "runner:output" and self._verbose:
            click.echo(f"     │ {event['key']}: {event['data'].get('line', '')}")

    def _notice(self, data: dict) -> None:
        level = data.get("level", "info")
        if self._quiet and level == "info":
            return
        color, err = _NOTICE_STYLE.get(level, ("white", False))
        click.secho(data.get("message", ""), fg=color, err=err)

    def _task(self, name: str, state: TaskState) -> None:
        if self._quiet and state is not TaskState.FAILED:
            return
        task = next((t for t in self._runner.tasks() if t.name == name), None)
        timing = ""
        if task is not None and state.terminal and task.elapsed is not None:
            timing = f" ({task.elapsed:.1f}s)"
        click.secho(f"   {ICONS[state]} {name}", fg=_COLORS[state], nl=False)
        click.echo(timing)

        if state is TaskState.FAILED and task is not None and not self._verbose:
            for line in task.output[-FAILURE_TAIL:]:
                click.echo(f"     │ {line}")


def print_summary(runner: TaskRunner) -> None:
    stats = runner.stats()
    if stats.total == 0:
        return
    color = "green" if stats.failed == 0 else "yellow" if stats.done > 0 else "red"
    parts = [f"{stats.done} done", f"{stats.failed} failed"]
    if stats.pending:
        parts.append(f"{stats.pending} not started")
    click.echo()
    click.secho(f"   {' | '.join(parts)} of {stats.total}", fg=color, bold=True)
    click.echo()
