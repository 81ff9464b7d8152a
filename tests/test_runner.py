"""
Tests for the task runner — batches, concurrency ceiling, abort.

Every test drives real subprocesses through the fake go toolchain
(see conftest.py); only timing is controlled via FAKE_GO_DELAY.
"""

from __future__ import annotations

import threading
import time
from pathlib import Path

import pytest

from gobelt.core.models import TaskMode, TaskState
from gobelt.core.services.runner import ABORT_MESSAGE, TaskRunner
from tests.helpers import TIMEOUT, make_installed, module_for, wait_until


def states(runner: TaskRunner) -> dict[str, TaskState]:
    return {t.name: t.state for t in runner.tasks()}


def alive(pid: int) -> bool:
    """Whether /proc shows ``pid`` as neither exited nor a zombie."""
    try:
        stat = Path(f"/proc/{pid}/stat").read_text()
    except FileNotFoundError:
        return False
    return stat.rpartition(")")[2].split()[0] not in ("Z", "X")


class TestBatch:
    def test_install_runs_every_task_to_done(self, make_app, gobin):
        app = make_app(binaries=("a", "b", "c"))
        app.runner.install(["a", "b", "c"])

        assert app.runner.wait(TIMEOUT)
        assert states(app.runner) == {
            "a": TaskState.DONE,
            "b": TaskState.DONE,
            "c": TaskState.DONE,
        }
        assert not app.runner.is_running()
        assert all((gobin / n).is_file() for n in ("a", "b", "c"))

    def test_batch_events(self, make_app):
        app = make_app(binaries=("a",))
        app.runner.install(["a"])
        assert app.runner.wait(TIMEOUT)
        app.dispatcher.flush(TIMEOUT)

        batch = app.bus.recent("runner:batch")
        assert batch[-1]["data"] == {"mode": "install", "names": ["a"]}
        done = app.bus.recent("runner:done")
        assert done[-1]["data"]["done"] == 1
        assert done[-1]["data"]["failed"] == 0
        task_states = [e["data"]["state"] for e in app.bus.recent("runner:task")]
        assert task_states == ["running", "done"]

    def test_output_is_captured_without_blank_lines(self, make_app):
        app = make_app(binaries=("a",))
        app.runner.install(["a"])
        assert app.runner.wait(TIMEOUT)

        task = app.runner.tasks()[0]
        assert task.output == [f"go: downloading {module_for('a')} v1.1.0"]
        assert task.elapsed is not None and task.elapsed >= 0

    def test_failed_install_is_failed_with_output(self, make_app, monkeypatch):
        monkeypatch.setenv("FAKE_GO_FAIL", "b")
        app = make_app(binaries=("a", "b"))
        app.runner.install(["a", "b"])

        assert app.runner.wait(TIMEOUT)
        assert states(app.runner) == {"a": TaskState.DONE, "b": TaskState.FAILED}
        failed = app.runner.tasks()[1]
        assert any("not found" in line for line in failed.output)
        stats = app.runner.stats()
        assert (stats.total, stats.done, stats.failed) == (2, 1, 1)

    def test_batch_ends_when_every_task_fails(self, make_app, monkeypatch):
        monkeypatch.setenv("FAKE_GO_FAIL", "a,b,c")
        app = make_app(binaries=("a", "b", "c"))
        app.runner.install(["a", "b", "c"])

        assert app.runner.wait(TIMEOUT)
        app.dispatcher.flush(TIMEOUT)
        assert not app.runner.is_running()
        assert states(app.runner) == {
            "a": TaskState.FAILED,
            "b": TaskState.FAILED,
            "c": TaskState.FAILED,
        }
        done = app.bus.recent("runner:done")[-1]["data"]
        assert (done["done"], done["failed"]) == (0, 3)

    def test_spawn_failure_fails_every_task(self, make_app, tmp_path):
        # Executable bit but no shebang: found on disk, rejected by exec
        not_a_program = tmp_path / "go"
        not_a_program.write_text("this is not a program\n")
        not_a_program.chmod(0o755)
        app = make_app(binaries=("a", "b", "c"), go_cmd=[str(not_a_program)])
        app.runner.install(["a", "b", "c"])

        assert app.runner.wait(TIMEOUT)
        app.dispatcher.flush(TIMEOUT)
        assert not app.runner.is_running()
        assert set(states(app.runner).values()) == {TaskState.FAILED}
        for task in app.runner.tasks():
            assert task.output[0].startswith(f"Failed to start {not_a_program}")
        assert app.bus.recent("runner:done")[-1]["data"]["failed"] == 3

    def test_new_batch_replaces_previous(self, make_app):
        app = make_app(binaries=("a", "b"))
        app.runner.install(["a"])
        assert app.runner.wait(TIMEOUT)
        app.runner.install(["b"])
        assert app.runner.wait(TIMEOUT)

        assert [t.name for t in app.runner.tasks()] == ["b"]


class TestFiltering:
    def test_install_skips_installed(self, make_app, gobin):
        make_installed(gobin, "a")
        app = make_app(binaries=("a", "b"))
        app.runner.install(["a", "b"])

        assert app.runner.wait(TIMEOUT)
        assert [t.name for t in app.runner.tasks()] == ["b"]

    def test_install_all_installed_is_info_notice(self, make_app, gobin):
        make_installed(gobin, "a")
        app = make_app(binaries=("a",))
        app.runner.install(["a"])

        assert app.runner.wait(TIMEOUT)
        assert app.runner.tasks() == []
        assert app.bus.notices("info")[-1]["message"] == "All binaries already installed"
        assert app.bus.recent("runner:batch") == []

    def test_install_noop_keeps_previous_batch(self, make_app):
        app = make_app(binaries=("a",))
        app.runner.install(["a"])
        assert app.runner.wait(TIMEOUT)
        before = app.runner.tasks()

        app.runner.install(["a"])
        assert app.runner.wait(TIMEOUT)

        assert app.runner.tasks() == before
        assert states(app.runner) == {"a": TaskState.DONE}
        assert app.bus.notices("info")[-1]["message"] == "All binaries already installed"
        assert len(app.bus.recent("runner:batch")) == 1

    def test_install_missing(self, make_app, gobin):
        make_installed(gobin, "b")
        app = make_app(binaries=("a", "b", "c"))
        app.runner.install_missing()

        assert app.runner.wait(TIMEOUT)
        assert [t.name for t in app.runner.tasks()] == ["a", "c"]

    def test_install_missing_nothing_to_do(self, make_app, gobin):
        for name in ("a", "b"):
            make_installed(gobin, name)
        app = make_app(binaries=("a", "b"))
        app.runner.install_missing()

        assert app.runner.wait(TIMEOUT)
        assert app.runner.tasks() == []
        assert app.bus.notices("info")[-1]["message"] == "All binaries already installed"

    def test_update_includes_installed(self, make_app, gobin):
        make_installed(gobin, "a", "v1.0.0")
        app = make_app(binaries=("a",))
        app.runner.update(["a"])

        assert app.runner.wait(TIMEOUT)
        assert states(app.runner) == {"a": TaskState.DONE}
        assert "# version=v1.1.0" in (gobin / "a").read_text()

    def test_update_all_uses_registration_order(self, make_app):
        app = make_app(binaries=("c", "a", "b"), concurrency=1)
        app.runner.update_all()

        assert app.runner.wait(TIMEOUT)
        assert [t.name for t in app.runner.tasks()] == ["c", "a", "b"]

    def test_unknown_name_warns_and_others_run(self, make_app):
        app = make_app(binaries=("a",))
        app.runner.install(["nope", "a"])

        assert app.runner.wait(TIMEOUT)
        assert [t.name for t in app.runner.tasks()] == ["a"]
        assert "Unknown binary: nope" in [n["message"] for n in app.bus.notices("warning")]

    def test_update_with_nothing_selected_is_silent(self, make_app):
        app = make_app(binaries=("a",))
        app.runner.update(["nope"])

        assert app.runner.wait(TIMEOUT)
        assert app.runner.tasks() == []
        assert app.bus.notices("info") == []

    def test_duplicate_names_create_one_task(self, make_app):
        app = make_app(binaries=("a",))
        app.runner.install(["a", "a"])

        assert app.runner.wait(TIMEOUT)
        assert len(app.runner.tasks()) == 1

    def test_missing_go_is_error_notice(self, make_app):
        app = make_app(binaries=("a",), go_cmd=["gobelt-test-no-such-go"])
        app.runner.install(["a"])

        assert app.runner.wait(TIMEOUT)
        assert app.runner.tasks() == []
        errors = app.bus.notices("error")
        assert errors[-1]["message"].startswith("Go is not installed")

    def test_request_accepts_mode_string(self, make_app):
        app = make_app(binaries=("a",))
        app.runner.request(["a"], "update")

        assert app.runner.wait(TIMEOUT)
        assert app.bus.recent("runner:batch")[-1]["data"]["mode"] == TaskMode.UPDATE.value


class TestConcurrency:
    def test_never_exceeds_ceiling(self, make_app, monkeypatch):
        monkeypatch.setenv("FAKE_GO_DELAY", "0.3")
        app = make_app(binaries=("a", "b", "c", "d", "e"), concurrency=2)
        peaks: list[int] = []

        def _track(event: dict) -> None:
            if event["type"] == "runner:task":
                peaks.append(app.runner.stats().running)

        app.bus.subscribe(_track)
        app.runner.install(["a", "b", "c", "d", "e"])

        assert app.runner.wait(TIMEOUT)
        assert max(peaks) == 2
        assert app.runner.stats().done == 5

    def test_starts_in_request_order(self, make_app):
        app = make_app(binaries=("a", "b", "c", "d"), concurrency=1)
        started: list[str] = []

        def _track(event: dict) -> None:
            if event["type"] == "runner:task" and event["data"]["state"] == "running":
                started.append(event["key"])

        app.bus.subscribe(_track)
        app.runner.install(["d", "b", "a", "c"])

        assert app.runner.wait(TIMEOUT)
        assert started == ["d", "b", "a", "c"]

    def test_overlapping_request_is_rejected(self, make_app, monkeypatch):
        monkeypatch.setenv("FAKE_GO_DELAY", "1")
        app = make_app(binaries=("a", "b"))
        app.runner.install(["a"])
        assert wait_until(app.runner.is_running)

        app.runner.install(["b"])
        app.dispatcher.flush(TIMEOUT)

        assert [t.name for t in app.runner.tasks()] == ["a"]
        warnings = [n["message"] for n in app.bus.notices("warning")]
        assert "Tasks already running. Wait or abort first." in warnings
        assert app.runner.wait(TIMEOUT)

    def test_rejects_zero_concurrency(self, make_app):
        app = make_app(binaries=())
        with pytest.raises(ValueError):
            TaskRunner(app.registry, app.bus, app.dispatcher, go_cmd=["go"], concurrency=0)


class TestAbort:
    def test_abort_kills_running_and_leaves_pending(self, make_app, monkeypatch):
        monkeypatch.setenv("FAKE_GO_DELAY", "30")
        app = make_app(binaries=("a", "b", "c"), concurrency=1)
        app.runner.install(["a", "b", "c"])
        assert wait_until(lambda: states(app.runner).get("a") is TaskState.RUNNING)

        app.runner.abort()
        assert app.runner.wait(TIMEOUT)

        assert states(app.runner) == {
            "a": TaskState.FAILED,
            "b": TaskState.PENDING,
            "c": TaskState.PENDING,
        }
        assert app.runner.tasks()[0].output[-1] == ABORT_MESSAGE
        assert not app.runner.is_running()
        assert app.bus.recent("runner:abort")[-1]["data"] == {"aborted": 1}

    def test_late_exit_after_abort_is_ignored(self, make_app, monkeypatch):
        monkeypatch.setenv("FAKE_GO_DELAY", "30")
        app = make_app(binaries=("a", "b"), concurrency=1)
        app.runner.install(["a", "b"])
        assert wait_until(lambda: states(app.runner).get("a") is TaskState.RUNNING)

        app.runner.abort()
        assert app.runner.wait(TIMEOUT)
        # Give the killed process time to be reaped and its exit posted
        time.sleep(0.5)
        app.dispatcher.flush(TIMEOUT)

        assert states(app.runner) == {"a": TaskState.FAILED, "b": TaskState.PENDING}
        assert app.bus.recent("runner:done") == []

    @pytest.mark.skipif(not Path("/proc/self/stat").exists(), reason="needs /proc")
    def test_abort_kills_processes_the_install_spawned(self, make_app, monkeypatch, tmp_path):
        pidfile = tmp_path / "child.pid"
        monkeypatch.setenv("FAKE_GO_DELAY", "30")
        monkeypatch.setenv("FAKE_GO_CHILD_PIDFILE", str(pidfile))
        app = make_app(binaries=("a",))
        app.runner.install(["a"])
        assert wait_until(lambda: pidfile.exists() and pidfile.read_text().strip() != "")
        child = int(pidfile.read_text())
        assert alive(child)

        app.runner.abort()
        assert app.runner.wait(TIMEOUT)
        assert wait_until(lambda: not alive(child))

    def test_abort_when_idle_is_harmless(self, make_app):
        app = make_app(binaries=("a",))
        app.runner.abort()

        assert app.runner.wait(TIMEOUT)
        assert app.runner.tasks() == []
        assert not app.runner.is_running()


class TestCallbacks:
    def test_on_complete_receives_success(self, make_app, monkeypatch):
        monkeypatch.setenv("FAKE_GO_FAIL", "b")
        app = make_app(binaries=("a", "b"))
        results: dict[str, bool] = {}
        done = threading.Event()

        def _callback(name):
            def _cb(success: bool) -> None:
                results[name] = success
                if len(results) == 2:
                    done.set()
            return _cb

        app.registry.register("a", module_for("a"), on_complete=_callback("a"))
        app.registry.register("b", module_for("b"), on_complete=_callback("b"))
        app.runner.install(["a", "b"])

        assert done.wait(TIMEOUT)
        assert results == {"a": True, "b": False}

    def test_raising_callback_does_not_break_batch(self, make_app):
        app = make_app(binaries=("a", "b"))

        def _boom(success: bool) -> None:
            raise RuntimeError("boom")

        app.registry.register("a", module_for("a"), on_complete=_boom)
        app.runner.install(["a", "b"])

        assert app.runner.wait(TIMEOUT)
        assert app.runner.stats().done == 2
