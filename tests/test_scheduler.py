import json
import threading
import time

import pytest

from assetflow.errors import ErrorKind, UnknownTaskError
from assetflow.reload import ReloadCoordinator
from assetflow.runs import RunState
from assetflow.scheduler import Scheduler, TaskState
from assetflow.tasks import TaskRegistry

from .fakes import Gate, Recorder


@pytest.fixture
def registry():
    return TaskRegistry()


@pytest.fixture
def scheduler(registry, context):
    scheduler = Scheduler(registry, context)
    yield scheduler
    scheduler.shutdown(wait=True)


def test_sequence_halts_on_first_failure(registry, scheduler):
    log = []
    registry.leaf("a", Recorder("a", log))
    registry.leaf("b", Recorder("b", log, fail=True))
    registry.leaf("c", Recorder("c", log))
    registry.sequence("seq", "a", "b", "c")

    run = scheduler.run_once("seq")

    assert log == ["a", "b"]
    assert run.state is RunState.FAILED
    assert run.failed_child == "b"
    assert [child.task for child in run.children] == ["a", "b"]
    assert [failure.task for failure in run.failures()] == ["b"]
    assert scheduler.latest_run("c") is None


def test_parallel_collects_every_failure(registry, scheduler):
    log = []
    registry.leaf("a", Recorder("a", log, fail=True))
    registry.leaf("b", Recorder("b", log))
    registry.leaf("c", Recorder("c", log, fail=True))
    registry.parallel("group", "a", "b", "c")

    run = scheduler.run_once("group")

    assert sorted(log) == ["a", "b", "c"]
    assert run.failed
    assert [failure.task for failure in run.failures()] == ["a", "c"]
    assert all(f.error.kind is ErrorKind.PARSE for f in run.failures())
    assert run.children[1].succeeded


def test_build_group_with_failing_html(registry, scheduler, config):
    log = []
    registry.leaf("html", Recorder("html", log, fail=True))
    registry.leaf("css", Recorder("css", log))
    registry.leaf("js", Recorder("js", log))
    registry.leaf("images", Recorder("images", log))
    registry.parallel("build", "html", "css", "js", "images")

    run = scheduler.run_once("build")

    assert run.state is RunState.FAILED
    failures = run.failures()
    assert len(failures) == 1
    assert failures[0].task == "html"
    assert "html is broken" in failures[0].describe_failure()
    succeeded = {leaf.task for leaf in run.leaf_runs() if leaf.succeeded}
    assert succeeded == {"css", "js", "images"}
    for name in ("css", "js", "images"):
        assert (config.output_dir / f"{name}.txt").read_text() == name


def test_successful_run_records_outputs(registry, scheduler, config):
    registry.leaf("css", Recorder("css", []), output="css")
    run = scheduler.run_once("css")
    assert run.succeeded
    assert run.outputs == [config.output_dir / "css" / "css.txt"]
    assert run.duration is not None
    assert scheduler.state("css") is TaskState.IDLE


def test_triggers_while_running_coalesce(registry, scheduler):
    gate = Gate()
    registry.leaf("styles", gate)

    scheduler.run_for_trigger(["styles"])
    assert gate.started.wait(2)
    assert scheduler.state("styles") is TaskState.RUNNING
    for _ in range(10):
        scheduler.run_for_trigger(["styles"])
    gate.release.set()

    assert scheduler.wait_idle(5)
    assert gate.calls == 2
    assert gate.max_active == 1
    assert scheduler.state("styles") is TaskState.IDLE


def test_run_once_waits_for_triggered_run(registry, scheduler):
    gate = Gate()
    registry.leaf("scripts", gate)

    scheduler.run_for_trigger(["scripts"])
    assert gate.started.wait(2)
    worker = threading.Thread(target=scheduler.run_once, args=("scripts",))
    worker.start()
    time.sleep(0.05)
    assert gate.calls == 1

    gate.release.set()
    worker.join(5)
    assert scheduler.wait_idle(5)
    assert gate.calls == 2
    assert gate.max_active == 1


def test_triggers_during_run_once_start_one_rerun(registry, scheduler):
    gate = Gate()
    registry.leaf("images", gate)

    worker = threading.Thread(target=scheduler.run_once, args=("images",))
    worker.start()
    assert gate.started.wait(2)
    assert scheduler.state("images") is TaskState.RUNNING
    for _ in range(5):
        scheduler.run_for_trigger(["images"])
    gate.release.set()
    worker.join(5)

    assert scheduler.wait_idle(5)
    assert gate.calls == 2
    assert gate.max_active == 1
    assert scheduler.state("images") is TaskState.IDLE
    assert scheduler.latest_run("images").succeeded


def test_trigger_for_unknown_task_schedules_nothing(registry, scheduler):
    registry.leaf("html", Recorder("html", []))
    with pytest.raises(UnknownTaskError):
        scheduler.run_for_trigger(["html", "nope"])
    assert scheduler.state("html") is TaskState.IDLE
    assert scheduler.wait_idle(1)


def test_triggers_ignored_after_shutdown(registry, scheduler):
    log = []
    registry.leaf("html", Recorder("html", log))
    scheduler.shutdown()
    scheduler.run_for_trigger(["html"])
    assert scheduler.wait_idle(1)
    assert log == []


def test_listeners_see_terminal_runs_and_reload_skips_failures(
    registry, scheduler, config
):
    log = []
    registry.leaf("ok", Recorder("ok", log))
    registry.leaf("bad", Recorder("bad", log, fail=True))
    coordinator = ReloadCoordinator(port=0, project_root=config.project_root)
    sent = []
    coordinator._broadcast = sent.append
    seen = []

    def listener(run):
        seen.append((run.task, run.state, run.finished_at is not None))
        coordinator.notify(run)

    scheduler.add_listener(listener)
    scheduler.run_for_trigger(["ok", "bad"], cause=config.src_dir / "app.scss")
    assert scheduler.wait_idle(5)

    assert sorted(seen) == [
        ("bad", RunState.FAILED, True),
        ("ok", RunState.SUCCEEDED, True),
    ]
    assert len(sent) == 1
    assert json.loads(sent[0]) == {"type": "reload", "path": "src/app.scss"}
    assert scheduler.latest_run("ok").cause == config.src_dir / "app.scss"


def test_failing_listener_does_not_break_scheduler(registry, scheduler):
    log = []
    registry.leaf("html", Recorder("html", log))

    def broken(run):
        raise RuntimeError("boom")

    scheduler.add_listener(broken)
    scheduler.run_for_trigger(["html"])
    assert scheduler.wait_idle(5)
    scheduler.run_for_trigger(["html"])
    assert scheduler.wait_idle(5)
    assert log == ["html", "html"]
