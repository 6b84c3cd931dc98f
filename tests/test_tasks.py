import pytest

from assetflow.errors import CycleError, DuplicateTaskError, UnknownTaskError
from assetflow.tasks import TaskKind, TaskRegistry


def noop(sources, context):
    return []


def test_register_and_resolve():
    registry = TaskRegistry()
    task = registry.leaf("css", noop, patterns=["src/scss/*.scss"], output="css")
    assert registry.resolve("css") is task
    assert task.kind is TaskKind.LEAF
    assert task.patterns == ("src/scss/*.scss",)
    assert "css" in registry
    assert len(registry) == 1


def test_duplicate_name_rejected():
    registry = TaskRegistry()
    registry.leaf("css", noop)
    with pytest.raises(DuplicateTaskError):
        registry.leaf("css", noop)


def test_resolve_unknown():
    with pytest.raises(UnknownTaskError):
        TaskRegistry().resolve("missing")


def test_acyclic_graph_registers():
    registry = TaskRegistry()
    registry.leaf("a", noop)
    registry.leaf("b", noop)
    registry.parallel("ab", "a", "b")
    registry.sequence("all", "a", "ab")
    registry.parallel("diamond", "ab", "all")
    registry.validate()
    assert [t.name for t in registry.leaves("diamond")] == ["a", "b"]


def test_self_reference_is_a_cycle():
    registry = TaskRegistry()
    with pytest.raises(CycleError) as exc:
        registry.sequence("loop", "loop")
    assert exc.value.cycle == ["loop", "loop"]
    assert "loop" not in registry


def test_transitive_cycle_through_forward_reference():
    registry = TaskRegistry()
    registry.sequence("outer", "middle")
    registry.parallel("middle", "inner")
    with pytest.raises(CycleError) as exc:
        registry.sequence("inner", "outer")
    assert exc.value.cycle == ["inner", "outer", "middle", "inner"]
    assert "inner" not in registry


def test_validate_reports_dangling_reference():
    registry = TaskRegistry()
    registry.sequence("build", "html")
    with pytest.raises(UnknownTaskError) as exc:
        registry.validate()
    assert exc.value.name == "html"
    assert exc.value.referenced_by == "build"


def test_kind_mismatch_raises_value_error():
    registry = TaskRegistry()
    with pytest.raises(ValueError):
        registry.register("leaf", TaskKind.LEAF)
    with pytest.raises(ValueError):
        registry.register("group", TaskKind.PARALLEL)
    with pytest.raises(ValueError):
        registry.register("group", TaskKind.SEQUENCE, children=["a"], transform=noop)
