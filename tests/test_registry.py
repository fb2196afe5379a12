"""
Tests for the step registry — ordering and validation.
"""

import pytest

from provisioner.core.engine.registry import StepRegistry
from provisioner.core.errors import ConfigError
from provisioner.core.models.step import Step


def _step(name, **kwargs):
    return Step(
        name=name,
        precondition=lambda ctx: False,
        apply=lambda ctx: None,
        postcondition=lambda ctx: True,
        **kwargs,
    )


class TestStepRegistry:
    def test_order_preserved(self):
        reg = StepRegistry([_step("a"), _step("b"), _step("c")])
        assert reg.names() == ["a", "b", "c"]
        assert [s.name for s in reg] == ["a", "b", "c"]
        assert len(reg) == 3

    def test_lookup(self):
        reg = StepRegistry([_step("a"), _step("b")])
        assert reg.get("b").name == "b"
        assert reg.get("zzz") is None
        assert reg.index("b") == 1
        assert "a" in reg
        assert "zzz" not in reg

    def test_index_unknown_raises(self):
        with pytest.raises(ValueError):
            StepRegistry([_step("a")]).index("b")

    def test_steps_is_immutable_tuple(self):
        reg = StepRegistry([_step("a")])
        assert isinstance(reg.steps, tuple)
        assert not hasattr(reg, "add")

    def test_duplicate_names_rejected(self):
        with pytest.raises(ConfigError, match="Duplicate step name 'a'"):
            StepRegistry([_step("a"), _step("a")])

    def test_dependency_must_come_first(self):
        with pytest.raises(ConfigError, match="depends on 'b'"):
            StepRegistry([_step("a", depends_on=("b",)), _step("b")])

    def test_dependency_on_earlier_step_ok(self):
        reg = StepRegistry([_step("a"), _step("b", depends_on=("a",))])
        assert reg.names() == ["a", "b"]

    def test_rollback_must_be_callable(self):
        with pytest.raises(ConfigError, match="rollback is not callable"):
            StepRegistry([_step("a", rollback="undo-a")])

    def test_negative_retries_rejected(self):
        with pytest.raises(ConfigError, match="retries"):
            StepRegistry([_step("a", retries=-1)])

    def test_zero_timeout_rejected(self):
        with pytest.raises(ConfigError, match="timeout"):
            StepRegistry([_step("a", timeout=0)])

    def test_filter_known(self):
        reg = StepRegistry([_step("a"), _step("b"), _step("c")])
        assert reg.filter_known(["c", "zzz", "a"]) == ["a", "c"]

    def test_empty_registry(self):
        reg = StepRegistry([])
        assert len(reg) == 0
        assert reg.names() == []
