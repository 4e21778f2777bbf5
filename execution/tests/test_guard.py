"""
Tests for ContextGuard.
"""

import pytest

from execution.context import ExecutionContext
from execution.guard import ContextGuard


class TestContextGuard:
    """Every unit starts clean and hands the caller's context back."""

    def test_clears_context_inside(self):
        ExecutionContext.set(tenant_id=1, collective_id=2)

        with ContextGuard():
            assert ExecutionContext.current().is_empty

    def test_restores_context_after(self):
        ExecutionContext.set(tenant_id=1, collective_id=2)

        with ContextGuard():
            ExecutionContext.set(tenant_id=7)

        assert ExecutionContext.tenant_id() == 1
        assert ExecutionContext.collective_id() == 2

    def test_restores_context_after_exception(self):
        ExecutionContext.set(tenant_id=1)

        with pytest.raises(RuntimeError):
            with ContextGuard():
                ExecutionContext.set(tenant_id=7)
                raise RuntimeError("boom")

        assert ExecutionContext.tenant_id() == 1

    def test_nested_guards_restore_each_level(self):
        ExecutionContext.set(tenant_id=1)

        with ContextGuard():
            ExecutionContext.set(tenant_id=2)
            with ContextGuard():
                assert ExecutionContext.current().is_empty
                ExecutionContext.set(tenant_id=3)
            assert ExecutionContext.tenant_id() == 2

        assert ExecutionContext.tenant_id() == 1

    def test_run_returns_unit_result(self):
        ExecutionContext.set(tenant_id=1)

        def unit(value, *, factor):
            assert ExecutionContext.tenant_id() is None
            return value * factor

        assert ContextGuard.run(unit, 3, factor=2) == 6
        assert ExecutionContext.tenant_id() == 1
