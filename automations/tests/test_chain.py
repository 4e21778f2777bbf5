"""
Tests for automation chain loop and storm prevention.
"""

from types import SimpleNamespace

from execution.context import ExecutionContext
from automations.chain import AutomationChain, current_chain, set_chain, use_chain


def make_rule(pk, tenant_id=1):
    return SimpleNamespace(pk=pk, tenant_id=tenant_id)


def make_event(pk):
    return SimpleNamespace(pk=pk)


class TestCanExecute:
    """Tests for the chain decision predicate."""

    def test_fresh_chain_allows(self):
        assert AutomationChain().can_execute(make_rule(1)) is True

    def test_loop_detected(self):
        chain = AutomationChain(depth=1, executed_rule_ids={1})

        assert chain.can_execute(make_rule(1)) is False
        assert chain.can_execute(make_rule(2)) is True

    def test_depth_cap_denies_any_rule(self):
        chain = AutomationChain(depth=3, executed_rule_ids={1, 2, 3})

        assert chain.can_execute(make_rule(1)) is False
        assert chain.can_execute(make_rule(99)) is False

    def test_breadth_cap_independent_of_depth(self):
        chain = AutomationChain(depth=1, executed_rule_ids=set(range(1, 11)))

        assert chain.can_execute(make_rule(42)) is False

    def test_limits_come_from_settings(self, settings):
        settings.HARMONIC_AUTOMATION_MAX_CHAIN_DEPTH = 5
        chain = AutomationChain(depth=3)

        assert chain.can_execute(make_rule(1)) is True

    def test_denial_is_logged(self, caplog):
        chain = AutomationChain(depth=1, executed_rule_ids={7})

        with caplog.at_level("INFO", logger="automations.chain"):
            chain.can_execute(make_rule(7))

        assert "loop_detected" in caplog.text


class TestRecordExecution:
    """Tests for recording rule executions."""

    def test_increments_depth_and_records_rule(self):
        chain = AutomationChain()

        chain.record_execution(make_rule(1), make_event(10))

        assert chain.depth == 1
        assert chain.executed_rule_ids == {1}
        assert chain.origin_event_id == 10

    def test_origin_is_first_writer(self):
        chain = AutomationChain()

        chain.record_execution(make_rule(1), make_event(10))
        chain.record_execution(make_rule(2), make_event(20))

        assert chain.origin_event_id == 10
        assert chain.depth == 2
        assert chain.executed_rule_ids == {1, 2}

    def test_record_without_event_leaves_origin(self):
        chain = AutomationChain()

        chain.record_execution(make_rule(1))

        assert chain.origin_event_id is None


class TestRecordBranch:
    """Sibling rules fanned out from one event."""

    def test_siblings_share_breadth_not_depth(self):
        chain = AutomationChain()
        event = make_event(10)

        first = chain.record_branch(make_rule(1), event)
        second = chain.record_branch(make_rule(2), event)

        assert first.depth == 1
        assert second.depth == 1
        assert chain.depth == 0
        assert chain.executed_rule_ids == {1, 2}
        assert second.executed_rule_ids == {1, 2}
        assert chain.origin_event_id == 10

    def test_sibling_repeat_is_a_loop(self):
        chain = AutomationChain()

        chain.record_branch(make_rule(1), make_event(10))

        assert chain.can_execute(make_rule(1)) is False

    def test_cascade_stops_at_depth_limit(self):
        chain = AutomationChain()
        generations = 0
        rule_id = 1
        while chain.can_execute(make_rule(rule_id)):
            chain = chain.record_branch(make_rule(rule_id), make_event(rule_id * 10))
            generations += 1
            rule_id += 1

        assert generations == 3
        assert chain.origin_event_id == 10


class TestPayload:
    """Chain state crossing job boundaries."""

    def test_payload_restores_chain(self):
        chain = AutomationChain(depth=2, executed_rule_ids={4, 2}, origin_event_id=8)

        payload = chain.to_payload()
        restored = AutomationChain.from_payload(payload)

        assert payload == {"depth": 2, "executed_rule_ids": [2, 4], "origin_event_id": 8}
        assert restored == chain

    def test_missing_payload_starts_fresh(self):
        assert AutomationChain.from_payload(None) == AutomationChain()
        assert AutomationChain.from_payload({}) == AutomationChain()

    def test_serialize_aliases(self):
        chain = AutomationChain(depth=1, executed_rule_ids={3})

        assert AutomationChain.restore(chain.serialize()) == chain


class TestAmbientChain:
    """Tests for the chain held in the execution context."""

    def test_current_chain_outside_run_is_detached(self):
        chain = current_chain()

        assert chain == AutomationChain()
        assert ExecutionContext.current().automation_chain is None

    def test_set_chain(self):
        chain = AutomationChain(depth=2)
        set_chain(chain)

        assert current_chain() is chain

    def test_use_chain_restores_previous(self):
        outer = AutomationChain(depth=1)
        set_chain(outer)

        with use_chain(AutomationChain(depth=2)) as inner:
            assert current_chain() is inner

        assert current_chain() is outer
