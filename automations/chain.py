"""
Loop and storm prevention for cascading automation rules.

An event can trigger a rule whose actions emit another event, which triggers
another rule, and so on. Every cascade carries an AutomationChain that bounds
how deep (generations) and how wide (distinct rules fired) it may grow, and
remembers which event started it.

The chain crosses job boundaries inside the job arguments (``chain_state``)
and the run's ``chain_metadata``; within a job it lives in the
ExecutionContext, so it is dropped when the job's context guard exits.

Example:
    chain = current_chain()
    if chain.can_execute(rule):
        downstream = chain.record_branch(rule, event)
        AutomationRuleExecutionJob.perform_later(..., chain_state=downstream.to_payload())
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field

from django.conf import settings

from execution.context import ExecutionContext

logger = logging.getLogger(__name__)


def max_chain_depth() -> int:
    return getattr(settings, "HARMONIC_AUTOMATION_MAX_CHAIN_DEPTH", 3)


def max_rules_per_chain() -> int:
    return getattr(settings, "HARMONIC_AUTOMATION_MAX_RULES_PER_CHAIN", 10)


@dataclass
class AutomationChain:
    """Bookkeeping for one cascade of rule firings."""

    depth: int = 0
    executed_rule_ids: set[int] = field(default_factory=set)
    origin_event_id: int | None = None

    def can_execute(self, rule) -> bool:
        """
        Whether ``rule`` may fire within this chain.

        Denial is a normal outcome of loop prevention, so it is logged at
        info level and never raised.
        """
        depth_limit = max_chain_depth()
        if self.depth >= depth_limit:
            self._log_blocked(rule, "depth_limit", f"depth {self.depth} >= {depth_limit}")
            return False

        if rule.pk in self.executed_rule_ids:
            self._log_blocked(rule, "loop_detected", "rule already executed in this chain")
            return False

        rules_limit = max_rules_per_chain()
        if len(self.executed_rule_ids) >= rules_limit:
            self._log_blocked(
                rule,
                "max_rules_per_chain",
                f"{len(self.executed_rule_ids)} >= {rules_limit} rules",
            )
            return False

        return True

    def record_execution(self, rule, event=None) -> None:
        """Count one more generation for ``rule``; the first event seen is the origin."""
        self.depth += 1
        self.executed_rule_ids.add(rule.pk)
        if self.origin_event_id is None and event is not None:
            self.origin_event_id = event.pk

    def branch(self) -> AutomationChain:
        return AutomationChain(
            depth=self.depth,
            executed_rule_ids=set(self.executed_rule_ids),
            origin_event_id=self.origin_event_id,
        )

    def record_branch(self, rule, event=None) -> AutomationChain:
        """
        Record ``rule`` firing as a new branch of this chain.

        The returned branch is one generation deeper and is what the
        downstream run carries. This chain only takes the rule id (and the
        origin), so sibling rules fanned out from the same event share the
        breadth count without deepening each other.
        """
        downstream = self.branch()
        downstream.record_execution(rule, event)

        self.executed_rule_ids.add(rule.pk)
        if self.origin_event_id is None:
            self.origin_event_id = downstream.origin_event_id
        return downstream

    @property
    def in_chain(self) -> bool:
        return self.depth > 0

    def to_payload(self) -> dict:
        return {
            "depth": self.depth,
            "executed_rule_ids": sorted(self.executed_rule_ids),
            "origin_event_id": self.origin_event_id,
        }

    @classmethod
    def from_payload(cls, payload: dict | None) -> AutomationChain:
        """Rebuild a chain; an empty or missing payload starts a fresh chain."""
        if not payload:
            return cls()
        return cls(
            depth=int(payload.get("depth") or 0),
            executed_rule_ids={int(rule_id) for rule_id in payload.get("executed_rule_ids") or []},
            origin_event_id=payload.get("origin_event_id"),
        )

    serialize = to_payload
    restore = from_payload

    def _log_blocked(self, rule, reason: str, detail: str) -> None:
        logger.info(
            f"Automation chain blocked rule {rule.pk} in tenant {rule.tenant_id}: "
            f"{reason} ({detail})"
        )


def current_chain() -> AutomationChain:
    """
    The chain of the running unit.

    Outside an automation run this is a fresh chain that is not attached to
    the context, so nothing leaks into unrelated work on the same thread.
    """
    chain = ExecutionContext.current().automation_chain
    if chain is None:
        return AutomationChain()
    return chain


def set_chain(chain: AutomationChain | None) -> None:
    ExecutionContext.set(automation_chain=chain)


@contextmanager
def use_chain(chain: AutomationChain) -> Iterator[AutomationChain]:
    """Make ``chain`` the ambient chain for the duration of the block."""
    previous = ExecutionContext.current().automation_chain
    ExecutionContext.set(automation_chain=chain)
    try:
        yield chain
    finally:
        ExecutionContext.set(automation_chain=previous)
