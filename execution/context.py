"""
Ambient execution context for background units of work.

Holds the identifiers of the tenant, collective, automation run and agent
task run the current unit is working for. The state lives in a ContextVar, so
every worker thread sees its own independent copy; nothing is shared across
threads and nothing is persisted. Units rebuild it from the identifiers carried
in their job arguments.

Only ExecutionContext (and ContextGuard on top of it) should mutate the state.
"""

from __future__ import annotations

from contextvars import ContextVar
from dataclasses import dataclass, replace
from typing import Any

from .exceptions import MissingContextError

_UNSET: Any = object()


@dataclass(frozen=True)
class ContextSnapshot:
    """Immutable view of the execution context at one point in time."""

    tenant_id: int | None = None
    collective_id: int | None = None
    automation_run_id: int | None = None
    agent_task_run_id: int | None = None
    # Loop/storm-prevention ledger of the automation cascade in progress
    # (an automations.chain.AutomationChain), if any.
    automation_chain: Any = None

    @property
    def is_empty(self) -> bool:
        return self == EMPTY_CONTEXT


EMPTY_CONTEXT = ContextSnapshot()

_current: ContextVar[ContextSnapshot] = ContextVar(
    "harmonic_execution_context", default=EMPTY_CONTEXT
)


class ExecutionContext:
    """Accessors for the ambient context of the running unit of work."""

    @staticmethod
    def current() -> ContextSnapshot:
        return _current.get()

    @staticmethod
    def set(
        *,
        tenant_id: int | None = _UNSET,
        collective_id: int | None = _UNSET,
        automation_run_id: int | None = _UNSET,
        agent_task_run_id: int | None = _UNSET,
        automation_chain: Any = _UNSET,
    ) -> ContextSnapshot:
        """
        Update the given fields, leaving the others untouched.

        Raises:
            MissingContextError: if the result would have a collective
                without a tenant.
        """
        changes = {
            name: value
            for name, value in (
                ("tenant_id", tenant_id),
                ("collective_id", collective_id),
                ("automation_run_id", automation_run_id),
                ("agent_task_run_id", agent_task_run_id),
                ("automation_chain", automation_chain),
            )
            if value is not _UNSET
        }
        updated = replace(_current.get(), **changes)
        if updated.collective_id is not None and updated.tenant_id is None:
            raise MissingContextError(
                f"Cannot set collective {updated.collective_id} without a tenant context."
            )
        _current.set(updated)
        return updated

    @staticmethod
    def clear() -> None:
        _current.set(EMPTY_CONTEXT)

    @staticmethod
    def restore(snapshot: ContextSnapshot) -> None:
        _current.set(snapshot)

    @staticmethod
    def tenant_id() -> int | None:
        return _current.get().tenant_id

    @staticmethod
    def collective_id() -> int | None:
        return _current.get().collective_id

    @staticmethod
    def automation_run_id() -> int | None:
        return _current.get().automation_run_id

    @staticmethod
    def agent_task_run_id() -> int | None:
        return _current.get().agent_task_run_id
