"""
Exceptions raised by the execution core.

These are programmer errors: a unit was dispatched through the wrong scope
variant, or touched tenant data before establishing a tenant. They are never
retried and never caught by the core.
"""


class ExecutionContextError(Exception):
    """Base exception for execution context violations."""


class MissingContextError(ExecutionContextError):
    """Tenant-scoped work attempted without a tenant context."""


class UnexpectedContextError(ExecutionContextError):
    """System-scoped work started while a tenant context was present."""
