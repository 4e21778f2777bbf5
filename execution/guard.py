"""
ContextGuard: the wrapper every dispatched unit of work runs inside.

On entry the current context is snapshotted and cleared, so a unit never
inherits identifiers left behind by whatever ran before it on the same worker
thread. On exit, whatever the exit path, the snapshot is restored, so a unit
run inline from another unit (tests, direct invocation) hands the caller back
exactly the context it had.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any, TypeVar

from .context import ContextSnapshot, ExecutionContext

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ContextGuard:
    """
    Save-clear-restore of the execution context.

    Usage:
        with ContextGuard():
            ...  # runs with an empty context

        ContextGuard.run(unit, *args, **kwargs)
    """

    def __init__(self) -> None:
        self._saved: ContextSnapshot | None = None

    def __enter__(self) -> ContextGuard:
        self._saved = ExecutionContext.current()
        if not self._saved.is_empty:
            logger.debug(f"Suspending outer execution context {self._saved}")
        ExecutionContext.clear()
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        ExecutionContext.restore(self._saved)
        self._saved = None
        return False

    @classmethod
    def run(cls, unit: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Run ``unit`` inside a fresh guard and return its result."""
        with cls():
            return unit(*args, **kwargs)
