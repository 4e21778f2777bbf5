"""
Interface to the business action an agent performs for a task.

What the agent actually does (browse the collective, write notes, comment)
lives behind BaseNavigator. The task queue only needs a structured result
back: success flag, final message, error, steps and token usage.

The implementation is configured with HARMONIC_AGENT_NAVIGATOR.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any

from django.conf import settings
from django.utils import timezone
from django.utils.module_loading import import_string

if TYPE_CHECKING:
    from accounts.models import Collective, Tenant

    from .models import Agent

logger = logging.getLogger(__name__)


@dataclass
class NavigatorStep:
    """One step taken by the agent while working a task."""

    type: str
    detail: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=timezone.now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "detail": self.detail,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class NavigatorResult:
    """Outcome of running one task."""

    success: bool
    final_message: str = ""
    error: str | None = None
    steps: list[NavigatorStep] = field(default_factory=list)
    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


class BaseNavigator(ABC):
    """
    Performs an agent task inside an already established tenant context.
    """

    def __init__(
        self,
        agent: Agent,
        tenant: Tenant,
        collective: Collective | None = None,
        model: str = "default",
    ):
        self.agent = agent
        self.tenant = tenant
        self.collective = collective
        self.model = model

    @abstractmethod
    def run(self, task: str, max_steps: int) -> NavigatorResult:
        """Work the task, taking at most ``max_steps`` steps."""


class NullNavigator(BaseNavigator):
    """Placeholder used until a real navigator is configured."""

    def run(self, task: str, max_steps: int) -> NavigatorResult:
        logger.warning(
            f"No agent navigator configured; task for agent {self.agent.pk} not executed"
        )
        return NavigatorResult(
            success=False,
            error="No agent navigator configured (set HARMONIC_AGENT_NAVIGATOR)",
        )


def get_navigator_class() -> type[BaseNavigator]:
    return import_string(settings.HARMONIC_AGENT_NAVIGATOR)
