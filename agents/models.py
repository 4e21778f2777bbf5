"""
Autonomous agents and their per-tenant task runs.

An agent works through its queued task runs one at a time within each
tenant; AgentTaskScheduler enforces that at most one run per (agent, tenant)
is ever running.
"""

from django.conf import settings
from django.contrib.auth import get_user_model
from django.db import models

from accounts.managers import TenantScopedQuerySet

User = get_user_model()


class Agent(models.Model):
    """
    Identity of an autonomous agent.

    Agents are not owned by a tenant: the same agent can hold task queues in
    several tenants. The agent row is the lock that serializes task claims.
    """

    name = models.CharField(max_length=255)
    handle = models.SlugField(max_length=100, unique=True)
    user = models.OneToOneField(
        User,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="agent_profile",
        help_text="User account the agent acts as",
    )
    configuration = models.JSONField(
        default=dict,
        blank=True,
        help_text="Agent configuration (e.g., {'model': 'claude-sonnet-4'})",
    )
    is_active = models.BooleanField(default=True, db_index=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = "Agent"
        verbose_name_plural = "Agents"
        ordering = ["name"]

    def __str__(self):
        return f"{self.name} (@{self.handle})"

    @property
    def model_name(self) -> str:
        return (self.configuration or {}).get("model") or "default"


class AgentTaskRun(models.Model):
    """One task for an agent, queued and executed within a single tenant."""

    class Status(models.TextChoices):
        QUEUED = "queued", "Queued"
        RUNNING = "running", "Running"
        COMPLETED = "completed", "Completed"
        FAILED = "failed", "Failed"

    tenant = models.ForeignKey(
        "accounts.Tenant",
        on_delete=models.CASCADE,
        related_name="agent_task_runs",
        help_text="Tenant the task runs in",
    )
    collective = models.ForeignKey(
        "accounts.Collective",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="agent_task_runs",
        help_text="Optional collective the task is scoped to",
    )
    agent = models.ForeignKey(
        Agent,
        on_delete=models.CASCADE,
        related_name="task_runs",
    )
    initiated_by = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="initiated_agent_task_runs",
    )

    task = models.TextField(help_text="Task description given to the agent")
    max_steps = models.PositiveIntegerField(default=30)
    model_name = models.CharField(max_length=100, default="default")

    status = models.CharField(
        max_length=20,
        choices=Status.choices,
        default=Status.QUEUED,
        db_index=True,
    )

    # Result
    success = models.BooleanField(null=True, blank=True)
    final_message = models.TextField(blank=True)
    error = models.TextField(null=True, blank=True)
    steps_count = models.PositiveIntegerField(default=0)
    steps_data = models.JSONField(default=list, blank=True)
    late_result = models.JSONField(
        null=True,
        blank=True,
        help_text="Outcome reported after the run was already finalized (e.g., by stuck-task recovery)",
    )

    # Usage accounting
    input_tokens = models.PositiveIntegerField(default=0)
    output_tokens = models.PositiveIntegerField(default=0)
    total_tokens = models.PositiveIntegerField(default=0)
    estimated_cost_usd = models.DecimalField(
        max_digits=12, decimal_places=6, null=True, blank=True
    )

    created_at = models.DateTimeField(auto_now_add=True, db_index=True)
    updated_at = models.DateTimeField(auto_now=True)
    started_at = models.DateTimeField(null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)

    objects = TenantScopedQuerySet.as_manager()

    class Meta:
        verbose_name = "Agent Task Run"
        verbose_name_plural = "Agent Task Runs"
        ordering = ["-created_at"]
        indexes = [
            models.Index(
                fields=["agent", "tenant", "status", "created_at"],
                name="agents_task_queue_idx",
            ),
        ]

    def __str__(self):
        return f"Task {self.pk} for {self.agent_id} ({self.status})"

    @classmethod
    def create_queued(
        cls,
        *,
        agent: Agent,
        tenant,
        task: str,
        initiated_by=None,
        collective=None,
        max_steps: int | None = None,
    ) -> "AgentTaskRun":
        """Create a queued run, taking the model from the agent configuration."""
        return cls.objects.create(
            tenant=tenant,
            collective=collective,
            agent=agent,
            initiated_by=initiated_by,
            task=task,
            max_steps=max_steps or settings.HARMONIC_AGENT_DEFAULT_MAX_STEPS,
            model_name=agent.model_name,
            status=cls.Status.QUEUED,
        )

    @property
    def duration_seconds(self) -> float | None:
        if self.started_at and self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return None
