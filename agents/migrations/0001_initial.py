# Generated manually for initial Agent and AgentTaskRun models.

from django.conf import settings
from django.db import migrations, models
import django.db.models.deletion


class Migration(migrations.Migration):
    initial = True

    dependencies = [
        ("accounts", "0001_initial"),
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="Agent",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("name", models.CharField(max_length=255)),
                ("handle", models.SlugField(max_length=100, unique=True)),
                (
                    "configuration",
                    models.JSONField(
                        blank=True,
                        default=dict,
                        help_text="Agent configuration (e.g., {'model': 'claude-sonnet-4'})",
                    ),
                ),
                ("is_active", models.BooleanField(db_index=True, default=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "user",
                    models.OneToOneField(
                        blank=True,
                        help_text="User account the agent acts as",
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="agent_profile",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "verbose_name": "Agent",
                "verbose_name_plural": "Agents",
                "ordering": ["name"],
            },
        ),
        migrations.CreateModel(
            name="AgentTaskRun",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("task", models.TextField(help_text="Task description given to the agent")),
                ("max_steps", models.PositiveIntegerField(default=30)),
                ("model_name", models.CharField(default="default", max_length=100)),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("queued", "Queued"),
                            ("running", "Running"),
                            ("completed", "Completed"),
                            ("failed", "Failed"),
                        ],
                        db_index=True,
                        default="queued",
                        max_length=20,
                    ),
                ),
                ("success", models.BooleanField(blank=True, null=True)),
                ("final_message", models.TextField(blank=True)),
                ("error", models.TextField(blank=True, null=True)),
                ("steps_count", models.PositiveIntegerField(default=0)),
                ("steps_data", models.JSONField(blank=True, default=list)),
                ("input_tokens", models.PositiveIntegerField(default=0)),
                ("output_tokens", models.PositiveIntegerField(default=0)),
                ("total_tokens", models.PositiveIntegerField(default=0)),
                ("estimated_cost_usd", models.DecimalField(blank=True, decimal_places=6, max_digits=12, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True, db_index=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("started_at", models.DateTimeField(blank=True, null=True)),
                ("completed_at", models.DateTimeField(blank=True, null=True)),
                (
                    "tenant",
                    models.ForeignKey(
                        help_text="Tenant the task runs in",
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="agent_task_runs",
                        to="accounts.tenant",
                    ),
                ),
                (
                    "collective",
                    models.ForeignKey(
                        blank=True,
                        help_text="Optional collective the task is scoped to",
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="agent_task_runs",
                        to="accounts.collective",
                    ),
                ),
                (
                    "agent",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="task_runs",
                        to="agents.agent",
                    ),
                ),
                (
                    "initiated_by",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="initiated_agent_task_runs",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "verbose_name": "Agent Task Run",
                "verbose_name_plural": "Agent Task Runs",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["agent", "tenant", "status", "created_at"], name="agents_task_queue_idx"),
                ],
            },
        ),
    ]
