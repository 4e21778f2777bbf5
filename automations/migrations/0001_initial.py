# Generated manually for initial automation models.

from django.conf import settings
from django.db import migrations, models
import django.db.models.deletion


class Migration(migrations.Migration):
    initial = True

    dependencies = [
        ("accounts", "0001_initial"),
        ("agents", "0001_initial"),
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="Event",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                (
                    "event_type",
                    models.CharField(db_index=True, help_text="Dotted event type (e.g., 'note.created')", max_length=100),
                ),
                ("subject_type", models.CharField(blank=True, max_length=50)),
                ("subject_id", models.PositiveBigIntegerField(blank=True, null=True)),
                ("data", models.JSONField(blank=True, default=dict)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "tenant",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="events",
                        to="accounts.tenant",
                    ),
                ),
                (
                    "collective",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="events",
                        to="accounts.collective",
                    ),
                ),
                (
                    "actor",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="automation_events",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["tenant", "event_type"], name="automations_event_type_idx"),
                ],
            },
        ),
        migrations.CreateModel(
            name="AutomationRule",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("name", models.CharField(max_length=255)),
                ("description", models.TextField(blank=True)),
                (
                    "trigger_type",
                    models.CharField(
                        choices=[("event", "Event"), ("schedule", "Schedule")],
                        db_index=True,
                        max_length=20,
                    ),
                ),
                ("trigger_config", models.JSONField(blank=True, default=dict)),
                (
                    "conditions",
                    models.JSONField(
                        blank=True,
                        default=list,
                        help_text="All must pass, e.g. [{'field': 'event.type', 'operator': '==', 'value': 'note.created'}]",
                    ),
                ),
                (
                    "actions",
                    models.JSONField(blank=True, default=list, help_text="Action list, or {'task': '...'} for agent rules"),
                ),
                ("enabled", models.BooleanField(db_index=True, default=True)),
                ("last_executed_at", models.DateTimeField(blank=True, null=True)),
                ("execution_count", models.PositiveIntegerField(default=0)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "tenant",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="automation_rules",
                        to="accounts.tenant",
                    ),
                ),
                (
                    "collective",
                    models.ForeignKey(
                        blank=True,
                        help_text="Optional collective scope. If not set, the rule is tenant-wide.",
                        null=True,
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="automation_rules",
                        to="accounts.collective",
                    ),
                ),
                (
                    "agent",
                    models.ForeignKey(
                        blank=True,
                        help_text="Agent whose task queue this rule feeds (agent rules only)",
                        null=True,
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="automation_rules",
                        to="agents.agent",
                    ),
                ),
                (
                    "created_by",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="created_automation_rules",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["tenant", "trigger_type", "enabled"], name="automations_rule_trigger_idx"),
                ],
            },
        ),
        migrations.CreateModel(
            name="AutomationRuleRun",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                (
                    "trigger_source",
                    models.CharField(
                        choices=[
                            ("event", "Event"),
                            ("schedule", "Schedule"),
                            ("webhook", "Webhook"),
                            ("manual", "Manual"),
                            ("test", "Test"),
                        ],
                        default="event",
                        max_length=20,
                    ),
                ),
                ("trigger_data", models.JSONField(blank=True, default=dict)),
                (
                    "chain_metadata",
                    models.JSONField(
                        blank=True,
                        default=dict,
                        help_text="Chain snapshot: depth, executed_rule_ids, origin_event_id",
                    ),
                ),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("pending", "Pending"),
                            ("running", "Running"),
                            ("completed", "Completed"),
                            ("failed", "Failed"),
                            ("skipped", "Skipped"),
                        ],
                        db_index=True,
                        default="pending",
                        max_length=20,
                    ),
                ),
                ("actions_executed", models.JSONField(blank=True, default=list)),
                ("error", models.TextField(blank=True, null=True)),
                ("task_id", models.CharField(blank=True, help_text="Background task ID", max_length=100, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("started_at", models.DateTimeField(blank=True, null=True)),
                ("completed_at", models.DateTimeField(blank=True, null=True)),
                (
                    "tenant",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="automation_rule_runs",
                        to="accounts.tenant",
                    ),
                ),
                (
                    "collective",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="automation_rule_runs",
                        to="accounts.collective",
                    ),
                ),
                (
                    "automation_rule",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="runs",
                        to="automations.automationrule",
                    ),
                ),
                (
                    "triggered_by_event",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="triggered_runs",
                        to="automations.event",
                    ),
                ),
                (
                    "agent_task_run",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="automation_rule_runs",
                        to="agents.agenttaskrun",
                    ),
                ),
            ],
            options={
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["automation_rule", "created_at"], name="automations_run_rule_idx"),
                    models.Index(fields=["tenant", "status"], name="automations_run_status_idx"),
                ],
            },
        ),
        migrations.AddField(
            model_name="event",
            name="automation_rule_run",
            field=models.ForeignKey(
                blank=True,
                null=True,
                on_delete=django.db.models.deletion.SET_NULL,
                related_name="emitted_events",
                to="automations.automationrulerun",
            ),
        ),
    ]
