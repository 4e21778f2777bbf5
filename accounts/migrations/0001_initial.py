# Generated manually for initial Tenant and Collective models.

from django.db import migrations, models
import django.db.models.deletion


class Migration(migrations.Migration):
    initial = True

    dependencies = [
        ("organizations", "0001_initial"),
    ]

    operations = [
        migrations.CreateModel(
            name="Tenant",
            fields=[
                (
                    "organization_ptr",
                    models.OneToOneField(
                        auto_created=True,
                        on_delete=django.db.models.deletion.CASCADE,
                        parent_link=True,
                        primary_key=True,
                        serialize=False,
                        to="organizations.organization",
                    ),
                ),
                ("subdomain", models.SlugField(help_text="Subdomain the tenant is served from", max_length=63, unique=True)),
                (
                    "ai_agents_enabled",
                    models.BooleanField(default=False, help_text="Whether autonomous agents may run tasks in this tenant"),
                ),
                (
                    "automations_enabled",
                    models.BooleanField(default=True, help_text="Whether automation rules are evaluated for this tenant"),
                ),
                (
                    "settings",
                    models.JSONField(blank=True, default=dict, help_text="Custom settings and preferences for this tenant"),
                ),
            ],
            options={
                "verbose_name": "Tenant",
                "verbose_name_plural": "Tenants",
            },
            bases=("organizations.organization",),
        ),
        migrations.CreateModel(
            name="Collective",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("name", models.CharField(max_length=255)),
                ("handle", models.SlugField(help_text="URL-friendly handle, unique within the tenant", max_length=100)),
                ("is_main", models.BooleanField(default=False, help_text="The tenant's default collective")),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "tenant",
                    models.ForeignKey(
                        help_text="The tenant that owns this collective",
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="collectives",
                        to="accounts.tenant",
                    ),
                ),
            ],
            options={
                "verbose_name": "Collective",
                "verbose_name_plural": "Collectives",
                "ordering": ["name"],
                "constraints": [
                    models.UniqueConstraint(fields=("tenant", "handle"), name="accounts_collective_unique_handle"),
                ],
            },
        ),
    ]
