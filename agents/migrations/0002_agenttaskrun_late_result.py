# Generated manually to keep results that arrive after a run was finalized.

from django.db import migrations, models


class Migration(migrations.Migration):
    dependencies = [
        ("agents", "0001_initial"),
    ]

    operations = [
        migrations.AddField(
            model_name="agenttaskrun",
            name="late_result",
            field=models.JSONField(
                blank=True,
                help_text="Outcome reported after the run was already finalized (e.g., by stuck-task recovery)",
                null=True,
            ),
        ),
    ]
