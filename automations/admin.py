from django.contrib import admin

from .models import AutomationRule, AutomationRuleRun, Event, WebhookDelivery


@admin.register(Event)
class EventAdmin(admin.ModelAdmin):
    list_display = ("id", "event_type", "tenant", "collective", "actor", "created_at")
    list_filter = ("event_type", "tenant")
    search_fields = ("event_type", "subject_type")
    raw_id_fields = ("tenant", "collective", "actor", "automation_rule_run")


@admin.register(AutomationRule)
class AutomationRuleAdmin(admin.ModelAdmin):
    list_display = (
        "name",
        "tenant",
        "trigger_type",
        "agent",
        "enabled",
        "execution_count",
        "last_executed_at",
    )
    list_filter = ("trigger_type", "enabled", "tenant")
    search_fields = ("name", "description")
    readonly_fields = ("execution_count", "last_executed_at", "created_at", "updated_at")
    raw_id_fields = ("tenant", "collective", "agent", "created_by")


@admin.register(AutomationRuleRun)
class AutomationRuleRunAdmin(admin.ModelAdmin):
    list_display = (
        "id",
        "automation_rule",
        "tenant",
        "trigger_source",
        "status",
        "created_at",
        "completed_at",
    )
    list_filter = ("status", "trigger_source", "tenant")
    search_fields = ("error", "task_id")
    readonly_fields = ("chain_metadata", "created_at", "updated_at", "started_at", "completed_at")
    raw_id_fields = ("tenant", "collective", "automation_rule", "triggered_by_event", "agent_task_run")


@admin.register(WebhookDelivery)
class WebhookDeliveryAdmin(admin.ModelAdmin):
    list_display = (
        "id",
        "url",
        "tenant",
        "status",
        "attempt_count",
        "next_retry_at",
        "response_code",
        "created_at",
    )
    list_filter = ("status", "tenant")
    search_fields = ("url", "error")
    readonly_fields = ("request_body", "response_body", "created_at", "updated_at", "delivered_at")
    raw_id_fields = ("tenant", "automation_rule_run", "event")
    exclude = ("secret",)
