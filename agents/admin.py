from django.contrib import admin

from .models import Agent, AgentTaskRun


@admin.register(Agent)
class AgentAdmin(admin.ModelAdmin):
    list_display = ["name", "handle", "is_active", "created_at"]
    list_filter = ["is_active"]
    search_fields = ["name", "handle"]
    raw_id_fields = ["user"]


@admin.register(AgentTaskRun)
class AgentTaskRunAdmin(admin.ModelAdmin):
    list_display = (
        "id",
        "agent",
        "tenant",
        "status",
        "success",
        "total_tokens",
        "estimated_cost_usd",
        "created_at",
        "started_at",
        "completed_at",
    )
    list_filter = ("status", "tenant", "created_at")
    search_fields = ("task", "final_message", "error")
    readonly_fields = ("created_at", "updated_at", "started_at", "completed_at")
    raw_id_fields = ("agent", "tenant", "collective", "initiated_by")
