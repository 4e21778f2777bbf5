from django.contrib import admin

from .models import Collective, Tenant


@admin.register(Tenant)
class TenantAdmin(admin.ModelAdmin):
    list_display = ["name", "subdomain", "ai_agents_enabled", "automations_enabled", "is_active"]
    list_filter = ["ai_agents_enabled", "automations_enabled", "is_active"]
    search_fields = ["name", "subdomain"]


@admin.register(Collective)
class CollectiveAdmin(admin.ModelAdmin):
    list_display = ["name", "handle", "tenant", "is_main", "created_at"]
    list_filter = ["is_main", "tenant"]
    search_fields = ["name", "handle"]
    raw_id_fields = ["tenant"]
