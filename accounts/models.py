from django.db import models
from organizations.models import Organization

from .managers import TenantScopedQuerySet


class Tenant(Organization):
    """
    Multi-table inheritance approach to add custom fields to Organization.

    Each Tenant is an isolated customer whose data must never be visible to
    another tenant's unit of work.
    """

    subdomain = models.SlugField(
        max_length=63,
        unique=True,
        help_text="Subdomain the tenant is served from",
    )
    ai_agents_enabled = models.BooleanField(
        default=False,
        help_text="Whether autonomous agents may run tasks in this tenant",
    )
    automations_enabled = models.BooleanField(
        default=True,
        help_text="Whether automation rules are evaluated for this tenant",
    )
    settings = models.JSONField(
        default=dict,
        blank=True,
        help_text="Custom settings and preferences for this tenant",
    )

    class Meta:
        verbose_name = "Tenant"
        verbose_name_plural = "Tenants"

    def __str__(self):
        return f"{self.name} ({self.subdomain})"

    @property
    def main_collective(self):
        return self.collectives.filter(is_main=True).first()


class Collective(models.Model):
    """
    Tenant-scoped group that notes, decisions and commitments belong to.
    """

    tenant = models.ForeignKey(
        Tenant,
        on_delete=models.CASCADE,
        related_name="collectives",
        help_text="The tenant that owns this collective",
    )
    name = models.CharField(max_length=255)
    handle = models.SlugField(
        max_length=100,
        help_text="URL-friendly handle, unique within the tenant",
    )
    is_main = models.BooleanField(
        default=False,
        help_text="The tenant's default collective",
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = TenantScopedQuerySet.as_manager()

    class Meta:
        verbose_name = "Collective"
        verbose_name_plural = "Collectives"
        ordering = ["name"]
        constraints = [
            models.UniqueConstraint(
                fields=["tenant", "handle"], name="accounts_collective_unique_handle"
            ),
        ]

    def __str__(self):
        return f"{self.name} (@{self.handle})"
