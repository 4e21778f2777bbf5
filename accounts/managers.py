from django.db import models

from execution.context import ExecutionContext
from execution.exceptions import MissingContextError


class TenantScopedQuerySet(models.QuerySet):
    """
    Base queryset for tenant-scoped resources.

    Any model with a 'tenant' ForeignKey should use this as its manager.
    Background jobs read through for_current_tenant(), which scopes by the
    tenant (and collective, when set) established in the ExecutionContext.

    Example usage:
        class Note(models.Model):
            tenant = models.ForeignKey('accounts.Tenant', on_delete=models.CASCADE)
            text = models.TextField()

            objects = TenantScopedQuerySet.as_manager()

        # In a TenantScopedJob, after establish_tenant(tenant)
        notes = Note.objects.for_current_tenant()
    """

    def for_user(self, user):
        """
        Filter resources to tenants where the user is a member.

        Args:
            user: Django User instance

        Returns:
            Filtered queryset containing only accessible resources
        """
        return self.filter(tenant__organization_users__user=user).distinct()

    def for_tenant(self, tenant):
        return self.filter(tenant=tenant)

    def for_tenant_id(self, tenant_id):
        return self.filter(tenant_id=tenant_id)

    def for_current_tenant(self):
        """
        Filter resources to the tenant of the running unit of work.

        When a collective is also established and the model carries a
        'collective' field, results are narrowed to that collective.

        Raises:
            MissingContextError: if no tenant context has been established
        """
        context = ExecutionContext.current()
        if context.tenant_id is None:
            raise MissingContextError(
                f"{self.model.__name__} is tenant-scoped but no tenant context is set."
            )
        queryset = self.filter(tenant_id=context.tenant_id)
        if context.collective_id is not None and _has_field(self.model, "collective"):
            queryset = queryset.filter(collective_id=context.collective_id)
        return queryset

    def unscoped_for_system_job(self):
        """All rows across every tenant. Only for SystemJob sweeps."""
        return self.all()


def _has_field(model, name: str) -> bool:
    return any(field.name == name for field in model._meta.get_fields())
