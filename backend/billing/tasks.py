"""
Celery tasks for billing housekeeping.

Tasks:
- mark_overdue_invoices_for_organization: overdue sweep for one organization
- mark_overdue_invoices_for_all: overdue sweep across every organization

The all-organizations sweep is scheduled daily via CELERY_BEAT_SCHEDULE.

Usage:
    from billing.tasks import mark_overdue_invoices_for_organization
    mark_overdue_invoices_for_organization.delay(organization_id=org.id)
"""
import logging

from celery import shared_task

logger = logging.getLogger(__name__)


@shared_task(
    bind=True,
    max_retries=3,
    default_retry_delay=60,
    autoretry_for=(Exception,),
    retry_backoff=True,
)
def mark_overdue_invoices_for_organization(self, organization_id: int) -> dict:
    """Sweep one organization's sent invoices past their due date."""
    from accounts.models import Organization
    from accounts.rls import rls_bypass
    from billing.commands import mark_overdue_invoices

    with rls_bypass():
        try:
            organization = Organization.objects.get(id=organization_id)
        except Organization.DoesNotExist:
            logger.error("Organization not found", extra={"org_id": organization_id})
            return {"error": f"Organization {organization_id} not found"}

    result = mark_overdue_invoices(organization=organization)
    return {"organization_id": organization_id, **result.data}


@shared_task(
    bind=True,
    max_retries=3,
    default_retry_delay=60,
    autoretry_for=(Exception,),
    retry_backoff=True,
)
def mark_overdue_invoices_for_all(self) -> dict:
    """Sweep every organization in one statement."""
    from billing.commands import mark_overdue_invoices

    result = mark_overdue_invoices()
    logger.info("Overdue sweep finished", extra=result.data)
    return result.data
