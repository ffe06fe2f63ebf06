"""
Dashboard statistics for an organization.

Read-only aggregation over the billing tables; everything is filtered by
the organization passed in.
"""
from datetime import date
from decimal import Decimal

from django.conf import settings
from django.db.models import Count, DecimalField, Q, Sum, Value
from django.db.models.functions import Coalesce, TruncMonth
from django.utils import timezone

from billing.models import Client, Invoice, Payment, Project

ZERO = Decimal("0.00")
MONEY = DecimalField(max_digits=14, decimal_places=2)
RECENT_INVOICES = 5
REVENUE_MONTHS = 12


def _money_sum(field: str, **filters):
    return Coalesce(Sum(field, filter=Q(**filters) if filters else None), Value(ZERO), output_field=MONEY)


def _months_back(today: date, months: int) -> date:
    """First day of the month `months - 1` months before today's month."""
    index = today.year * 12 + (today.month - 1) - (months - 1)
    return date(index // 12, index % 12 + 1, 1)


def revenue_by_month(organization, today: date = None, months: int = REVENUE_MONTHS) -> list[dict]:
    """
    Paid invoice totals grouped by issue month, oldest first.

    Months without paid invoices are omitted.
    """
    today = today or timezone.localdate()
    rows = (
        Invoice.objects.filter(
            organization=organization,
            status=Invoice.Status.PAID,
            issue_date__gte=_months_back(today, months),
        )
        .annotate(month=TruncMonth("issue_date"))
        .values("month")
        .annotate(revenue=Sum("total"))
        .order_by("month")
    )
    return [
        {"month": row["month"].strftime("%Y-%m"), "revenue": row["revenue"]}
        for row in rows
    ]


def dashboard_stats(organization, today: date = None) -> dict:
    S = Invoice.Status

    invoices = Invoice.objects.filter(organization=organization).aggregate(
        total_invoices=Count("id"),
        paid_invoices=Count("id", filter=Q(status=S.PAID)),
        total_revenue=_money_sum("total", status=S.PAID),
        pending_revenue=_money_sum("total", status__in=[S.DRAFT, S.SENT]),
        open_total=_money_sum("total", status__in=[S.DRAFT, S.SENT, S.OVERDUE]),
    )
    open_paid = Payment.objects.filter(
        organization=organization,
        invoice__status__in=[S.DRAFT, S.SENT, S.OVERDUE],
    ).aggregate(paid=_money_sum("amount"))["paid"]

    projects = Project.objects.filter(organization=organization).aggregate(
        total_projects=Count("id"),
        active_projects=Count("id", filter=Q(status=Project.Status.ACTIVE)),
    )

    recent = (
        Invoice.objects.filter(organization=organization)
        .select_related("client")
        .order_by("-created_at", "-id")[:RECENT_INVOICES]
    )

    return {
        "currency": settings.DEFAULT_CURRENCY,
        "total_clients": Client.objects.filter(organization=organization).count(),
        "total_projects": projects["total_projects"],
        "active_projects": projects["active_projects"],
        "total_invoices": invoices["total_invoices"],
        "paid_invoices": invoices["paid_invoices"],
        "total_revenue": invoices["total_revenue"],
        "pending_revenue": invoices["pending_revenue"],
        "outstanding": invoices["open_total"] - open_paid,
        "recent_invoices": list(recent),
        "revenue_by_month": revenue_by_month(organization, today=today),
    }
