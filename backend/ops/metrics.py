"""
Prometheus metrics endpoint.

Metrics exposed:
- clientledger_request_duration_seconds: HTTP request duration histogram
- clientledger_active_requests: requests currently being processed
- clientledger_invoices: invoice count by status
- clientledger_outstanding_receivables: unpaid invoice balance per organization
"""
import logging
import re
import time
from decimal import Decimal

from django.db import DatabaseError
from django.db.models import Count, DecimalField, OuterRef, Subquery, Sum, Value
from django.db.models.functions import Coalesce
from django.http import HttpResponse
from django.views import View
from prometheus_client import CONTENT_TYPE_LATEST, Gauge, Histogram, generate_latest

logger = logging.getLogger(__name__)

REQUEST_DURATION = Histogram(
    "clientledger_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint", "status"],
    buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)

ACTIVE_REQUESTS = Gauge(
    "clientledger_active_requests",
    "Number of requests currently being processed",
)

INVOICES = Gauge(
    "clientledger_invoices",
    "Number of invoices by status",
    ["status"],
)

OUTSTANDING = Gauge(
    "clientledger_outstanding_receivables",
    "Sum of invoice totals minus payments for open invoices",
    ["organization"],
)

_ID_RE = re.compile(r"/\d+/")
_UUID_RE = re.compile(r"/[0-9a-f-]{36}/")


def collect_metrics():
    """Refresh the invoice gauges from the database."""
    from accounts.rls import rls_bypass
    from billing.models import Invoice, Payment

    open_statuses = (Invoice.Status.DRAFT, Invoice.Status.SENT, Invoice.Status.OVERDUE)
    money = DecimalField(max_digits=14, decimal_places=2)
    paid = (
        Payment.objects.filter(invoice=OuterRef("pk"))
        .values("invoice")
        .annotate(s=Sum("amount"))
        .values("s")
    )

    with rls_bypass():
        counts = {
            row["status"]: row["n"]
            for row in Invoice.objects.order_by().values("status").annotate(n=Count("id"))
        }

        balances = {
            str(public_id): Decimal("0.00")
            for public_id in Invoice.objects.order_by().values_list("organization__public_id", flat=True).distinct()
        }
        invoices = Invoice.objects.filter(status__in=open_statuses).annotate(
            paid=Coalesce(Subquery(paid, output_field=money), Value(Decimal("0.00")), output_field=money),
        ).values("organization__public_id", "total", "paid")
        for row in invoices:
            key = str(row["organization__public_id"])
            balances[key] += row["total"] - row["paid"]

    # Every status and every organization with invoices gets a sample, zeros included
    INVOICES.clear()
    for invoice_status in Invoice.Status.values:
        INVOICES.labels(status=invoice_status).set(counts.get(invoice_status, 0))

    OUTSTANDING.clear()
    for organization, balance in balances.items():
        OUTSTANDING.labels(organization=organization).set(float(balance))


class MetricsView(View):
    """
    Exposes metrics in Prometheus format at /_metrics/.
    Should be protected in production (internal network only).
    """

    def get(self, request):
        try:
            collect_metrics()
        except DatabaseError as e:
            logger.error("Error collecting metrics", extra={"error": str(e)})
        return HttpResponse(generate_latest(), content_type=CONTENT_TYPE_LATEST)


def track_request_metrics(get_response):
    """
    Middleware to track request duration metrics.

    Add to MIDDLEWARE after SecurityMiddleware:
        "ops.metrics.track_request_metrics",
    """

    def middleware(request):
        start = time.time()
        status = 500
        ACTIVE_REQUESTS.inc()
        try:
            response = get_response(request)
            status = response.status_code
            return response
        finally:
            ACTIVE_REQUESTS.dec()
            # Collapse ids so the endpoint label stays low-cardinality
            endpoint = _UUID_RE.sub("/{uuid}/", _ID_RE.sub("/{id}/", request.path))
            REQUEST_DURATION.labels(
                method=request.method,
                endpoint=endpoint[:50],
                status=f"{status // 100}xx",
            ).observe(time.time() - start)

    return middleware
