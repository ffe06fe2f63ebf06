# tests/test_reports_and_tasks.py
"""
Dashboard aggregation and the scheduled overdue sweep.
"""

from datetime import date
from decimal import Decimal

import pytest

from billing.commands import create_invoice, create_project, record_payment
from billing.models import Invoice
from billing.reports import dashboard_stats, revenue_by_month
from billing.tasks import mark_overdue_invoices_for_all, mark_overdue_invoices_for_organization


@pytest.mark.django_db
class TestRevenueByMonth:
    def test_paid_invoices_grouped_by_issue_month(self, admin_actor, invoice):
        assert record_payment(admin_actor, invoice.pk, "137.50").success

        rows = revenue_by_month(admin_actor.organization, today=date(2024, 6, 15))
        assert rows == [{"month": "2024-03", "revenue": Decimal("137.50")}]

    def test_window_excludes_older_months(self, admin_actor, invoice):
        assert record_payment(admin_actor, invoice.pk, "137.50").success

        assert revenue_by_month(admin_actor.organization, today=date(2024, 6, 15), months=3) == []

    def test_unpaid_invoices_do_not_count(self, admin_actor, invoice):
        assert revenue_by_month(admin_actor.organization, today=date(2024, 6, 15)) == []


@pytest.mark.django_db
class TestDashboardStats:
    def test_counts_and_money(self, admin_actor, customer, invoice, due_soon):
        assert create_project(admin_actor, customer.pk, "Website").success
        draft = create_invoice(
            admin_actor,
            client_id=customer.pk,
            due_date=due_soon,
            line_items=[{"description": "Retainer", "quantity": 1, "unit_price": Decimal("200.00")}],
        ).data
        assert record_payment(admin_actor, invoice.pk, "37.50").success

        stats = dashboard_stats(admin_actor.organization, today=date(2024, 6, 15))

        assert stats["total_clients"] == 1
        assert stats["total_projects"] == 1
        assert stats["active_projects"] == 1
        assert stats["total_invoices"] == 2
        assert stats["paid_invoices"] == 0
        assert stats["total_revenue"] == Decimal("0.00")
        assert stats["pending_revenue"] == Decimal("337.50")
        # 137.50 - 37.50 on the sent invoice, plus the 200.00 draft
        assert stats["outstanding"] == Decimal("300.00")
        assert [i.pk for i in stats["recent_invoices"]] == [draft.pk, invoice.pk]

    def test_other_organization_is_not_counted(self, other_actor, invoice):
        stats = dashboard_stats(other_actor.organization)
        assert stats["total_clients"] == 0
        assert stats["total_invoices"] == 0
        assert stats["outstanding"] == Decimal("0.00")
        assert stats["recent_invoices"] == []

    def test_dashboard_endpoint(self, user_client, invoice):
        res = user_client.get("/api/billing/dashboard/")
        assert res.status_code == 200
        assert res.data["total_invoices"] == 1
        assert res.data["outstanding"] == "137.50"
        assert res.data["recent_invoices"][0]["invoice_number"] == invoice.invoice_number


@pytest.mark.django_db
class TestOverdueTasks:
    def test_organization_sweep(self, admin_actor, invoice):
        result = mark_overdue_invoices_for_organization.apply(
            kwargs={"organization_id": admin_actor.organization.pk},
        ).get()

        assert result == {"organization_id": admin_actor.organization.pk, "updated": 1}
        invoice.refresh_from_db()
        assert invoice.status == Invoice.Status.OVERDUE

    def test_unknown_organization(self, db):
        result = mark_overdue_invoices_for_organization.apply(kwargs={"organization_id": 999999}).get()
        assert result == {"error": "Organization 999999 not found"}

    def test_all_organizations_sweep(self, invoice):
        assert mark_overdue_invoices_for_all.apply().get() == {"updated": 1}
        assert mark_overdue_invoices_for_all.apply().get() == {"updated": 0}
