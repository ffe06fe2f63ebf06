# tests/test_billing_commands.py
"""
Tests for the billing command layer.

Tests cover:
- Derived totals kept in sync by line item commands
- Payment acceptance, over-application, auto-paid
- Status transitions and terminal states
- Invoice numbering
- Deletion guards and cascades
- Admin-only mutations and the tenant boundary
"""

from datetime import date, timedelta
from decimal import Decimal

import pytest
from django.core.exceptions import PermissionDenied
from django.http import Http404

from billing.commands import (
    change_invoice_status,
    create_client,
    create_invoice,
    create_line_item,
    create_note,
    create_project,
    delete_client,
    delete_invoice,
    delete_line_item,
    delete_payment,
    delete_project,
    mark_overdue_invoices,
    recalculate_invoice,
    record_payment,
    update_invoice,
    update_line_item,
    update_project,
)
from billing.models import Invoice, InvoiceLineItem, Note, Payment, Project
from billing.policies import can_transition_invoice


D = Decimal


def _reload(invoice):
    invoice.refresh_from_db()
    return invoice


# =============================================================================
# Totals
# =============================================================================

@pytest.mark.django_db
class TestInvoiceTotals:
    def test_created_invoice_has_computed_totals(self, invoice):
        assert invoice.subtotal == D("125.00")
        assert invoice.tax_amount == D("12.50")
        assert invoice.total == D("137.50")
        assert sorted(invoice.line_items.values_list("line_total", flat=True)) == [D("25.00"), D("100.00")]

    def test_deleting_line_item_recomputes(self, admin_actor, invoice):
        design = invoice.line_items.get(description="Hosting")
        result = delete_line_item(admin_actor, design.pk)
        assert result.success, result.error

        _reload(invoice)
        assert invoice.subtotal == D("100.00")
        assert invoice.tax_amount == D("10.00")
        assert invoice.total == D("110.00")

    def test_adding_and_updating_line_items(self, admin_actor, invoice):
        result = create_line_item(admin_actor, invoice.pk, "Support", quantity=D("0.5"), unit_price=D("80.00"))
        assert result.success, result.error
        assert result.data.line_total == D("40.00")
        assert _reload(invoice).total == D("181.50")

        result = update_line_item(admin_actor, result.data.pk, quantity=D("1"))
        assert result.success, result.error
        assert result.data.line_total == D("80.00")
        assert _reload(invoice).subtotal == D("205.00")

    def test_tax_rate_change_recomputes(self, admin_actor, invoice):
        result = update_invoice(admin_actor, invoice.pk, tax_rate=D("20"))
        assert result.success, result.error
        _reload(invoice)
        assert invoice.tax_amount == D("25.00")
        assert invoice.total == D("150.00")

    def test_recalculate_repairs_stale_values(self, admin_actor, invoice):
        InvoiceLineItem.objects.filter(invoice=invoice).update(line_total=D("0.00"))
        Invoice.objects.filter(pk=invoice.pk).update(subtotal=0, tax_amount=0, total=0)

        result = recalculate_invoice(admin_actor, invoice.pk)
        assert result.success, result.error
        assert _reload(invoice).total == D("137.50")

    def test_total_cannot_drop_below_paid(self, admin_actor, invoice):
        assert record_payment(admin_actor, invoice.pk, "120.00").success

        design = invoice.line_items.get(description="Design")
        result = delete_line_item(admin_actor, design.pk)

        assert not result.success
        assert "already paid" in result.error
        # Rolled back: the line item is still there and totals unchanged
        assert InvoiceLineItem.objects.filter(pk=design.pk).exists()
        assert _reload(invoice).total == D("137.50")


# =============================================================================
# Payments
# =============================================================================

@pytest.mark.django_db
class TestPayments:
    def test_partial_payment_keeps_status(self, admin_actor, invoice):
        result = record_payment(admin_actor, invoice.pk, "100.00", method="card", reference="ch_1")
        assert result.success, result.error
        assert result.data.created_by == admin_actor.user
        assert _reload(invoice).status == Invoice.Status.SENT

    def test_settling_payment_marks_paid(self, admin_actor, invoice):
        assert record_payment(admin_actor, invoice.pk, "100.00").success
        result = record_payment(admin_actor, invoice.pk, "37.50")
        assert result.success, result.error
        assert _reload(invoice).status == Invoice.Status.PAID

    def test_over_application_rejected(self, admin_actor, invoice):
        result = record_payment(admin_actor, invoice.pk, "137.51")
        assert not result.success
        assert "exceeds the outstanding balance" in result.error
        assert not Payment.objects.filter(invoice=invoice).exists()

    @pytest.mark.parametrize("amount", [-5, 0, "abc", "NaN"])
    def test_invalid_amount_rejected(self, admin_actor, invoice, amount):
        result = record_payment(admin_actor, invoice.pk, amount)
        assert not result.success
        assert not Payment.objects.filter(invoice=invoice).exists()

    def test_no_payment_on_paid_or_cancelled(self, admin_actor, invoice):
        assert record_payment(admin_actor, invoice.pk, "137.50").success
        result = record_payment(admin_actor, invoice.pk, "1.00")
        assert not result.success
        assert result.error == "Invoice is already paid."

    def test_deleting_payment_reopens_paid_invoice(self, admin_actor, invoice):
        payment = record_payment(admin_actor, invoice.pk, "137.50").data
        assert _reload(invoice).status == Invoice.Status.PAID

        result = delete_payment(admin_actor, payment.pk)
        assert result.success, result.error
        assert _reload(invoice).status == Invoice.Status.SENT

    def test_zero_total_invoice_accepts_no_payment(self, admin_actor, customer, due_soon):
        empty = create_invoice(admin_actor, client_id=customer.pk, due_date=due_soon).data
        result = record_payment(admin_actor, empty.pk, "1.00")
        assert not result.success


# =============================================================================
# Status transitions
# =============================================================================

@pytest.mark.django_db
class TestStatusTransitions:
    def test_sent_to_overdue_and_back(self, admin_actor, invoice):
        assert change_invoice_status(admin_actor, invoice.pk, "overdue").success
        assert change_invoice_status(admin_actor, invoice.pk, "sent").success

    def test_cannot_mark_paid_with_balance(self, admin_actor, invoice):
        result = change_invoice_status(admin_actor, invoice.pk, "paid")
        assert not result.success
        assert "outstanding" in result.error

    def test_cannot_mark_empty_invoice_paid(self, admin_actor, customer, due_soon):
        empty = create_invoice(admin_actor, client_id=customer.pk, due_date=due_soon).data
        result = change_invoice_status(admin_actor, empty.pk, "paid")
        assert not result.success
        assert "line items" in result.error

    def test_cancelled_is_terminal(self, admin_actor, invoice):
        assert change_invoice_status(admin_actor, invoice.pk, "cancelled").success
        for target in ("draft", "sent", "paid", "overdue"):
            assert not change_invoice_status(admin_actor, invoice.pk, target).success

    def test_draft_cannot_become_overdue(self):
        draft = Invoice(status=Invoice.Status.DRAFT)
        allowed, reason = can_transition_invoice(draft, "overdue")
        assert not allowed
        assert "from draft to overdue" in reason

    def test_terminal_invoice_is_frozen(self, admin_actor, invoice):
        assert record_payment(admin_actor, invoice.pk, "137.50").success
        line = invoice.line_items.first()

        assert not create_line_item(admin_actor, invoice.pk, "Extra", D("1"), D("1")).success
        assert not update_line_item(admin_actor, line.pk, quantity=D("5")).success
        assert not delete_line_item(admin_actor, line.pk).success
        assert not update_invoice(admin_actor, invoice.pk, notes="late edit").success

    def test_mark_overdue_sweep(self, admin_actor, other_actor, invoice):
        # invoice fixture is sent and due 2024-03-31
        result = mark_overdue_invoices(today=date(2024, 4, 1))
        assert result.success
        assert result.data["updated"] == 1
        assert _reload(invoice).status == Invoice.Status.OVERDUE

    def test_mark_overdue_ignores_drafts_and_future(self, admin_actor, customer):
        create_invoice(admin_actor, client_id=customer.pk, due_date=date(2024, 1, 1), issue_date=date(2024, 1, 1))
        create_invoice(
            admin_actor, client_id=customer.pk, status="sent",
            issue_date=date(2024, 1, 1), due_date=date(2030, 1, 1),
        )
        result = mark_overdue_invoices(organization=admin_actor.organization, today=date(2024, 6, 1))
        assert result.data["updated"] == 0


# =============================================================================
# Invoice numbering
# =============================================================================

@pytest.mark.django_db
class TestInvoiceNumbers:
    def test_sequential_allocation(self, admin_actor, customer, due_soon):
        first = create_invoice(admin_actor, client_id=customer.pk, due_date=due_soon).data
        second = create_invoice(admin_actor, client_id=customer.pk, due_date=due_soon).data
        assert first.invoice_number == "INV-00001"
        assert second.invoice_number == "INV-00002"

    def test_manual_number_is_skipped_by_allocator(self, admin_actor, customer, due_soon):
        assert create_invoice(admin_actor, client_id=customer.pk, due_date=due_soon, invoice_number="INV-00001").success
        allocated = create_invoice(admin_actor, client_id=customer.pk, due_date=due_soon).data
        assert allocated.invoice_number == "INV-00002"

    def test_duplicate_number_rejected(self, admin_actor, customer, due_soon):
        assert create_invoice(admin_actor, client_id=customer.pk, due_date=due_soon, invoice_number="A-1").success
        result = create_invoice(admin_actor, client_id=customer.pk, due_date=due_soon, invoice_number="A-1")
        assert not result.success
        assert "already exists" in result.error

    def test_numbers_are_per_organization(self, admin_actor, other_actor, customer, due_soon):
        other_customer = create_client(other_actor, name="Initech").data
        mine = create_invoice(admin_actor, client_id=customer.pk, due_date=due_soon).data
        theirs = create_invoice(other_actor, client_id=other_customer.pk, due_date=due_soon).data
        assert mine.invoice_number == theirs.invoice_number == "INV-00001"

    def test_due_before_issue_rejected(self, admin_actor, customer):
        result = create_invoice(
            admin_actor, client_id=customer.pk,
            issue_date=date(2024, 5, 1), due_date=date(2024, 4, 1),
        )
        assert not result.success


# =============================================================================
# Deletion
# =============================================================================

@pytest.mark.django_db
class TestDeletion:
    def test_client_with_invoices_cannot_be_deleted(self, admin_actor, customer, invoice):
        result = delete_client(admin_actor, customer.pk)
        assert not result.success
        assert "has invoices" in result.error

    def test_client_delete_cascades_projects_and_unlinks_notes(self, admin_actor, customer):
        project = create_project(admin_actor, customer.pk, "Website").data
        note = create_note(admin_actor, "Call", "Discussed scope", client_id=customer.pk, project_id=project.pk).data

        assert delete_client(admin_actor, customer.pk).success
        assert not Project.objects.filter(pk=project.pk).exists()
        note.refresh_from_db()
        assert note.client is None
        assert note.project is None

    def test_invoice_with_payments_cannot_be_deleted(self, admin_actor, invoice):
        assert record_payment(admin_actor, invoice.pk, "10.00").success
        result = delete_invoice(admin_actor, invoice.pk)
        assert not result.success
        assert Invoice.objects.filter(pk=invoice.pk).exists()

    def test_invoice_delete_removes_line_items(self, admin_actor, invoice):
        assert delete_invoice(admin_actor, invoice.pk).success
        assert not InvoiceLineItem.objects.filter(invoice_id=invoice.pk).exists()

    def test_project_delete_unlinks_invoices(self, admin_actor, customer, due_soon):
        project = create_project(admin_actor, customer.pk, "Retainer").data
        inv = create_invoice(admin_actor, client_id=customer.pk, project_id=project.pk, due_date=due_soon).data

        assert delete_project(admin_actor, project.pk).success
        assert _reload(inv).project is None


# =============================================================================
# Authorization & tenant boundary
# =============================================================================

@pytest.mark.django_db
class TestAuthorization:
    def test_regular_user_cannot_mutate(self, user_actor, customer):
        with pytest.raises(PermissionDenied):
            create_client(user_actor, name="Nope")
        with pytest.raises(PermissionDenied):
            delete_client(user_actor, customer.pk)

    def test_other_organization_ids_are_not_found(self, other_actor, invoice):
        with pytest.raises(Http404):
            record_payment(other_actor, invoice.pk, "10.00")
        with pytest.raises(Http404):
            delete_invoice(other_actor, invoice.pk)

    def test_cannot_reference_foreign_client(self, other_actor, customer, due_soon):
        result = create_invoice(other_actor, client_id=customer.pk, due_date=due_soon)
        assert not result.success
        assert result.error == "Client not found."

    def test_project_must_belong_to_invoice_client(self, admin_actor, customer, due_soon):
        other = create_client(admin_actor, name="Umbrella").data
        project = create_project(admin_actor, other.pk, "Lab").data
        result = create_invoice(admin_actor, client_id=customer.pk, project_id=project.pk, due_date=due_soon)
        assert not result.success
        assert "does not belong" in result.error

    def test_project_with_invoices_cannot_change_client(self, admin_actor, customer, due_soon):
        project = create_project(admin_actor, customer.pk, "Retainer").data
        create_invoice(admin_actor, client_id=customer.pk, project_id=project.pk, due_date=due_soon)
        other = create_client(admin_actor, name="Umbrella").data

        result = update_project(admin_actor, project.pk, client_id=other.pk)
        assert not result.success

    def test_note_links_must_be_in_organization(self, other_actor, customer):
        result = create_note(other_actor, "Spy", "x", client_id=customer.pk)
        assert not result.success
        assert not Note.objects.exists()

    def test_project_date_range(self, admin_actor, customer):
        today = date.today()
        result = create_project(
            admin_actor, customer.pk, "Backwards",
            start_date=today, end_date=today - timedelta(days=1),
        )
        assert not result.success
