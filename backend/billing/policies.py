# billing/policies.py
"""
Business policy functions for billing operations.

Policies answer: "Is this action allowed given the current state?"
They do NOT perform the action; that is the command's job.

Usage:
    from billing.policies import can_record_payment, assert_can_record_payment

    # Option 1: Check and get boolean + reason
    allowed, reason = can_record_payment(actor, invoice, amount, outstanding)
    if not allowed:
        return CommandResult.fail(reason)

    # Option 2: Assert and raise on failure
    assert_can_record_payment(actor, invoice, amount, outstanding)  # raises PolicyViolation

Policies are pure: they read the objects handed to them (and, for the
deletion guards, whether related rows exist) and never write.
"""

from decimal import Decimal

from django.core.exceptions import PermissionDenied

from billing.models import Invoice


class PolicyViolation(Exception):
    """Raised when a business policy is violated."""
    pass


# =============================================================================
# Tenant Boundary Policies
# =============================================================================

def check_tenant_boundary(actor, entity) -> bool:
    """Verify entity belongs to actor's organization."""
    entity_org_id = getattr(entity, "organization_id", None)
    if entity_org_id is None:
        organization = getattr(entity, "organization", None)
        entity_org_id = getattr(organization, "id", None)
    return entity_org_id is not None and entity_org_id == actor.organization.id


def assert_tenant_boundary(actor, entity) -> None:
    """Raise PermissionDenied if entity doesn't belong to actor's organization."""
    if not check_tenant_boundary(actor, entity):
        raise PermissionDenied("Cross-organization action denied.")


# =============================================================================
# Invoice Status Machine
# =============================================================================

S = Invoice.Status

INVOICE_TRANSITIONS = {
    S.DRAFT: frozenset({S.SENT, S.PAID, S.CANCELLED}),
    S.SENT: frozenset({S.PAID, S.OVERDUE, S.CANCELLED, S.DRAFT}),
    S.OVERDUE: frozenset({S.PAID, S.SENT, S.CANCELLED}),
    S.PAID: frozenset(),
    S.CANCELLED: frozenset(),
}

TERMINAL_STATUSES = frozenset(s for s, targets in INVOICE_TRANSITIONS.items() if not targets)


def can_transition_invoice(
    invoice,
    new_status: str,
    outstanding: Decimal = None,
    has_line_items: bool = True,
) -> tuple[bool, str]:
    """
    Check a status change against the transition table.

    Moving to paid also needs at least one line item and nothing
    outstanding.
    """
    if new_status not in S.values:
        return False, f"Invalid status '{new_status}'."

    current = invoice.status
    if new_status == current:
        return False, f"Invoice is already {current}."

    if new_status not in INVOICE_TRANSITIONS[current]:
        if current in TERMINAL_STATUSES:
            return False, f"Invoice is {current} and can no longer change status."
        return False, f"Cannot change invoice status from {current} to {new_status}."

    if new_status == S.PAID:
        if not has_line_items:
            return False, "Cannot mark an invoice without line items as paid."
        if outstanding is not None and outstanding > 0:
            return False, f"Cannot mark invoice as paid: {outstanding} is still outstanding."

    return True, ""


def can_edit_invoice(actor, invoice) -> tuple[bool, str]:
    """
    Invoice fields and line items are frozen once paid or cancelled.
    """
    if not check_tenant_boundary(actor, invoice):
        return False, "Cross-organization action denied."
    if invoice.status in TERMINAL_STATUSES:
        return False, f"Cannot modify a {invoice.status} invoice."
    return True, ""


def can_delete_invoice(actor, invoice) -> tuple[bool, str]:
    if not check_tenant_boundary(actor, invoice):
        return False, "Cross-organization action denied."
    if invoice.payments.exists():
        return False, "Cannot delete an invoice that has payments. Delete the payments first."
    return True, ""


# =============================================================================
# Payment Policies
# =============================================================================

def can_record_payment(actor, invoice, amount: Decimal, outstanding: Decimal) -> tuple[bool, str]:
    """
    Rules:
    - Invoice must not be paid or cancelled
    - Amount must be positive
    - Amount must not exceed the outstanding balance
    """
    if not check_tenant_boundary(actor, invoice):
        return False, "Cross-organization action denied."

    if invoice.status == S.CANCELLED:
        return False, "Cannot record a payment on a cancelled invoice."
    if invoice.status == S.PAID:
        return False, "Invoice is already paid."

    if amount <= 0:
        return False, "Payment amount must be greater than zero."

    if amount > outstanding:
        return False, (
            f"Payment of {amount} exceeds the outstanding balance of {outstanding}."
        )

    return True, ""


def assert_can_record_payment(actor, invoice, amount, outstanding) -> None:
    allowed, reason = can_record_payment(actor, invoice, amount, outstanding)
    if not allowed:
        raise PolicyViolation(reason)


def can_delete_payment(actor, payment) -> tuple[bool, str]:
    if not check_tenant_boundary(actor, payment):
        return False, "Cross-organization action denied."
    if payment.invoice.status == S.CANCELLED:
        return False, "Cannot delete a payment of a cancelled invoice."
    return True, ""


# =============================================================================
# Client / Project / Note Policies
# =============================================================================

def can_delete_client(actor, client) -> tuple[bool, str]:
    if not check_tenant_boundary(actor, client):
        return False, "Cross-organization action denied."
    if client.invoices.exists():
        return False, "Cannot delete a client that has invoices."
    return True, ""


def can_link_project(client, project) -> tuple[bool, str]:
    """An invoice's project must belong to the invoice's client."""
    if project is None:
        return True, ""
    if project.client_id != client.id:
        return False, "Project does not belong to the selected client."
    return True, ""


def check_date_range(start, end, start_label: str, end_label: str) -> tuple[bool, str]:
    if start and end and end < start:
        return False, f"{end_label} cannot be before {start_label}."
    return True, ""
