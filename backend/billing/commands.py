# billing/commands.py
"""
Command layer for billing operations.

Commands are the single point where business operations happen.
Views call commands; commands enforce rules and keep derived money fields
consistent.

Pattern:
1. Validate permissions (require_admin)
2. Load rows scoped to the actor's organization (locking the invoice)
3. Apply business policies (can_*)
4. Perform the operation and recompute derived fields
5. Log and return CommandResult

Ids taken from the URL that do not resolve inside the actor's organization
raise Http404; ids referenced from the request body fail with a message.
"""

import logging
from datetime import date
from decimal import Decimal

from django.conf import settings
from django.db import IntegrityError, transaction
from django.http import Http404
from django.utils import timezone

from accounts.authz import ActorContext, require_admin
from accounts.commands import CommandResult
from accounts.rls import rls_bypass
from billing.financials import (
    InvalidAmount,
    recompute_invoice_totals,
    recompute_line_total,
    summarize_invoice,
    validate_payment_amount,
    validate_tax_rate,
)
from billing.models import (
    Client,
    Invoice,
    InvoiceLineItem,
    Note,
    OrganizationSequence,
    Payment,
    Project,
)
from billing.policies import (
    can_delete_client,
    can_delete_invoice,
    can_delete_payment,
    can_edit_invoice,
    can_link_project,
    can_record_payment,
    can_transition_invoice,
    check_date_range,
)

logger = logging.getLogger(__name__)

CLIENT_FIELDS = ("name", "email", "phone", "company", "address", "notes")
PROJECT_FIELDS = ("name", "description", "status", "start_date", "end_date", "budget")
INVOICE_FIELDS = ("invoice_number", "issue_date", "due_date", "tax_rate", "notes")
LINE_ITEM_FIELDS = ("description", "quantity", "unit_price")
NOTE_FIELDS = ("title", "content")

INVOICE_NUMBER_SEQUENCE = "invoice_number"


# =============================================================================
# Helpers
# =============================================================================

def _get_owned(model, actor: ActorContext, pk, *, lock: bool = False):
    """Fetch a row of the actor's organization or raise Http404."""
    qs = model.objects.filter(organization=actor.organization)
    if lock:
        qs = qs.select_for_update()
    try:
        return qs.get(pk=pk)
    except model.DoesNotExist:
        raise Http404("Not found.")


def _find_owned(model, actor: ActorContext, pk):
    """Like _get_owned but returns None, for ids referenced in request bodies."""
    if pk is None:
        return None
    return model.objects.filter(organization=actor.organization, pk=pk).first()


def _lock_invoice(actor: ActorContext, invoice_id) -> Invoice:
    return _get_owned(Invoice, actor, invoice_id, lock=True)


def _next_organization_sequence(organization, name: str) -> int:
    """
    Allocate the next sequence value for an organization/name pair.
    Uses select_for_update to avoid concurrent duplicates.
    """
    try:
        seq = OrganizationSequence.objects.select_for_update().get(
            organization=organization,
            name=name,
        )
    except OrganizationSequence.DoesNotExist:
        try:
            with transaction.atomic():
                seq = OrganizationSequence.objects.create(
                    organization=organization,
                    name=name,
                    next_value=1,
                )
        except IntegrityError:
            seq = OrganizationSequence.objects.select_for_update().get(
                organization=organization,
                name=name,
            )

    value = seq.next_value
    seq.next_value = value + 1
    seq.save(update_fields=["next_value", "updated_at"])
    return value


def _allocate_invoice_number(organization) -> str:
    prefix = getattr(settings, "INVOICE_NUMBER_PREFIX", "INV-")
    while True:
        value = _next_organization_sequence(organization, INVOICE_NUMBER_SEQUENCE)
        number = f"{prefix}{value:05d}"
        # Skip numbers someone already typed in by hand
        if not Invoice.objects.filter(organization=organization, invoice_number=number).exists():
            return number


def _invoice_number_taken(organization, number: str, exclude_pk=None) -> bool:
    qs = Invoice.objects.filter(organization=organization, invoice_number=number)
    if exclude_pk is not None:
        qs = qs.exclude(pk=exclude_pk)
    return qs.exists()


def _refresh_invoice_totals(invoice: Invoice):
    """
    Recompute and persist subtotal/tax/total from the stored line items.

    Returns an error string when the totals are out of range or the new
    total would fall below what has already been paid; the caller must
    roll back in that case.
    """
    try:
        totals = recompute_invoice_totals(invoice.line_items.all(), invoice.tax_rate)
    except InvalidAmount as e:
        return str(e)
    summary = summarize_invoice(totals, invoice.payments.all())
    if summary.outstanding < 0:
        return (
            f"Invoice total {totals.total} would be less than the "
            f"{summary.paid} already paid."
        )

    invoice.subtotal = totals.subtotal
    invoice.tax_amount = totals.tax_amount
    invoice.total = totals.total
    invoice.save(update_fields=["subtotal", "tax_amount", "total", "updated_at"])
    return None


def _fail_and_rollback(error: str) -> CommandResult:
    transaction.set_rollback(True)
    return CommandResult.fail(error)


# =============================================================================
# Clients
# =============================================================================

@transaction.atomic
def create_client(actor: ActorContext, name: str, **fields) -> CommandResult:
    require_admin(actor)

    name = (name or "").strip()
    if not name:
        return CommandResult.fail("Client name is required.")

    client = Client.objects.create(
        organization=actor.organization,
        name=name,
        **{k: v for k, v in fields.items() if k in CLIENT_FIELDS},
    )
    logger.info("Client created", extra={"client_id": client.pk, "org_id": actor.organization.pk})
    return CommandResult.ok(client)


@transaction.atomic
def update_client(actor: ActorContext, client_id: int, **changes) -> CommandResult:
    require_admin(actor)
    client = _get_owned(Client, actor, client_id, lock=True)

    if "name" in changes:
        changes["name"] = (changes["name"] or "").strip()
        if not changes["name"]:
            return CommandResult.fail("Client name is required.")

    for field in CLIENT_FIELDS:
        if field in changes:
            setattr(client, field, changes[field])
    client.save()

    logger.info("Client updated", extra={"client_id": client.pk, "org_id": actor.organization.pk})
    return CommandResult.ok(client)


@transaction.atomic
def delete_client(actor: ActorContext, client_id: int) -> CommandResult:
    """Delete a client and its projects. Blocked while the client has invoices."""
    require_admin(actor)
    client = _get_owned(Client, actor, client_id, lock=True)

    allowed, reason = can_delete_client(actor, client)
    if not allowed:
        return CommandResult.fail(reason)

    pk = client.pk
    client.delete()
    logger.info("Client deleted", extra={"client_id": pk, "org_id": actor.organization.pk})
    return CommandResult.ok()


# =============================================================================
# Projects
# =============================================================================

@transaction.atomic
def create_project(actor: ActorContext, client_id: int, name: str, **fields) -> CommandResult:
    require_admin(actor)

    client = _find_owned(Client, actor, client_id)
    if client is None:
        return CommandResult.fail("Client not found.")

    name = (name or "").strip()
    if not name:
        return CommandResult.fail("Project name is required.")

    fields = {k: v for k, v in fields.items() if k in PROJECT_FIELDS}
    allowed, reason = check_date_range(
        fields.get("start_date"), fields.get("end_date"), "start date", "End date",
    )
    if not allowed:
        return CommandResult.fail(reason)

    project = Project.objects.create(
        organization=actor.organization,
        client=client,
        name=name,
        **fields,
    )
    logger.info(
        "Project created",
        extra={"project_id": project.pk, "client_id": client.pk, "org_id": actor.organization.pk},
    )
    return CommandResult.ok(project)


@transaction.atomic
def update_project(actor: ActorContext, project_id: int, **changes) -> CommandResult:
    require_admin(actor)
    project = _get_owned(Project, actor, project_id, lock=True)

    if "client_id" in changes and changes["client_id"] != project.client_id:
        client = _find_owned(Client, actor, changes["client_id"])
        if client is None:
            return CommandResult.fail("Client not found.")
        if project.invoices.exists():
            return CommandResult.fail("Cannot move a project that has invoices to another client.")
        project.client = client

    if "name" in changes:
        changes["name"] = (changes["name"] or "").strip()
        if not changes["name"]:
            return CommandResult.fail("Project name is required.")

    for field in PROJECT_FIELDS:
        if field in changes:
            setattr(project, field, changes[field])

    allowed, reason = check_date_range(project.start_date, project.end_date, "start date", "End date")
    if not allowed:
        return CommandResult.fail(reason)

    project.save()
    logger.info("Project updated", extra={"project_id": project.pk, "org_id": actor.organization.pk})
    return CommandResult.ok(project)


@transaction.atomic
def delete_project(actor: ActorContext, project_id: int) -> CommandResult:
    """Delete a project. Its invoices stay, unlinked from the project."""
    require_admin(actor)
    project = _get_owned(Project, actor, project_id, lock=True)

    pk = project.pk
    project.delete()
    logger.info("Project deleted", extra={"project_id": pk, "org_id": actor.organization.pk})
    return CommandResult.ok()


# =============================================================================
# Invoices
# =============================================================================

@transaction.atomic
def create_invoice(
    actor: ActorContext,
    client_id: int,
    due_date: date,
    project_id: int = None,
    invoice_number: str = None,
    issue_date: date = None,
    status: str = Invoice.Status.DRAFT,
    tax_rate=Decimal("0.00"),
    notes: str = "",
    line_items: list = None,
) -> CommandResult:
    """
    Create an invoice, optionally with its initial line items.

    The invoice number is allocated from the organization's sequence when
    not given. Totals are computed from the line items before returning.
    """
    require_admin(actor)

    client = _find_owned(Client, actor, client_id)
    if client is None:
        return CommandResult.fail("Client not found.")

    project = None
    if project_id is not None:
        project = _find_owned(Project, actor, project_id)
        if project is None:
            return CommandResult.fail("Project not found.")
        allowed, reason = can_link_project(client, project)
        if not allowed:
            return CommandResult.fail(reason)

    if status not in (Invoice.Status.DRAFT, Invoice.Status.SENT):
        return CommandResult.fail("New invoices must be draft or sent.")

    issue_date = issue_date or timezone.localdate()
    allowed, reason = check_date_range(issue_date, due_date, "issue date", "Due date")
    if not allowed:
        return CommandResult.fail(reason)

    try:
        tax_rate = validate_tax_rate(tax_rate)
    except InvalidAmount as e:
        return CommandResult.fail(str(e))

    invoice_number = (invoice_number or "").strip()
    if invoice_number:
        if _invoice_number_taken(actor.organization, invoice_number):
            return CommandResult.fail(f"Invoice number '{invoice_number}' already exists.")
    else:
        invoice_number = _allocate_invoice_number(actor.organization)

    invoice = Invoice.objects.create(
        organization=actor.organization,
        client=client,
        project=project,
        invoice_number=invoice_number,
        issue_date=issue_date,
        due_date=due_date,
        status=status,
        tax_rate=tax_rate,
        notes=notes or "",
    )

    for item in line_items or []:
        try:
            line_total = recompute_line_total(item["quantity"], item["unit_price"])
        except InvalidAmount as e:
            return _fail_and_rollback(str(e))
        InvoiceLineItem.objects.create(
            organization=actor.organization,
            invoice=invoice,
            description=item["description"],
            quantity=item["quantity"],
            unit_price=item["unit_price"],
            line_total=line_total,
        )
    error = _refresh_invoice_totals(invoice)
    if error:
        return _fail_and_rollback(error)

    logger.info(
        "Invoice created",
        extra={
            "invoice_id": invoice.pk,
            "invoice_number": invoice.invoice_number,
            "org_id": actor.organization.pk,
            "total": str(invoice.total),
        },
    )
    return CommandResult.ok(invoice)


@transaction.atomic
def update_invoice(actor: ActorContext, invoice_id: int, **changes) -> CommandResult:
    """
    Partially update invoice header fields.

    Status is not changed here (see change_invoice_status). A tax_rate
    change recomputes the totals.
    """
    require_admin(actor)
    invoice = _lock_invoice(actor, invoice_id)

    allowed, reason = can_edit_invoice(actor, invoice)
    if not allowed:
        return CommandResult.fail(reason)

    client = invoice.client
    if "client_id" in changes and changes["client_id"] != invoice.client_id:
        client = _find_owned(Client, actor, changes["client_id"])
        if client is None:
            return CommandResult.fail("Client not found.")

    project = invoice.project
    if "project_id" in changes:
        project = None
        if changes["project_id"] is not None:
            project = _find_owned(Project, actor, changes["project_id"])
            if project is None:
                return CommandResult.fail("Project not found.")
    allowed, reason = can_link_project(client, project)
    if not allowed:
        return CommandResult.fail(reason)

    if "invoice_number" in changes:
        number = (changes["invoice_number"] or "").strip()
        if not number:
            return CommandResult.fail("Invoice number cannot be blank.")
        if _invoice_number_taken(actor.organization, number, exclude_pk=invoice.pk):
            return CommandResult.fail(f"Invoice number '{number}' already exists.")
        changes["invoice_number"] = number

    if "tax_rate" in changes:
        try:
            changes["tax_rate"] = validate_tax_rate(changes["tax_rate"])
        except InvalidAmount as e:
            return CommandResult.fail(str(e))

    invoice.client = client
    invoice.project = project
    for field in INVOICE_FIELDS:
        if field in changes:
            setattr(invoice, field, changes[field])

    allowed, reason = check_date_range(invoice.issue_date, invoice.due_date, "issue date", "Due date")
    if not allowed:
        return CommandResult.fail(reason)

    invoice.save()
    if "tax_rate" in changes:
        error = _refresh_invoice_totals(invoice)
        if error:
            return _fail_and_rollback(error)

    logger.info("Invoice updated", extra={"invoice_id": invoice.pk, "org_id": actor.organization.pk})
    return CommandResult.ok(invoice)


@transaction.atomic
def delete_invoice(actor: ActorContext, invoice_id: int) -> CommandResult:
    """Delete an invoice and its line items. Blocked while payments exist."""
    require_admin(actor)
    invoice = _lock_invoice(actor, invoice_id)

    allowed, reason = can_delete_invoice(actor, invoice)
    if not allowed:
        return CommandResult.fail(reason)

    pk, number = invoice.pk, invoice.invoice_number
    invoice.delete()
    logger.info(
        "Invoice deleted",
        extra={"invoice_id": pk, "invoice_number": number, "org_id": actor.organization.pk},
    )
    return CommandResult.ok()


@transaction.atomic
def change_invoice_status(actor: ActorContext, invoice_id: int, status: str) -> CommandResult:
    require_admin(actor)
    invoice = _lock_invoice(actor, invoice_id)

    summary = summarize_invoice(invoice, invoice.payments.all())
    allowed, reason = can_transition_invoice(
        invoice,
        status,
        outstanding=summary.outstanding,
        has_line_items=invoice.line_items.exists(),
    )
    if not allowed:
        return CommandResult.fail(reason)

    previous = invoice.status
    invoice.status = status
    invoice.save(update_fields=["status", "updated_at"])

    logger.info(
        "Invoice status changed",
        extra={
            "invoice_id": invoice.pk,
            "org_id": actor.organization.pk,
            "from_status": previous,
            "to_status": status,
        },
    )
    return CommandResult.ok(invoice)


@transaction.atomic
def recalculate_invoice(actor: ActorContext, invoice_id: int) -> CommandResult:
    """Recompute every line total and the invoice totals from stored inputs."""
    require_admin(actor)
    invoice = _lock_invoice(actor, invoice_id)

    for item in invoice.line_items.all():
        try:
            line_total = recompute_line_total(item.quantity, item.unit_price)
        except InvalidAmount as e:
            return _fail_and_rollback(str(e))
        if line_total != item.line_total:
            item.line_total = line_total
            item.save(update_fields=["line_total", "updated_at"])

    error = _refresh_invoice_totals(invoice)
    if error:
        return _fail_and_rollback(error)
    return CommandResult.ok(invoice)


def mark_overdue_invoices(organization=None, today: date = None) -> CommandResult:
    """
    Move sent invoices past their due date to overdue.

    System command for the scheduled sweep: runs for one organization, or
    for all of them (under RLS bypass) when organization is None.
    """
    today = today or timezone.localdate()

    with rls_bypass(), transaction.atomic():
        qs = Invoice.objects.filter(status=Invoice.Status.SENT, due_date__lt=today)
        if organization is not None:
            qs = qs.filter(organization=organization)
        updated = qs.update(status=Invoice.Status.OVERDUE, updated_at=timezone.now())

    logger.info(
        "Overdue invoices marked",
        extra={
            "updated": updated,
            "org_id": getattr(organization, "pk", None),
            "as_of": today.isoformat(),
        },
    )
    return CommandResult.ok({"updated": updated})


# =============================================================================
# Line Items
# =============================================================================

@transaction.atomic
def create_line_item(
    actor: ActorContext,
    invoice_id: int,
    description: str,
    quantity=Decimal("1"),
    unit_price=Decimal("0.00"),
) -> CommandResult:
    require_admin(actor)
    invoice = _lock_invoice(actor, invoice_id)

    allowed, reason = can_edit_invoice(actor, invoice)
    if not allowed:
        return CommandResult.fail(reason)

    description = (description or "").strip()
    if not description:
        return CommandResult.fail("Description is required.")

    try:
        line_total = recompute_line_total(quantity, unit_price)
    except InvalidAmount as e:
        return CommandResult.fail(str(e))

    item = InvoiceLineItem.objects.create(
        organization=actor.organization,
        invoice=invoice,
        description=description,
        quantity=quantity,
        unit_price=unit_price,
        line_total=line_total,
    )
    error = _refresh_invoice_totals(invoice)
    if error:
        return _fail_and_rollback(error)

    logger.info(
        "Line item created",
        extra={"line_item_id": item.pk, "invoice_id": invoice.pk, "line_total": str(line_total)},
    )
    return CommandResult.ok(item)


def _lock_line_item(actor: ActorContext, line_item_id: int):
    item = _get_owned(InvoiceLineItem, actor, line_item_id)
    invoice = _lock_invoice(actor, item.invoice_id)
    item = InvoiceLineItem.objects.select_for_update().get(pk=item.pk)
    return item, invoice


@transaction.atomic
def update_line_item(actor: ActorContext, line_item_id: int, **changes) -> CommandResult:
    require_admin(actor)
    item, invoice = _lock_line_item(actor, line_item_id)

    allowed, reason = can_edit_invoice(actor, invoice)
    if not allowed:
        return CommandResult.fail(reason)

    if "description" in changes:
        changes["description"] = (changes["description"] or "").strip()
        if not changes["description"]:
            return CommandResult.fail("Description is required.")

    for field in LINE_ITEM_FIELDS:
        if field in changes:
            setattr(item, field, changes[field])

    try:
        item.line_total = recompute_line_total(item.quantity, item.unit_price)
    except InvalidAmount as e:
        return CommandResult.fail(str(e))
    item.save()

    error = _refresh_invoice_totals(invoice)
    if error:
        return _fail_and_rollback(error)

    logger.info(
        "Line item updated",
        extra={"line_item_id": item.pk, "invoice_id": invoice.pk, "line_total": str(item.line_total)},
    )
    return CommandResult.ok(item)


@transaction.atomic
def delete_line_item(actor: ActorContext, line_item_id: int) -> CommandResult:
    require_admin(actor)
    item, invoice = _lock_line_item(actor, line_item_id)

    allowed, reason = can_edit_invoice(actor, invoice)
    if not allowed:
        return CommandResult.fail(reason)

    pk = item.pk
    item.delete()
    error = _refresh_invoice_totals(invoice)
    if error:
        return _fail_and_rollback(error)

    logger.info("Line item deleted", extra={"line_item_id": pk, "invoice_id": invoice.pk})
    return CommandResult.ok(invoice)


# =============================================================================
# Payments
# =============================================================================

@transaction.atomic
def record_payment(
    actor: ActorContext,
    invoice_id: int,
    amount,
    method: str = Payment.Method.EFT,
    reference: str = "",
    paid_at=None,
) -> CommandResult:
    """
    Record a payment against an invoice.

    The amount must be positive and may not exceed the outstanding balance.
    A payment that settles an invoice with a positive total moves it to paid.
    """
    require_admin(actor)

    try:
        amount = validate_payment_amount(amount)
    except InvalidAmount as e:
        return CommandResult.fail(str(e))

    if method not in Payment.Method.values:
        return CommandResult.fail(f"Invalid payment method '{method}'.")

    invoice = _lock_invoice(actor, invoice_id)
    summary = summarize_invoice(invoice, invoice.payments.all())

    allowed, reason = can_record_payment(actor, invoice, amount, summary.outstanding)
    if not allowed:
        return CommandResult.fail(reason)

    payment = Payment.objects.create(
        organization=actor.organization,
        invoice=invoice,
        amount=amount,
        method=method,
        reference=reference or "",
        paid_at=paid_at or timezone.now(),
        created_by=actor.user,
    )

    if summary.outstanding - amount <= 0 and invoice.total > 0:
        invoice.status = Invoice.Status.PAID
        invoice.save(update_fields=["status", "updated_at"])

    logger.info(
        "Payment recorded",
        extra={
            "payment_id": payment.pk,
            "invoice_id": invoice.pk,
            "org_id": actor.organization.pk,
            "amount": str(amount),
            "invoice_status": invoice.status,
        },
    )
    return CommandResult.ok(payment)


@transaction.atomic
def delete_payment(actor: ActorContext, payment_id: int) -> CommandResult:
    """
    Delete a payment. A paid invoice that has a balance again goes back
    to sent.
    """
    require_admin(actor)
    payment = _get_owned(Payment, actor, payment_id)
    invoice = _lock_invoice(actor, payment.invoice_id)

    allowed, reason = can_delete_payment(actor, payment)
    if not allowed:
        return CommandResult.fail(reason)

    pk, amount = payment.pk, payment.amount
    payment.delete()

    summary = summarize_invoice(invoice, invoice.payments.all())
    if invoice.status == Invoice.Status.PAID and summary.outstanding > 0:
        invoice.status = Invoice.Status.SENT
        invoice.save(update_fields=["status", "updated_at"])

    logger.info(
        "Payment deleted",
        extra={
            "payment_id": pk,
            "invoice_id": invoice.pk,
            "amount": str(amount),
            "invoice_status": invoice.status,
        },
    )
    return CommandResult.ok(invoice)


# =============================================================================
# Notes
# =============================================================================

def _resolve_note_links(actor: ActorContext, links: dict):
    """Map client_id/project_id/invoice_id to instances; returns (resolved, error)."""
    resolved = {}
    for key, model, label in (
        ("client_id", Client, "Client"),
        ("project_id", Project, "Project"),
        ("invoice_id", Invoice, "Invoice"),
    ):
        if key not in links:
            continue
        value = links[key]
        if value is None:
            resolved[key[:-3]] = None
            continue
        instance = _find_owned(model, actor, value)
        if instance is None:
            return None, f"{label} not found."
        resolved[key[:-3]] = instance
    return resolved, None


@transaction.atomic
def create_note(actor: ActorContext, title: str, content: str, **links) -> CommandResult:
    require_admin(actor)

    title = (title or "").strip()
    if not title:
        return CommandResult.fail("Title is required.")
    if not (content or "").strip():
        return CommandResult.fail("Content is required.")

    resolved, error = _resolve_note_links(actor, links)
    if error:
        return CommandResult.fail(error)

    note = Note.objects.create(
        organization=actor.organization,
        title=title,
        content=content,
        created_by=actor.user,
        **resolved,
    )
    logger.info("Note created", extra={"note_id": note.pk, "org_id": actor.organization.pk})
    return CommandResult.ok(note)


@transaction.atomic
def update_note(actor: ActorContext, note_id: int, **changes) -> CommandResult:
    require_admin(actor)
    note = _get_owned(Note, actor, note_id, lock=True)

    if "title" in changes:
        changes["title"] = (changes["title"] or "").strip()
        if not changes["title"]:
            return CommandResult.fail("Title is required.")
    if "content" in changes and not (changes["content"] or "").strip():
        return CommandResult.fail("Content is required.")

    resolved, error = _resolve_note_links(actor, changes)
    if error:
        return CommandResult.fail(error)

    for field in NOTE_FIELDS:
        if field in changes:
            setattr(note, field, changes[field])
    for field, value in resolved.items():
        setattr(note, field, value)
    note.save()

    logger.info("Note updated", extra={"note_id": note.pk, "org_id": actor.organization.pk})
    return CommandResult.ok(note)


@transaction.atomic
def delete_note(actor: ActorContext, note_id: int) -> CommandResult:
    require_admin(actor)
    note = _get_owned(Note, actor, note_id, lock=True)

    pk = note.pk
    note.delete()
    logger.info("Note deleted", extra={"note_id": pk, "org_id": actor.organization.pk})
    return CommandResult.ok()
