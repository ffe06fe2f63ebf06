# billing/admin.py
"""
Django admin configuration for billing models.

Clients, projects and notes are plain records and editable here.
Invoices, line items and payments carry derived money fields that only
the command layer (billing/commands.py) keeps consistent, so their admin
is view-only.
"""

from django.contrib import admin

from .models import (
    Client,
    Invoice,
    InvoiceLineItem,
    Note,
    OrganizationSequence,
    Payment,
    Project,
)


class ReadOnlyModelAdmin(admin.ModelAdmin):
    """View-only admin. Use the API/command layer to make changes."""

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


class ReadOnlyInline(admin.TabularInline):
    extra = 0
    can_delete = False

    def has_add_permission(self, request, obj=None):
        return False

    def has_change_permission(self, request, obj=None):
        return False


@admin.register(Client)
class ClientAdmin(admin.ModelAdmin):
    list_display = ("name", "company", "email", "organization", "created_at")
    list_filter = ("organization",)
    search_fields = ("name", "email", "company")


@admin.register(Project)
class ProjectAdmin(admin.ModelAdmin):
    list_display = ("name", "client", "status", "budget", "organization")
    list_filter = ("status", "organization")
    search_fields = ("name", "description", "client__name")


class LineItemInline(ReadOnlyInline):
    model = InvoiceLineItem
    fields = ("description", "quantity", "unit_price", "line_total")
    readonly_fields = fields


class PaymentInline(ReadOnlyInline):
    model = Payment
    fields = ("amount", "method", "reference", "paid_at", "created_by")
    readonly_fields = fields


@admin.register(Invoice)
class InvoiceAdmin(ReadOnlyModelAdmin):
    list_display = ("invoice_number", "client", "status", "issue_date", "due_date", "total", "organization")
    list_filter = ("status", "organization")
    search_fields = ("invoice_number", "client__name")
    inlines = [LineItemInline, PaymentInline]


@admin.register(Payment)
class PaymentAdmin(ReadOnlyModelAdmin):
    list_display = ("invoice", "amount", "method", "paid_at", "organization")
    list_filter = ("method", "organization")
    search_fields = ("invoice__invoice_number", "reference")


@admin.register(Note)
class NoteAdmin(admin.ModelAdmin):
    list_display = ("title", "client", "project", "invoice", "created_by", "created_at")
    list_filter = ("organization",)
    search_fields = ("title", "content")


@admin.register(OrganizationSequence)
class OrganizationSequenceAdmin(ReadOnlyModelAdmin):
    list_display = ("organization", "name", "next_value", "updated_at")
