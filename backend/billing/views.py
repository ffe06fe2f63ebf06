# billing/views.py
"""
Thin views for the billing API.

Views handle: HTTP parsing, actor resolution, response formatting.
Commands handle: authorization, business rules, logging.

Every read is filtered by the actor's organization, so ids from another
organization are indistinguishable from missing ones (404).
"""

from django.db.models import DecimalField, OuterRef, Q, Subquery, Sum
from django.http import Http404
from rest_framework import status
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from accounts.authz import resolve_actor
from ops.operations import execute_command

from .commands import (
    change_invoice_status,
    create_client,
    create_invoice,
    create_line_item,
    create_note,
    create_project,
    delete_client,
    delete_invoice,
    delete_line_item,
    delete_note,
    delete_payment,
    delete_project,
    record_payment,
    update_client,
    update_invoice,
    update_line_item,
    update_note,
    update_project,
)
from .exports import ExportFormat, INVOICE_EXPORT_COLUMNS, create_export_response, prepare_invoice_export_data
from .models import Client, Invoice, InvoiceLineItem, Note, Payment, Project
from .reports import dashboard_stats
from .serializers import (
    ClientInputSerializer,
    ClientSerializer,
    DashboardSerializer,
    InvoiceCreateSerializer,
    InvoiceDetailSerializer,
    InvoiceSerializer,
    InvoiceStatusSerializer,
    InvoiceUpdateSerializer,
    LineItemInputSerializer,
    LineItemSerializer,
    NoteInputSerializer,
    NoteSerializer,
    PaymentInputSerializer,
    PaymentSerializer,
    ProjectInputSerializer,
    ProjectSerializer,
)


def _bad_request(result):
    return Response({"detail": result.error}, status=status.HTTP_400_BAD_REQUEST)


def _int_param(request, name):
    """Integer query parameter, or None when absent or malformed."""
    value = request.query_params.get(name)
    if value in (None, ""):
        return None
    try:
        return int(value)
    except ValueError:
        return None


def _get_or_404(queryset, **lookup):
    """Like django.shortcuts.get_object_or_404, with one message for every miss."""
    if not hasattr(queryset, "filter"):
        queryset = queryset.objects
    obj = queryset.filter(**lookup).first()
    if obj is None:
        raise Http404("Not found.")
    return obj


def _invoice_queryset(actor):
    return Invoice.objects.filter(
        organization=actor.organization,
    ).select_related("client", "project")


# =============================================================================
# Clients
# =============================================================================

class ClientListCreateView(APIView):
    """
    GET /api/billing/clients/?search= -> list clients
    POST /api/billing/clients/ -> create client (admin)
    """
    permission_classes = [IsAuthenticated]

    def get(self, request):
        actor = resolve_actor(request)
        clients = Client.objects.filter(organization=actor.organization)

        search = request.query_params.get("search", "").strip()
        if search:
            clients = clients.filter(
                Q(name__icontains=search)
                | Q(email__icontains=search)
                | Q(company__icontains=search)
            )

        clients = clients.order_by("-created_at", "-id")
        return Response(ClientSerializer(clients, many=True).data)

    def post(self, request):
        actor = resolve_actor(request)
        serializer = ClientInputSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = execute_command(
            request,
            create_client,
            actor,
            success_message="Client created successfully",
            failure_message="Failed to create client",
            **serializer.validated_data,
        )
        if not result.success:
            return _bad_request(result)
        return Response(ClientSerializer(result.data).data, status=status.HTTP_201_CREATED)


class ClientDetailView(APIView):
    """GET / PATCH / DELETE /api/billing/clients/<id>/"""
    permission_classes = [IsAuthenticated]

    def get(self, request, pk):
        actor = resolve_actor(request)
        client = _get_or_404(Client, pk=pk, organization=actor.organization)
        return Response(ClientSerializer(client).data)

    def patch(self, request, pk):
        actor = resolve_actor(request)
        serializer = ClientInputSerializer(data=request.data, partial=True)
        serializer.is_valid(raise_exception=True)

        result = execute_command(
            request,
            update_client,
            actor,
            pk,
            success_message="Client updated successfully",
            failure_message="Failed to update client",
            **serializer.validated_data,
        )
        if not result.success:
            return _bad_request(result)
        return Response(ClientSerializer(result.data).data)

    def delete(self, request, pk):
        actor = resolve_actor(request)
        result = execute_command(
            request,
            delete_client,
            actor,
            pk,
            success_message="Client deleted successfully",
            failure_message="Failed to delete client",
        )
        if not result.success:
            return _bad_request(result)
        return Response(status=status.HTTP_204_NO_CONTENT)


# =============================================================================
# Projects
# =============================================================================

class ProjectListCreateView(APIView):
    """
    GET /api/billing/projects/?client=&status=&search= -> list projects
    POST /api/billing/projects/ -> create project (admin)
    """
    permission_classes = [IsAuthenticated]

    def get(self, request):
        actor = resolve_actor(request)
        projects = Project.objects.filter(
            organization=actor.organization,
        ).select_related("client")

        client_id = _int_param(request, "client")
        if client_id is not None:
            projects = projects.filter(client_id=client_id)

        project_status = request.query_params.get("status")
        if project_status:
            projects = projects.filter(status=project_status)

        search = request.query_params.get("search", "").strip()
        if search:
            projects = projects.filter(
                Q(name__icontains=search) | Q(description__icontains=search)
            )

        projects = projects.order_by("-created_at", "-id")
        return Response(ProjectSerializer(projects, many=True).data)

    def post(self, request):
        actor = resolve_actor(request)
        serializer = ProjectInputSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = execute_command(
            request,
            create_project,
            actor,
            success_message="Project created successfully",
            failure_message="Failed to create project",
            **serializer.validated_data,
        )
        if not result.success:
            return _bad_request(result)
        return Response(ProjectSerializer(result.data).data, status=status.HTTP_201_CREATED)


class ProjectDetailView(APIView):
    """GET / PATCH / DELETE /api/billing/projects/<id>/"""
    permission_classes = [IsAuthenticated]

    def get(self, request, pk):
        actor = resolve_actor(request)
        project = _get_or_404(
            Project.objects.select_related("client"),
            pk=pk,
            organization=actor.organization,
        )
        return Response(ProjectSerializer(project).data)

    def patch(self, request, pk):
        actor = resolve_actor(request)
        serializer = ProjectInputSerializer(data=request.data, partial=True)
        serializer.is_valid(raise_exception=True)

        result = execute_command(
            request,
            update_project,
            actor,
            pk,
            success_message="Project updated successfully",
            failure_message="Failed to update project",
            **serializer.validated_data,
        )
        if not result.success:
            return _bad_request(result)
        return Response(ProjectSerializer(result.data).data)

    def delete(self, request, pk):
        actor = resolve_actor(request)
        result = execute_command(
            request,
            delete_project,
            actor,
            pk,
            success_message="Project deleted successfully",
            failure_message="Failed to delete project",
        )
        if not result.success:
            return _bad_request(result)
        return Response(status=status.HTTP_204_NO_CONTENT)


# =============================================================================
# Invoices
# =============================================================================

class InvoiceListCreateView(APIView):
    """
    GET /api/billing/invoices/?client=&project=&status=&search= -> list invoices
    POST /api/billing/invoices/ -> create invoice, optionally with line items (admin)
    """
    permission_classes = [IsAuthenticated]

    def get(self, request):
        actor = resolve_actor(request)
        invoices = _invoice_queryset(actor)

        client_id = _int_param(request, "client")
        if client_id is not None:
            invoices = invoices.filter(client_id=client_id)

        project_id = _int_param(request, "project")
        if project_id is not None:
            invoices = invoices.filter(project_id=project_id)

        invoice_status = request.query_params.get("status")
        if invoice_status:
            invoices = invoices.filter(status=invoice_status)

        search = request.query_params.get("search", "").strip()
        if search:
            invoices = invoices.filter(invoice_number__icontains=search)

        invoices = invoices.order_by("-created_at", "-id")
        return Response(InvoiceSerializer(invoices, many=True).data)

    def post(self, request):
        actor = resolve_actor(request)
        serializer = InvoiceCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = execute_command(
            request,
            create_invoice,
            actor,
            success_message="Invoice created successfully",
            failure_message="Failed to create invoice",
            **serializer.validated_data,
        )
        if not result.success:
            return _bad_request(result)
        invoice = _invoice_queryset(actor).get(pk=result.data.pk)
        return Response(InvoiceDetailSerializer(invoice).data, status=status.HTTP_201_CREATED)


class InvoiceDetailView(APIView):
    """
    GET /api/billing/invoices/<id>/ -> invoice with line items and payment summary
    PATCH /api/billing/invoices/<id>/ -> update header fields (admin)
    DELETE /api/billing/invoices/<id>/ -> delete (admin, no payments)
    """
    permission_classes = [IsAuthenticated]

    def _detail(self, actor, pk):
        invoice = _get_or_404(
            _invoice_queryset(actor).prefetch_related("line_items", "payments"),
            pk=pk,
        )
        return InvoiceDetailSerializer(invoice).data

    def get(self, request, pk):
        actor = resolve_actor(request)
        return Response(self._detail(actor, pk))

    def patch(self, request, pk):
        actor = resolve_actor(request)
        serializer = InvoiceUpdateSerializer(data=request.data, partial=True)
        serializer.is_valid(raise_exception=True)

        result = execute_command(
            request,
            update_invoice,
            actor,
            pk,
            success_message="Invoice updated successfully",
            failure_message="Failed to update invoice",
            **serializer.validated_data,
        )
        if not result.success:
            return _bad_request(result)
        return Response(self._detail(actor, pk))

    def delete(self, request, pk):
        actor = resolve_actor(request)
        result = execute_command(
            request,
            delete_invoice,
            actor,
            pk,
            success_message="Invoice deleted successfully",
            failure_message="Failed to delete invoice",
        )
        if not result.success:
            return _bad_request(result)
        return Response(status=status.HTTP_204_NO_CONTENT)


class InvoiceStatusView(APIView):
    """POST /api/billing/invoices/<id>/status/ {"status": ...} -> guarded transition (admin)"""
    permission_classes = [IsAuthenticated]

    def post(self, request, pk):
        actor = resolve_actor(request)
        serializer = InvoiceStatusSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = execute_command(
            request,
            change_invoice_status,
            actor,
            pk,
            serializer.validated_data["status"],
            success_message="Invoice status updated",
            failure_message="Failed to update invoice status",
        )
        if not result.success:
            return _bad_request(result)
        return Response(InvoiceSerializer(result.data).data)


class InvoiceExportView(APIView):
    """GET /api/billing/invoices/export/?format=xlsx|csv&status=&client="""
    permission_classes = [IsAuthenticated]

    def get(self, request):
        actor = resolve_actor(request)

        export_format = request.query_params.get("format", ExportFormat.EXCEL)
        if export_format not in ExportFormat.CHOICES:
            return Response(
                {"detail": f"Invalid format. Must be one of {ExportFormat.CHOICES}"},
                status=status.HTTP_400_BAD_REQUEST,
            )

        paid = (
            Payment.objects.filter(invoice=OuterRef("pk"))
            .values("invoice")
            .annotate(s=Sum("amount"))
            .values("s")
        )
        invoices = _invoice_queryset(actor).annotate(
            paid_amount=Subquery(paid, output_field=DecimalField(max_digits=14, decimal_places=2)),
        )

        invoice_status = request.query_params.get("status")
        if invoice_status:
            invoices = invoices.filter(status=invoice_status)
        client_id = _int_param(request, "client")
        if client_id is not None:
            invoices = invoices.filter(client_id=client_id)

        invoices = invoices.order_by("issue_date", "invoice_number")
        return create_export_response(
            data=prepare_invoice_export_data(invoices),
            columns=INVOICE_EXPORT_COLUMNS,
            format=export_format,
            filename="invoices",
            title=f"Invoices - {actor.organization.name}",
        )


# =============================================================================
# Line Items
# =============================================================================

class LineItemListCreateView(APIView):
    """
    GET /api/billing/invoices/<id>/line-items/ -> line items, oldest first
    POST /api/billing/invoices/<id>/line-items/ -> add a line item (admin)
    """
    permission_classes = [IsAuthenticated]

    def get(self, request, invoice_pk):
        actor = resolve_actor(request)
        invoice = _get_or_404(Invoice, pk=invoice_pk, organization=actor.organization)
        items = invoice.line_items.order_by("created_at", "id")
        return Response(LineItemSerializer(items, many=True).data)

    def post(self, request, invoice_pk):
        actor = resolve_actor(request)
        serializer = LineItemInputSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = execute_command(
            request,
            create_line_item,
            actor,
            invoice_pk,
            success_message="Line item added successfully",
            failure_message="Failed to add line item",
            **serializer.validated_data,
        )
        if not result.success:
            return _bad_request(result)
        return Response(LineItemSerializer(result.data).data, status=status.HTTP_201_CREATED)


class LineItemDetailView(APIView):
    """GET / PATCH / DELETE /api/billing/line-items/<id>/"""
    permission_classes = [IsAuthenticated]

    def get(self, request, pk):
        actor = resolve_actor(request)
        item = _get_or_404(InvoiceLineItem, pk=pk, organization=actor.organization)
        return Response(LineItemSerializer(item).data)

    def patch(self, request, pk):
        actor = resolve_actor(request)
        serializer = LineItemInputSerializer(data=request.data, partial=True)
        serializer.is_valid(raise_exception=True)

        result = execute_command(
            request,
            update_line_item,
            actor,
            pk,
            success_message="Line item updated successfully",
            failure_message="Failed to update line item",
            **serializer.validated_data,
        )
        if not result.success:
            return _bad_request(result)
        return Response(LineItemSerializer(result.data).data)

    def delete(self, request, pk):
        actor = resolve_actor(request)
        result = execute_command(
            request,
            delete_line_item,
            actor,
            pk,
            success_message="Line item deleted successfully",
            failure_message="Failed to delete line item",
        )
        if not result.success:
            return _bad_request(result)
        return Response(status=status.HTTP_204_NO_CONTENT)


# =============================================================================
# Payments
# =============================================================================

class PaymentListCreateView(APIView):
    """
    GET /api/billing/invoices/<id>/payments/ -> payments, newest first
    POST /api/billing/invoices/<id>/payments/ -> record a payment (admin)
    """
    permission_classes = [IsAuthenticated]

    def get(self, request, invoice_pk):
        actor = resolve_actor(request)
        invoice = _get_or_404(Invoice, pk=invoice_pk, organization=actor.organization)
        payments = invoice.payments.select_related("created_by").order_by("-paid_at", "-id")
        return Response(PaymentSerializer(payments, many=True).data)

    def post(self, request, invoice_pk):
        actor = resolve_actor(request)
        serializer = PaymentInputSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = execute_command(
            request,
            record_payment,
            actor,
            invoice_pk,
            success_message="Payment recorded successfully",
            failure_message="Failed to record payment",
            **serializer.validated_data,
        )
        if not result.success:
            return _bad_request(result)
        return Response(PaymentSerializer(result.data).data, status=status.HTTP_201_CREATED)


class PaymentDetailView(APIView):
    """GET / DELETE /api/billing/payments/<id>/"""
    permission_classes = [IsAuthenticated]

    def get(self, request, pk):
        actor = resolve_actor(request)
        payment = _get_or_404(
            Payment.objects.select_related("created_by"),
            pk=pk,
            organization=actor.organization,
        )
        return Response(PaymentSerializer(payment).data)

    def delete(self, request, pk):
        actor = resolve_actor(request)
        result = execute_command(
            request,
            delete_payment,
            actor,
            pk,
            success_message="Payment deleted successfully",
            failure_message="Failed to delete payment",
        )
        if not result.success:
            return _bad_request(result)
        return Response(status=status.HTTP_204_NO_CONTENT)


# =============================================================================
# Notes
# =============================================================================

class NoteListCreateView(APIView):
    """
    GET /api/billing/notes/?client=&project=&invoice= -> list notes
    POST /api/billing/notes/ -> create note (admin)
    """
    permission_classes = [IsAuthenticated]

    def get(self, request):
        actor = resolve_actor(request)
        notes = Note.objects.filter(
            organization=actor.organization,
        ).select_related("created_by", "created_by__profile")

        for param in ("client", "project", "invoice"):
            value = _int_param(request, param)
            if value is not None:
                notes = notes.filter(**{f"{param}_id": value})

        notes = notes.order_by("-created_at", "-id")
        return Response(NoteSerializer(notes, many=True).data)

    def post(self, request):
        actor = resolve_actor(request)
        serializer = NoteInputSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = execute_command(
            request,
            create_note,
            actor,
            success_message="Note created successfully",
            failure_message="Failed to create note",
            **serializer.validated_data,
        )
        if not result.success:
            return _bad_request(result)
        return Response(NoteSerializer(result.data).data, status=status.HTTP_201_CREATED)


class NoteDetailView(APIView):
    """GET / PATCH / DELETE /api/billing/notes/<id>/"""
    permission_classes = [IsAuthenticated]

    def get(self, request, pk):
        actor = resolve_actor(request)
        note = _get_or_404(Note, pk=pk, organization=actor.organization)
        return Response(NoteSerializer(note).data)

    def patch(self, request, pk):
        actor = resolve_actor(request)
        serializer = NoteInputSerializer(data=request.data, partial=True)
        serializer.is_valid(raise_exception=True)

        result = execute_command(
            request,
            update_note,
            actor,
            pk,
            success_message="Note updated successfully",
            failure_message="Failed to update note",
            **serializer.validated_data,
        )
        if not result.success:
            return _bad_request(result)
        return Response(NoteSerializer(result.data).data)

    def delete(self, request, pk):
        actor = resolve_actor(request)
        result = execute_command(
            request,
            delete_note,
            actor,
            pk,
            success_message="Note deleted successfully",
            failure_message="Failed to delete note",
        )
        if not result.success:
            return _bad_request(result)
        return Response(status=status.HTTP_204_NO_CONTENT)


# =============================================================================
# Dashboard
# =============================================================================

class DashboardView(APIView):
    """GET /api/billing/dashboard/ -> organization statistics"""
    permission_classes = [IsAuthenticated]

    def get(self, request):
        actor = resolve_actor(request)
        return Response(DashboardSerializer(dashboard_stats(actor.organization)).data)
