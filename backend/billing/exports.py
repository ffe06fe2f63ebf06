"""
Export utilities for billing data.
Supports Excel (.xlsx) and CSV (.csv) formats.
"""
import csv
import io
from datetime import date, datetime
from decimal import Decimal
from typing import Any

from django.http import HttpResponse
from django.utils import timezone
from openpyxl import Workbook
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.utils import get_column_letter


class ExportFormat:
    EXCEL = 'xlsx'
    CSV = 'csv'

    CHOICES = [EXCEL, CSV]
    CONTENT_TYPES = {
        EXCEL: 'application/vnd.openxmlformats-officedocument.spreadsheetml.sheet',
        CSV: 'text/csv',
    }


def format_value(value: Any) -> str:
    """Format a value for export."""
    if value is None:
        return ''
    if isinstance(value, datetime):
        if timezone.is_aware(value):
            value = timezone.localtime(value)
        return value.strftime('%Y-%m-%d %H:%M:%S')
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, Decimal):
        return f"{value:.2f}"
    return str(value)


def export_to_excel(
    data: list[dict],
    columns: list[dict],
    title: str = 'Export',
    sheet_name: str = 'Data',
) -> bytes:
    """
    Export rows to an Excel workbook.

    Layout: title on row 1, export timestamp on row 2, header on row 4,
    data from row 5 with the header frozen.

    Args:
        data: List of dictionaries containing the data
        columns: List of column definitions with 'key', 'header', and optional 'width'/'numeric'
        title: Title for the export (used in header row)
        sheet_name: Name of the worksheet
    """
    wb = Workbook()
    ws = wb.active
    ws.title = sheet_name

    header_font = Font(bold=True, color='FFFFFF')
    header_fill = PatternFill(start_color='4472C4', end_color='4472C4', fill_type='solid')
    header_alignment = Alignment(horizontal='center', vertical='center', wrap_text=True)
    thin = Side(style='thin')
    thin_border = Border(left=thin, right=thin, top=thin, bottom=thin)

    ws.merge_cells(start_row=1, start_column=1, end_row=1, end_column=len(columns))
    title_cell = ws.cell(row=1, column=1, value=title)
    title_cell.font = Font(bold=True, size=14)
    title_cell.alignment = Alignment(horizontal='center')

    ws.merge_cells(start_row=2, start_column=1, end_row=2, end_column=len(columns))
    exported_at = timezone.localtime().strftime('%Y-%m-%d %H:%M:%S')
    timestamp_cell = ws.cell(row=2, column=1, value=f"Exported: {exported_at}")
    timestamp_cell.alignment = Alignment(horizontal='center')
    timestamp_cell.font = Font(italic=True, size=10, color='666666')

    header_row = 4
    for col_idx, col in enumerate(columns, 1):
        cell = ws.cell(row=header_row, column=col_idx, value=col['header'])
        cell.font = header_font
        cell.fill = header_fill
        cell.alignment = header_alignment
        cell.border = thin_border
        ws.column_dimensions[get_column_letter(col_idx)].width = col.get('width', 15)

    for row_idx, row_data in enumerate(data, header_row + 1):
        for col_idx, col in enumerate(columns, 1):
            value = row_data.get(col['key'])
            if col.get('numeric') and isinstance(value, Decimal):
                # Keep money numeric so spreadsheet formulas work
                cell = ws.cell(row=row_idx, column=col_idx, value=float(value))
                cell.number_format = '#,##0.00'
                cell.alignment = Alignment(horizontal='right')
            else:
                cell = ws.cell(row=row_idx, column=col_idx, value=format_value(value))
            cell.border = thin_border

    ws.freeze_panes = ws.cell(row=header_row + 1, column=1)

    output = io.BytesIO()
    wb.save(output)
    return output.getvalue()


def export_to_csv(data: list[dict], columns: list[dict], delimiter: str = ',') -> str:
    output = io.StringIO()
    writer = csv.writer(output, delimiter=delimiter, quoting=csv.QUOTE_MINIMAL)
    writer.writerow([col['header'] for col in columns])
    for row_data in data:
        writer.writerow([format_value(row_data.get(col['key'])) for col in columns])
    return output.getvalue()


def create_export_response(
    data: list[dict],
    columns: list[dict],
    format: str,
    filename: str,
    title: str = 'Export',
) -> HttpResponse:
    """
    Build an attachment response in the requested format.

    Raises:
        ValueError: for an unknown format
    """
    if format not in ExportFormat.CHOICES:
        raise ValueError(f"Invalid format: {format}. Must be one of {ExportFormat.CHOICES}")

    content_type = ExportFormat.CONTENT_TYPES[format]

    if format == ExportFormat.EXCEL:
        response = HttpResponse(export_to_excel(data, columns, title=title), content_type=content_type)
    else:
        response = HttpResponse(export_to_csv(data, columns), content_type=content_type)
        response.charset = 'utf-8-sig'  # BOM for Excel

    response['Content-Disposition'] = f'attachment; filename="{filename}.{format}"'
    return response


# =============================================================================
# Invoice Export Configuration
# =============================================================================

INVOICE_EXPORT_COLUMNS = [
    {'key': 'invoice_number', 'header': 'Invoice Number', 'width': 16},
    {'key': 'client_name', 'header': 'Client', 'width': 30},
    {'key': 'project_name', 'header': 'Project', 'width': 25},
    {'key': 'status', 'header': 'Status', 'width': 12},
    {'key': 'issue_date', 'header': 'Issue Date', 'width': 12},
    {'key': 'due_date', 'header': 'Due Date', 'width': 12},
    {'key': 'subtotal', 'header': 'Subtotal', 'width': 15, 'numeric': True},
    {'key': 'tax_rate', 'header': 'Tax Rate (%)', 'width': 12, 'numeric': True},
    {'key': 'tax_amount', 'header': 'Tax', 'width': 15, 'numeric': True},
    {'key': 'total', 'header': 'Total', 'width': 15, 'numeric': True},
    {'key': 'paid', 'header': 'Paid', 'width': 15, 'numeric': True},
    {'key': 'outstanding', 'header': 'Outstanding', 'width': 15, 'numeric': True},
]


def prepare_invoice_export_data(invoices) -> list[dict]:
    """
    Rows for the invoice export. Expects invoices annotated with
    `paid_amount` (see billing.views.InvoiceExportView).
    """
    data = []
    for invoice in invoices:
        paid = invoice.paid_amount or Decimal('0.00')
        data.append({
            'invoice_number': invoice.invoice_number,
            'client_name': invoice.client.name,
            'project_name': invoice.project.name if invoice.project else '',
            'status': invoice.get_status_display(),
            'issue_date': invoice.issue_date,
            'due_date': invoice.due_date,
            'subtotal': invoice.subtotal,
            'tax_rate': invoice.tax_rate,
            'tax_amount': invoice.tax_amount,
            'total': invoice.total,
            'paid': paid,
            'outstanding': invoice.total - paid,
        })
    return data
