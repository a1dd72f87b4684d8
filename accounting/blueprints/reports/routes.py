"""
accounting/blueprints/reports/routes.py

Debt status report: what we paid and still owe per supplier.

Suppliers of all three kinds (subcontractors, retail suppliers, office suppliers)
are listed together; only suppliers with at least one invoice appear.

The same rows can be downloaded as a semicolon separated CSV with Croatian
number formatting and a closing UKUPNO (grand total) row.
"""

from __future__ import annotations

import csv
import io
import logging
from datetime import date

from flask import Blueprint, Response, jsonify, request
from flask_login import login_required
from sqlalchemy import case, func

from ...calculations import STATUS_PARTIALLY_PAID, STATUS_UNPAID
from ...extensions import db
from ...models import Invoice, OfficeSupplier, RetailSupplier, Supplier
from ...utils import format_number_hr, parse_optional_int

logger = logging.getLogger(__name__)

reports_bp = Blueprint("reports", __name__, url_prefix="/reports")

# supplier_type -> (model, invoice column)
SUPPLIER_SOURCES = (
    ("subcontractor", Supplier, Invoice.supplier_id),
    ("retail_supplier", RetailSupplier, Invoice.retail_supplier_id),
    ("office_supplier", OfficeSupplier, Invoice.office_supplier_id),
)

SUPPLIER_TYPE_LABELS = {
    "subcontractor": "Gradilište",
    "retail_supplier": "Maloprodaja",
    "office_supplier": "Ured",
}

EXPORT_HEADERS = ("Firma", "Tip", "Računi", "Neisplaćeno (€)", "Isplaćeno (€)", "Ukupno (€)")


def debt_status_rows(company_id: int | None = None) -> list[dict]:
    """Per-supplier paid / unpaid / invoice count, largest debt first."""
    unpaid_expr = func.coalesce(
        func.sum(
            case(
                (Invoice.status.in_((STATUS_UNPAID, STATUS_PARTIALLY_PAID)), Invoice.remaining_amount),
                else_=0,
            )
        ),
        0,
    )

    rows = []
    for supplier_type, model, column in SUPPLIER_SOURCES:
        q = (
            db.session.query(
                model.id,
                model.name,
                func.coalesce(func.sum(Invoice.paid_amount), 0),
                unpaid_expr,
                func.count(Invoice.id),
            )
            .join(Invoice, column == model.id)
            .group_by(model.id, model.name)
        )
        if company_id:
            q = q.filter(Invoice.company_id == company_id)

        for supplier_id, name, paid, unpaid, invoice_count in q.all():
            if not invoice_count:
                continue
            rows.append({
                "supplier_id": supplier_id,
                "supplier_name": name,
                "supplier_type": supplier_type,
                "total_paid": float(paid),
                "total_unpaid": float(unpaid),
                "invoice_count": invoice_count,
            })

    rows.sort(key=lambda r: (-r["total_unpaid"], r["supplier_name"]))
    return rows


@reports_bp.route("/debt-status")
@login_required
def debt_status():
    rows = debt_status_rows(parse_optional_int(request.args.get("company_id")))
    return jsonify({
        "items": rows,
        "total_paid": sum(r["total_paid"] for r in rows),
        "total_unpaid": sum(r["total_unpaid"] for r in rows),
    })


@reports_bp.route("/debt-status/export")
@login_required
def export_debt_status():
    company_id = parse_optional_int(request.args.get("company_id"))
    rows = debt_status_rows(company_id)
    total_paid = sum(r["total_paid"] for r in rows)
    total_unpaid = sum(r["total_unpaid"] for r in rows)

    buffer = io.StringIO()
    writer = csv.writer(buffer, delimiter=";")
    writer.writerow(EXPORT_HEADERS)
    for r in rows:
        writer.writerow([
            r["supplier_name"],
            SUPPLIER_TYPE_LABELS.get(r["supplier_type"], r["supplier_type"]),
            r["invoice_count"],
            format_number_hr(r["total_unpaid"]),
            format_number_hr(r["total_paid"]),
            format_number_hr(r["total_unpaid"] + r["total_paid"]),
        ])
    writer.writerow([
        "UKUPNO",
        "",
        "",
        format_number_hr(total_unpaid),
        format_number_hr(total_paid),
        format_number_hr(total_unpaid + total_paid),
    ])

    filename = f"stanje_duga_{date.today().isoformat()}.csv"
    logger.info("Debt status exported: %s rows (company %s)", len(rows), company_id or "all")

    # BOM so spreadsheet programs pick up UTF-8 (č, ć, š, ž, đ)
    return Response(
        "\ufeff" + buffer.getvalue(),
        mimetype="text/csv",
        headers={"Content-Disposition": f"attachment; filename={filename}"},
    )
