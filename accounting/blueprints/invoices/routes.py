"""
accounting/blueprints/invoices/routes.py

Invoice routes.

Includes:
- List (filters + statistics), detail
- Create / update for every flavour: generic (supplier, office, sales, investment),
  bank and retail invoices. The flavour follows invoice_type and the party sent.
- Approve / unapprove
- Form helpers: VAT preview, milestone-derived base amount, dropdown options

IMPORTANT:
- Totals, remaining amount and status are always recomputed server-side.
- Party fields that do not belong to the invoice type are cleared.
"""

from __future__ import annotations

import logging

from flask import Blueprint, jsonify, request
from flask_login import current_user, login_required

from ...audit import log_action, serialize_model
from ...calculations import ZERO, decompose_vat, milestone_base_amount, to_decimal
from ...errors import ValidationError
from ...extensions import db
from ...ledger import apply_account_effect, payment_sources, refresh_sources
from ...models import (
    EXPENSE_INVOICE_TYPES,
    INVOICE_STATUSES,
    INVOICE_TYPE_LABELS,
    INVOICE_TYPES,
    Bank,
    BankCredit,
    Company,
    Contract,
    Customer,
    Invoice,
    Investor,
    Milestone,
    OfficeSupplier,
    Project,
    Refund,
    RetailCustomer,
    RetailSupplier,
    Supplier,
)
from ...security import editor_required
from ...utils import (
    bool_field,
    choice_field,
    date_field,
    decimal_field,
    get_active_categories,
    page_args,
    parse_optional_int,
    reference_field,
    request_payload,
    text_field,
)
from .queries import INVOICE_TYPE_GROUPS, filtered_invoices, invoice_statistics

logger = logging.getLogger(__name__)

invoices_bp = Blueprint("invoices", __name__, url_prefix="/invoices")


# ---------------------------------------------------------------------
# Party rules
# ---------------------------------------------------------------------
PARTY_MODELS = {
    "supplier_id": Supplier,
    "office_supplier_id": OfficeSupplier,
    "retail_supplier_id": RetailSupplier,
    "retail_customer_id": RetailCustomer,
    "customer_id": Customer,
    "investor_id": Investor,
    "bank_id": Bank,
}

ALLOWED_PARTIES = {
    "INCOMING_SUPPLIER": ("supplier_id", "retail_supplier_id"),
    "OUTGOING_SUPPLIER": ("supplier_id", "retail_supplier_id"),
    "INCOMING_OFFICE": ("office_supplier_id",),
    "OUTGOING_OFFICE": ("office_supplier_id",),
    "OUTGOING_SALES": ("customer_id", "retail_customer_id"),
    "INCOMING_INVESTMENT": ("investor_id", "bank_id"),
    "INCOMING_BANK": ("bank_id",),
    "OUTGOING_BANK": ("bank_id",),
}

PARTY_LABELS = {
    "supplier_id": "Dobavljač",
    "office_supplier_id": "Dobavljač ureda",
    "retail_supplier_id": "Maloprodajni dobavljač",
    "retail_customer_id": "Maloprodajni kupac",
    "customer_id": "Kupac",
    "investor_id": "Investitor",
    "bank_id": "Banka",
}


def _apply_parties(invoice: Invoice, data: dict) -> None:
    allowed = ALLOWED_PARTIES[invoice.invoice_type]

    chosen = {}
    for field in allowed:
        row = reference_field(data, field, PARTY_MODELS[field], label=PARTY_LABELS[field])
        if row is not None:
            chosen[field] = row

    if not chosen:
        labels = " / ".join(PARTY_LABELS[f] for f in allowed)
        raise ValidationError(f"Odaberite: {labels}.", allowed[0])
    if len(chosen) > 1:
        raise ValidationError("Račun može imati samo jednu stranku.", next(iter(chosen)))

    for field in PARTY_MODELS:
        setattr(invoice, field, chosen[field].id if field in chosen else None)


def _derive_category(invoice: Invoice) -> tuple[str, bool]:
    """(invoice_category, default approval) from the type and the chosen party."""
    invoice_type = invoice.invoice_type

    if invoice.retail_supplier_id or invoice.retail_customer_id:
        return "RETAIL", False
    if invoice_type in ("INCOMING_SUPPLIER", "OUTGOING_SUPPLIER"):
        return "SUBCONTRACTOR", False
    if invoice_type in ("INCOMING_OFFICE", "OUTGOING_OFFICE"):
        return "OFFICE", True
    if invoice_type == "INCOMING_INVESTMENT":
        if invoice.bank_id:
            return "BANK_CREDIT", True
        return "INVESTOR", False
    if invoice_type == "OUTGOING_SALES":
        return "CUSTOMER", False
    if invoice_type in ("INCOMING_BANK", "OUTGOING_BANK"):
        return "BANK_CREDIT", True
    return "GENERAL", False


# ---------------------------------------------------------------------
# Payload -> invoice
# ---------------------------------------------------------------------
def _base_amounts(data: dict, milestone: Milestone | None) -> list:
    bases = [decimal_field(data, f"base_amount_{slot}", label="Osnovica") or ZERO for slot in range(1, 5)]

    # Milestone invoices: base_amount_1 comes from the contract unless typed in
    if milestone is not None and decimal_field(data, "base_amount_1") is None:
        bases[0] = milestone_base_amount(milestone.contract.contract_amount, milestone.percentage)

    if all(b == ZERO for b in bases):
        raise ValidationError("Molimo unesite barem jednu osnovicu.", "base_amount_1")
    return bases


def _apply_payload(invoice: Invoice, data: dict, *, is_new: bool) -> None:
    was_expense = invoice.is_expense
    invoice_type = choice_field(data, "invoice_type", INVOICE_TYPES, default=invoice.invoice_type)
    company = reference_field(data, "company_id", Company, required=True, label="Tvrtka")

    # Payments already moved bank balances in this direction, for this company
    if not is_new and invoice.payments:
        if (invoice_type in EXPENSE_INVOICE_TYPES) != was_expense:
            raise ValidationError(
                "Račun s plaćanjima ne može promijeniti smjer (ulazni/izlazni).", "invoice_type"
            )
        if company.id != invoice.company_id:
            raise ValidationError("Računu s plaćanjima nije moguće promijeniti tvrtku.", "company_id")

    invoice.invoice_type = invoice_type
    invoice.company_id = company.id

    _apply_parties(invoice, data)

    invoice.invoice_number = text_field(data, "invoice_number", required=True, label="Broj računa")
    invoice.reference_number = text_field(data, "reference_number")
    invoice.iban = text_field(data, "iban")
    invoice.issue_date = date_field(data, "issue_date", required=True, label="Datum izdavanja")
    invoice.due_date = date_field(data, "due_date", required=True, label="Datum dospijeća")
    if invoice.due_date < invoice.issue_date:
        raise ValidationError("Datum dospijeća ne može biti prije datuma izdavanja.", "due_date")

    credit = reference_field(data, "bank_credit_id", BankCredit, label="Kredit")
    invoice.bank_credit_id = credit.id if credit else None

    project = reference_field(data, "project_id", Project, label="Projekt")
    invoice.project_id = project.id if project else None

    contract = reference_field(data, "contract_id", Contract, label="Ugovor")
    milestone = reference_field(data, "milestone_id", Milestone, label="Faza")
    if milestone is not None:
        if contract is None:
            contract = milestone.contract
        elif milestone.contract_id != contract.id:
            raise ValidationError("Faza ne pripada odabranom ugovoru.", "milestone_id")
    invoice.contract_id = contract.id if contract else None
    invoice.milestone_id = milestone.id if milestone else None
    if contract is not None and invoice.project_id is None:
        invoice.project_id = contract.project_id

    refund = reference_field(data, "refund_id", Refund, label="Povrat")
    invoice.refund_id = refund.id if refund else None

    invoice.category = text_field(data, "category")
    invoice.description = text_field(data, "description")

    bases = _base_amounts(data, milestone)
    (invoice.base_amount_1, invoice.base_amount_2, invoice.base_amount_3, invoice.base_amount_4) = bases

    invoice.invoice_category, default_approved = _derive_category(invoice)
    if is_new:
        invoice.approved = bool_field(data, "approved", default=default_approved)

    invoice.recalc_totals()
    if to_decimal(invoice.paid_amount) > to_decimal(invoice.total_amount):
        raise ValidationError("Ukupan iznos ne može biti manji od već plaćenog iznosa.", "base_amount_1")


def _list_filters() -> dict:
    invoice_type = (request.args.get("type") or "ALL").upper()
    if invoice_type not in INVOICE_TYPES and invoice_type not in INVOICE_TYPE_GROUPS and invoice_type != "ALL":
        raise ValidationError("Neispravan tip računa.", "type")

    status = (request.args.get("status") or "ALL").upper()
    if status not in INVOICE_STATUSES and status != "ALL":
        raise ValidationError("Neispravan status.", "status")

    return {
        "invoice_type": invoice_type,
        "status": status,
        "company_id": parse_optional_int(request.args.get("company_id")),
        "search": request.args.get("search"),
    }


# ---------------------------------------------------------------------
# List / detail
# ---------------------------------------------------------------------
@invoices_bp.route("/")
@login_required
def list_invoices():
    filters = _list_filters()
    page, per_page = page_args()

    invoices = filtered_invoices(offset=(page - 1) * per_page, limit=per_page, **filters)
    return jsonify({
        "items": [i.to_dict() for i in invoices],
        "page": page,
        "per_page": per_page,
        "statistics": invoice_statistics(**filters),
    })


@invoices_bp.route("/statistics")
@login_required
def statistics():
    return jsonify(invoice_statistics(**_list_filters()))


@invoices_bp.route("/<int:invoice_id>")
@login_required
def get_invoice(invoice_id: int):
    invoice = db.get_or_404(Invoice, invoice_id)
    return jsonify(invoice.to_dict(with_payments=True))


# ---------------------------------------------------------------------
# Create / update / delete
# ---------------------------------------------------------------------
@invoices_bp.route("/", methods=["POST"])
@login_required
@editor_required
def create_invoice():
    data = request_payload()

    invoice = Invoice(invoice_type=choice_field(data, "invoice_type", INVOICE_TYPES), paid_amount=ZERO)
    invoice.created_by_id = current_user.id
    _apply_payload(invoice, data, is_new=True)

    db.session.add(invoice)
    db.session.flush()
    log_action(invoice, "CREATE", after=serialize_model(invoice))
    db.session.commit()

    logger.info("Invoice %s (%s) created, total %s", invoice.invoice_number, invoice.invoice_type, invoice.total_amount)
    return jsonify(invoice.to_dict()), 201


@invoices_bp.route("/<int:invoice_id>", methods=["PUT"])
@login_required
@editor_required
def update_invoice(invoice_id: int):
    invoice = db.get_or_404(Invoice, invoice_id)
    data = request_payload()
    before_snapshot = serialize_model(invoice)

    _apply_payload(invoice, data, is_new=False)

    log_action(invoice, "UPDATE", before=before_snapshot, after=serialize_model(invoice))
    db.session.commit()

    logger.info("Invoice %s updated", invoice.invoice_number)
    return jsonify(invoice.to_dict())


@invoices_bp.route("/<int:invoice_id>", methods=["DELETE"])
@login_required
@editor_required
def delete_invoice(invoice_id: int):
    """Delete an invoice together with its payments, undoing their balance effects."""
    invoice = db.get_or_404(Invoice, invoice_id)
    before_snapshot = serialize_model(invoice)

    credits, allocations = set(), set()
    for payment in invoice.payments:
        apply_account_effect(payment, -1)
        payment_credits, payment_allocations = payment_sources(payment)
        credits |= payment_credits
        allocations |= payment_allocations

    log_action(invoice, "DELETE", before=before_snapshot)
    db.session.delete(invoice)
    db.session.flush()
    refresh_sources(credits, allocations)
    db.session.commit()

    logger.info("Invoice %s deleted", before_snapshot["invoice_number"])
    return jsonify({"ok": True})


@invoices_bp.route("/<int:invoice_id>/approve", methods=["POST"])
@login_required
@editor_required
def approve_invoice(invoice_id: int):
    return _set_approved(invoice_id, True)


@invoices_bp.route("/<int:invoice_id>/unapprove", methods=["POST"])
@login_required
@editor_required
def unapprove_invoice(invoice_id: int):
    return _set_approved(invoice_id, False)


def _set_approved(invoice_id: int, approved: bool):
    invoice = db.get_or_404(Invoice, invoice_id)
    before_snapshot = serialize_model(invoice)

    invoice.approved = approved
    log_action(invoice, "UPDATE", before=before_snapshot, after=serialize_model(invoice))
    db.session.commit()

    logger.info("Invoice %s approved=%s", invoice.invoice_number, approved)
    return jsonify(invoice.to_dict())


# ---------------------------------------------------------------------
# Form helpers
# ---------------------------------------------------------------------
@invoices_bp.route("/vat-preview", methods=["POST"])
@login_required
def vat_preview():
    """Live VAT breakdown for the invoice form (nothing is stored)."""
    data = request_payload()
    bases = [decimal_field(data, f"base_amount_{slot}", label="Osnovica") or ZERO for slot in range(1, 5)]
    vat = decompose_vat(bases)
    return jsonify({
        "rates": [float(r) for r in vat["rates"]],
        "bases": [float(b) for b in vat["bases"]],
        "vat_amounts": [float(v) for v in vat["vat_amounts"]],
        "subtotals": [float(s) for s in vat["subtotals"]],
        "base_total": float(vat["base_total"]),
        "vat_total": float(vat["vat_total"]),
        "total": float(vat["total"]),
    })


@invoices_bp.route("/milestone-amount")
@login_required
def milestone_amount():
    milestone_id = parse_optional_int(request.args.get("milestone_id"))
    if milestone_id is None:
        raise ValidationError("Odaberite fazu.", "milestone_id")
    milestone = db.get_or_404(Milestone, milestone_id)
    contract = milestone.contract
    return jsonify({
        "milestone_id": milestone.id,
        "contract_id": contract.id,
        "contract_amount": float(contract.contract_amount),
        "percentage": float(milestone.percentage),
        "base_amount_1": float(milestone_base_amount(contract.contract_amount, milestone.percentage)),
    })


@invoices_bp.route("/form-options")
@login_required
def form_options():
    """
    Dropdown data for the invoice form.

    Always: invoice types, companies, categories, refund types.
    ?supplier_id=  -> the supplier's contracts and projects
    ?customer_id=  -> projects the customer was invoiced for
    ?contract_id=  -> milestones still open for invoicing (status != paid)
    """
    options = {
        "invoice_types": [{"value": t, "label": INVOICE_TYPE_LABELS[t]} for t in INVOICE_TYPES],
        "companies": [c.to_dict() for c in Company.query.order_by(Company.name.asc()).all()],
        "categories": get_active_categories(),
        "refunds": [r.to_dict() for r in Refund.query.order_by(Refund.name.asc()).all()],
    }

    supplier_id = parse_optional_int(request.args.get("supplier_id"))
    if supplier_id:
        contracts = Contract.query.filter_by(supplier_id=supplier_id).order_by(Contract.contract_number.asc()).all()
        options["contracts"] = [c.to_dict() for c in contracts]
        projects = {c.project.id: c.project for c in contracts if c.project is not None}
        options["projects"] = [p.to_dict() for p in sorted(projects.values(), key=lambda p: p.name)]

    customer_id = parse_optional_int(request.args.get("customer_id"))
    if customer_id:
        projects = (
            Project.query.join(Invoice, Invoice.project_id == Project.id)
            .filter(Invoice.customer_id == customer_id)
            .distinct()
            .order_by(Project.name.asc())
            .all()
        )
        options["projects"] = [p.to_dict() for p in projects]

    contract_id = parse_optional_int(request.args.get("contract_id"))
    if contract_id:
        milestones = (
            Milestone.query.filter(Milestone.contract_id == contract_id, Milestone.status != "paid")
            .order_by(Milestone.milestone_number.asc())
            .all()
        )
        options["milestones"] = [m.to_dict() for m in milestones]

    return jsonify(options)
