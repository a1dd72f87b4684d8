"""
accounting/blueprints/payments/routes.py

Payment routes.

Includes:
- List with filters (method, income/expense, search) and statistics
- Create / update / delete, including cesija payments
- Payment sources for the form (bank accounts + credits of a company)

IMPORTANT:
- Cumulative payments never exceed the invoice total (PAYMENT_OVERPAY_TOLERANCE aside).
- Every mutation refreshes the invoice status, the bank account balance and
  the usage of the credit/allocation involved, in the same transaction.
"""

from __future__ import annotations

import logging

from flask import Blueprint, current_app, jsonify, request
from flask_login import current_user, login_required
from sqlalchemy import func, or_
from sqlalchemy.orm import joinedload

from ...audit import log_action, serialize_model
from ...calculations import to_decimal
from ...errors import ValidationError
from ...extensions import db
from ...ledger import apply_account_effect, payment_sources, refresh_sources
from ...models import (
    EXPENSE_INVOICE_TYPES,
    PAYMENT_METHOD_LABELS,
    PAYMENT_METHODS,
    PAYMENT_SOURCE_TYPES,
    BankCredit,
    Company,
    CompanyBankAccount,
    CreditAllocation,
    Invoice,
    Payment,
)
from ...security import editor_required
from ...utils import (
    bool_field,
    choice_field,
    date_field,
    decimal_field,
    format_eur,
    page_args,
    parse_optional_int,
    reference_field,
    request_payload,
    text_field,
)

logger = logging.getLogger(__name__)

payments_bp = Blueprint("payments", __name__, url_prefix="/payments")

PAYMENT_DIRECTIONS = ("ALL", "INCOME", "EXPENSE")


# ---------------------------------------------------------------------
# Source validation
# ---------------------------------------------------------------------
def _bank_account(data: dict, field: str, company: Company) -> CompanyBankAccount:
    account = reference_field(data, field, CompanyBankAccount, required=True, label="Bankovni račun")
    if account.company_id != company.id:
        raise ValidationError("Bankovni račun ne pripada odabranoj tvrtki.", field)
    return account


def _credit(data: dict, field: str, company: Company) -> BankCredit:
    credit = reference_field(data, field, BankCredit, required=True, label="Kredit")
    if credit.disbursed_to_account:
        raise ValidationError("Kredit isplaćen na račun ne može biti izvor plaćanja.", field)
    if credit.company_id is not None and credit.company_id != company.id:
        raise ValidationError("Kredit ne pripada odabranoj tvrtki.", field)
    return credit


def _allocation(data: dict, field: str, credit: BankCredit) -> CreditAllocation | None:
    allocation = reference_field(data, field, CreditAllocation, label="Alokacija")
    if allocation is not None and allocation.credit_id != credit.id:
        raise ValidationError("Alokacija ne pripada odabranom kreditu.", field)
    return allocation


def _apply_source(payment: Payment, data: dict) -> None:
    """
    Direct payments draw from the invoiced company's account or credit.
    Cesija payments draw from a third company's account or credit; the direct
    fields are then cleared, and vice versa.
    """
    payment.payment_source_type = choice_field(data, "payment_source_type", PAYMENT_SOURCE_TYPES, default="bank_account")
    payment.is_cesija = bool_field(data, "is_cesija")

    payment.company_bank_account = None
    payment.credit = None
    payment.credit_allocation = None
    payment.cesija_company = None
    payment.cesija_bank_account = None
    payment.cesija_credit = None
    payment.cesija_credit_allocation = None

    if payment.is_cesija:
        company = reference_field(data, "cesija_company_id", Company, required=True, label="Cesija tvrtka")
        if company.id == payment.invoice.company_id:
            raise ValidationError("Cesija tvrtka mora biti različita od tvrtke na računu.", "cesija_company_id")
        payment.cesija_company = company
        if payment.payment_source_type == "bank_account":
            payment.cesija_bank_account = _bank_account(data, "cesija_bank_account_id", company)
        else:
            payment.cesija_credit = _credit(data, "cesija_credit_id", company)
            payment.cesija_credit_allocation = _allocation(data, "cesija_credit_allocation_id", payment.cesija_credit)
        return

    company = payment.invoice.company
    if payment.payment_source_type == "bank_account":
        payment.company_bank_account = _bank_account(data, "company_bank_account_id", company)
    else:
        payment.credit = _credit(data, "credit_id", company)
        payment.credit_allocation = _allocation(data, "credit_allocation_id", payment.credit)


def _apply_payload(payment: Payment, data: dict) -> None:
    payment.amount = decimal_field(data, "amount", required=True, positive=True, label="Iznos")
    payment.payment_date = date_field(data, "payment_date", required=True, label="Datum plaćanja")
    payment.payment_method = choice_field(data, "payment_method", PAYMENT_METHODS, default="WIRE")
    payment.reference_number = text_field(data, "reference_number")
    payment.description = text_field(data, "description")
    _apply_source(payment, data)


def _settle(payment: Payment, credits: set, allocations: set) -> None:
    """Refresh everything the payment touches, then enforce the caps."""
    invoice = payment.invoice
    invoice.recalc_paid_amount()
    refresh_sources(credits, allocations)

    tolerance = current_app.config["PAYMENT_OVERPAY_TOLERANCE"]
    if to_decimal(invoice.paid_amount) > to_decimal(invoice.total_amount) + tolerance:
        raise ValidationError(
            f"Iznos premašuje preostali iznos računa ({format_eur(invoice.remaining_amount + payment.amount)}).",
            "amount",
        )
    for credit in credits:
        if to_decimal(credit.used_amount) > to_decimal(credit.amount):
            raise ValidationError("Iznos premašuje raspoloživi iznos kredita.", "amount")
    for allocation in allocations:
        if to_decimal(allocation.used_amount) > to_decimal(allocation.allocated_amount):
            raise ValidationError("Iznos premašuje raspoloživi iznos alokacije.", "amount")


# ---------------------------------------------------------------------
# List / statistics
# ---------------------------------------------------------------------
def _filtered_query():
    q = Payment.query.join(Invoice, Payment.invoice_id == Invoice.id)

    method = (request.args.get("method") or "ALL").upper()
    if method != "ALL":
        if method not in PAYMENT_METHODS:
            raise ValidationError("Neispravan način plaćanja.", "method")
        q = q.filter(Payment.payment_method == method)

    direction = (request.args.get("direction") or "ALL").upper()
    if direction not in PAYMENT_DIRECTIONS:
        raise ValidationError("Neispravan smjer plaćanja.", "direction")
    if direction == "EXPENSE":
        q = q.filter(Invoice.invoice_type.in_(EXPENSE_INVOICE_TYPES))
    elif direction == "INCOME":
        q = q.filter(Invoice.invoice_type.notin_(EXPENSE_INVOICE_TYPES))

    invoice_id = parse_optional_int(request.args.get("invoice_id"))
    if invoice_id:
        q = q.filter(Payment.invoice_id == invoice_id)

    search = (request.args.get("search") or "").strip()
    if search:
        pattern = f"%{search}%"
        q = q.outerjoin(Company, Invoice.company_id == Company.id).filter(
            or_(
                Invoice.invoice_number.ilike(pattern),
                func.coalesce(Payment.reference_number, "").ilike(pattern),
                func.coalesce(Payment.description, "").ilike(pattern),
                func.coalesce(Company.name, "").ilike(pattern),
            )
        )

    return q


def _statistics(q) -> dict:
    per_method = (
        q.with_entities(Payment.payment_method, func.count(Payment.id), func.coalesce(func.sum(Payment.amount), 0))
        .group_by(Payment.payment_method)
        .all()
    )
    by_method = {
        method: {"label": PAYMENT_METHOD_LABELS[method], "count": 0, "total": 0.0}
        for method in PAYMENT_METHODS
    }
    for method, count, total in per_method:
        if method in by_method:
            by_method[method]["count"] = count
            by_method[method]["total"] = float(total)

    return {
        "count": sum(m["count"] for m in by_method.values()),
        "total": sum(m["total"] for m in by_method.values()),
        "by_method": by_method,
    }


@payments_bp.route("/")
@login_required
def list_payments():
    q = _filtered_query()
    page, per_page = page_args()

    payments = (
        q.options(joinedload(Payment.invoice).joinedload(Invoice.company), joinedload(Payment.cesija_company))
        .order_by(Payment.payment_date.desc(), Payment.id.desc())
        .offset((page - 1) * per_page)
        .limit(per_page)
        .all()
    )
    return jsonify({
        "items": [p.to_dict() for p in payments],
        "page": page,
        "per_page": per_page,
        "statistics": _statistics(q),
    })


@payments_bp.route("/stats")
@login_required
def payment_stats():
    return jsonify(_statistics(_filtered_query()))


@payments_bp.route("/<int:payment_id>")
@login_required
def get_payment(payment_id: int):
    return jsonify(db.get_or_404(Payment, payment_id).to_dict())


@payments_bp.route("/sources")
@login_required
def payment_source_options():
    """Bank accounts and usable credits (with allocations) of a company, for the payment form."""
    company_id = parse_optional_int(request.args.get("company_id"))
    if company_id is None:
        raise ValidationError("Odaberite tvrtku.", "company_id")
    company = db.get_or_404(Company, company_id)

    credits = (
        BankCredit.query.filter(
            BankCredit.disbursed_to_account.is_(False),
            or_(BankCredit.company_id == company.id, BankCredit.company_id.is_(None)),
        )
        .order_by(BankCredit.credit_name.asc())
        .all()
    )
    return jsonify({
        "bank_accounts": [a.to_dict() for a in company.bank_accounts],
        "credits": [
            {**c.to_dict(), "allocations": [a.to_dict() for a in c.allocations]}
            for c in credits
        ],
    })


# ---------------------------------------------------------------------
# Create / update / delete
# ---------------------------------------------------------------------
@payments_bp.route("/", methods=["POST"])
@login_required
@editor_required
def create_payment():
    data = request_payload()
    invoice = reference_field(data, "invoice_id", Invoice, required=True, label="Račun")

    payment = Payment(invoice=invoice, created_by_id=current_user.id)
    with db.session.no_autoflush:
        _apply_payload(payment, data)

    db.session.add(payment)
    db.session.flush()

    apply_account_effect(payment, +1)
    credits, allocations = payment_sources(payment)
    _settle(payment, credits, allocations)

    log_action(payment, "CREATE", after=serialize_model(payment))
    db.session.commit()

    logger.info("Payment %s of %s recorded for invoice %s", payment.id, payment.amount, invoice.invoice_number)
    return jsonify(payment.to_dict()), 201


@payments_bp.route("/<int:payment_id>", methods=["PUT"])
@login_required
@editor_required
def update_payment(payment_id: int):
    """Update a payment. The invoice it belongs to cannot change."""
    payment = db.get_or_404(Payment, payment_id)
    data = request_payload()
    before_snapshot = serialize_model(payment)

    old_credits, old_allocations = payment_sources(payment)
    apply_account_effect(payment, -1)

    with db.session.no_autoflush:
        _apply_payload(payment, data)
    db.session.flush()

    apply_account_effect(payment, +1)
    new_credits, new_allocations = payment_sources(payment)
    _settle(payment, old_credits | new_credits, old_allocations | new_allocations)

    log_action(payment, "UPDATE", before=before_snapshot, after=serialize_model(payment))
    db.session.commit()

    logger.info("Payment %s updated", payment.id)
    return jsonify(payment.to_dict())


@payments_bp.route("/<int:payment_id>", methods=["DELETE"])
@login_required
@editor_required
def delete_payment(payment_id: int):
    """Delete a payment; the invoice status is recomputed from the remaining payments."""
    payment = db.get_or_404(Payment, payment_id)
    before_snapshot = serialize_model(payment)
    invoice = payment.invoice

    credits, allocations = payment_sources(payment)
    apply_account_effect(payment, -1)

    log_action(payment, "DELETE", before=before_snapshot)
    invoice.payments.remove(payment)
    db.session.flush()

    invoice.recalc_paid_amount()
    refresh_sources(credits, allocations)
    db.session.commit()

    logger.info("Payment %s deleted, invoice %s is now %s", payment_id, invoice.invoice_number, invoice.status)
    return jsonify({"ok": True, "invoice": invoice.to_dict()})
