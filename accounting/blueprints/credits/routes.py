"""
accounting/blueprints/credits/routes.py

Banks, bank credit facilities and their project allocations.

Includes:
- Banks CRUD, listed with credit aggregates (limit / used / repaid / outstanding)
- Credits CRUD; the installment (monthly_payment) is recomputed on every save
- Payment schedule preview on the stored installment cadence
- Credit allocations CRUD (sum of allocations never exceeds the credit amount)

IMPORTANT:
- used_amount / outstanding_balance come from payments, never from the client.
"""

from __future__ import annotations

import logging

from flask import Blueprint, jsonify, request
from flask_login import login_required
from sqlalchemy import or_

from ...audit import log_action, serialize_model
from ...calculations import ZERO, payment_schedule, to_decimal
from ...errors import ValidationError
from ...extensions import db
from ...models import (
    CREDIT_SENIORITIES,
    CREDIT_TYPES,
    REPAYMENT_TYPES,
    Bank,
    BankCredit,
    Company,
    CompanyBankAccount,
    CreditAllocation,
    Invoice,
    Payment,
    Project,
)
from ...security import editor_required
from ...utils import (
    bool_field,
    choice_field,
    date_field,
    decimal_field,
    int_field,
    parse_optional_int,
    reference_field,
    request_payload,
    text_field,
)

logger = logging.getLogger(__name__)

credits_bp = Blueprint("credits", __name__, url_prefix="/credits")

CREDIT_STATUSES = ("active", "repaid", "closed")


# ---------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------
def split_credit_type(raw: str | None, default_seniority: str = "senior") -> tuple[str, str]:
    """'term_loan_senior' -> ('term_loan', 'senior'); plain types keep the default seniority."""
    value = (raw or "").strip().lower()
    for seniority in CREDIT_SENIORITIES:
        suffix = f"_{seniority}"
        if value.endswith(suffix):
            return value[: -len(suffix)], seniority
    return value, default_seniority


def _schedule_dict(schedule: dict | None) -> dict | None:
    if schedule is None:
        return None
    return {
        "payment_start_date": schedule["payment_start_date"].isoformat(),
        "installment": float(schedule["installment"]),
        "installments": schedule["installments"],
        "periods_per_year": schedule["periods_per_year"],
        "repayment_frequency": schedule["repayment_frequency"],
        "principal_frequency": schedule["principal_frequency"],
        "principal_periods_per_year": schedule["principal_periods_per_year"],
        "interest_frequency": schedule["interest_frequency"],
        "first_principal": float(schedule["first_principal"]),
        "first_interest": float(schedule["first_interest"]),
        "total_paid": float(schedule["total_paid"]),
        "total_interest": float(schedule["total_interest"]),
        "rows": [
            {
                "number": row["number"],
                "due_date": row["due_date"].isoformat(),
                "payment": float(row["payment"]),
                "principal": float(row["principal"]),
                "interest": float(row["interest"]),
                "balance": float(row["balance"]),
            }
            for row in schedule["rows"]
        ],
    }


def _credit_schedule(credit: BankCredit) -> dict | None:
    return payment_schedule(
        credit.amount,
        credit.interest_rate,
        credit.start_date,
        credit.maturity_date,
        credit.grace_period,
        credit.repayment_type,
        credit.principal_repayment_type,
        credit.interest_repayment_type,
    )


def _credit_has_payments(credit: BankCredit) -> bool:
    return (
        db.session.query(Payment.id)
        .filter(or_(Payment.credit_id == credit.id, Payment.cesija_credit_id == credit.id))
        .first()
        is not None
    )


# ---------------------------------------------------------------------
# Banks
# ---------------------------------------------------------------------
def _apply_bank_payload(bank: Bank, data: dict) -> None:
    bank.name = text_field(data, "name", required=True, label="Naziv banke")
    bank.contact_person = text_field(data, "contact_person")
    bank.contact_email = text_field(data, "contact_email")
    bank.contact_phone = text_field(data, "contact_phone")


@credits_bp.route("/banks")
@login_required
def list_banks():
    banks = Bank.query.order_by(Bank.name.asc()).all()
    return jsonify([b.to_dict(with_credits=True) for b in banks])


@credits_bp.route("/banks", methods=["POST"])
@login_required
@editor_required
def create_bank():
    bank = Bank()
    _apply_bank_payload(bank, request_payload())

    db.session.add(bank)
    db.session.flush()
    log_action(bank, "CREATE", after=serialize_model(bank))
    db.session.commit()

    logger.info("Bank %s created", bank.name)
    return jsonify(bank.to_dict()), 201


@credits_bp.route("/banks/<int:bank_id>", methods=["PUT"])
@login_required
@editor_required
def update_bank(bank_id: int):
    bank = db.get_or_404(Bank, bank_id)
    before_snapshot = serialize_model(bank)

    _apply_bank_payload(bank, request_payload())
    log_action(bank, "UPDATE", before=before_snapshot, after=serialize_model(bank))
    db.session.commit()

    logger.info("Bank %s updated", bank.name)
    return jsonify(bank.to_dict())


@credits_bp.route("/banks/<int:bank_id>", methods=["DELETE"])
@login_required
@editor_required
def delete_bank(bank_id: int):
    bank = db.get_or_404(Bank, bank_id)
    if bank.credits:
        raise ValidationError("Banka ima kredite i ne može se obrisati.", "bank_id")

    log_action(bank, "DELETE", before=serialize_model(bank))
    db.session.delete(bank)
    db.session.commit()

    logger.info("Bank %s deleted", bank_id)
    return jsonify({"ok": True})


# ---------------------------------------------------------------------
# Credits
# ---------------------------------------------------------------------
def _apply_credit_payload(credit: BankCredit, data: dict) -> None:
    bank = reference_field(data, "bank_id", Bank, required=True, label="Banka")
    company = reference_field(data, "company_id", Company, label="Tvrtka")
    project = reference_field(data, "project_id", Project, label="Projekt")
    credit.bank_id = bank.id
    credit.company_id = company.id if company else None
    credit.project_id = project.id if project else None

    credit.credit_name = text_field(data, "credit_name", required=True, label="Naziv kredita")

    credit_type, seniority = split_credit_type(data.get("credit_type") or credit.credit_type or "term_loan")
    if credit_type not in CREDIT_TYPES:
        raise ValidationError("Neispravan tip kredita.", "credit_type")
    credit.credit_type = credit_type
    credit.credit_seniority = choice_field(data, "credit_seniority", CREDIT_SENIORITIES, default=seniority)

    credit.amount = decimal_field(data, "amount", required=True, positive=True, label="Iznos kredita")
    credit.interest_rate = decimal_field(data, "interest_rate", label="Kamatna stopa") or ZERO
    if "repaid_amount" in data:
        credit.repaid_amount = decimal_field(data, "repaid_amount", label="Otplaćeno") or ZERO

    credit.start_date = date_field(data, "start_date", required=True, label="Datum početka")
    credit.maturity_date = date_field(data, "maturity_date", label="Datum dospijeća")
    if credit.maturity_date and credit.maturity_date <= credit.start_date:
        raise ValidationError("Datum dospijeća mora biti nakon datuma početka.", "maturity_date")
    credit.usage_expiration_date = date_field(data, "usage_expiration_date", label="Rok korištenja")

    grace_period = int_field(data, "grace_period") or 0
    if grace_period < 0:
        raise ValidationError("Poček ne može biti negativan.", "grace_period")
    credit.grace_period = grace_period

    credit.purpose = text_field(data, "purpose")
    credit.status = choice_field(data, "status", CREDIT_STATUSES, default=credit.status or "active")

    credit.repayment_type = choice_field(data, "repayment_type", REPAYMENT_TYPES, default="monthly")
    credit.principal_repayment_type = choice_field(
        data, "principal_repayment_type", REPAYMENT_TYPES, default=credit.repayment_type
    )
    credit.interest_repayment_type = choice_field(
        data, "interest_repayment_type", REPAYMENT_TYPES, default=credit.repayment_type
    )

    credit.disbursed_to_account = bool_field(data, "disbursed_to_account")
    account = None
    if credit.disbursed_to_account:
        account = reference_field(data, "disbursed_to_bank_account_id", CompanyBankAccount, label="Račun isplate")
    credit.disbursed_to_bank_account_id = account.id if account else None

    if to_decimal(credit.amount) < to_decimal(credit.used_amount):
        raise ValidationError("Iznos kredita ne može biti manji od iskorištenog iznosa.", "amount")
    if credit.id is not None and to_decimal(credit.amount) < credit.allocated_total:
        raise ValidationError("Iznos kredita ne može biti manji od zbroja alokacija.", "amount")

    credit.recalc_installment()


@credits_bp.route("/")
@login_required
def list_credits():
    q = BankCredit.query
    for field in ("bank_id", "company_id", "project_id"):
        value = parse_optional_int(request.args.get(field))
        if value:
            q = q.filter(getattr(BankCredit, field) == value)
    credits = q.order_by(BankCredit.start_date.desc(), BankCredit.id.desc()).all()
    return jsonify([c.to_dict() for c in credits])


@credits_bp.route("/<int:credit_id>")
@login_required
def get_credit(credit_id: int):
    credit = db.get_or_404(BankCredit, credit_id)
    data = credit.to_dict()
    data["allocations"] = [a.to_dict() for a in credit.allocations]
    data["schedule"] = _schedule_dict(_credit_schedule(credit))
    return jsonify(data)


@credits_bp.route("/", methods=["POST"])
@login_required
@editor_required
def create_credit():
    credit = BankCredit(used_amount=ZERO, repaid_amount=ZERO)
    with db.session.no_autoflush:
        _apply_credit_payload(credit, request_payload())

    db.session.add(credit)
    db.session.flush()
    credit.recalc_usage()

    log_action(credit, "CREATE", after=serialize_model(credit))
    db.session.commit()

    logger.info("Credit %s created: %s at %s%%, installment %s", credit.credit_name, credit.amount, credit.interest_rate, credit.monthly_payment)
    return jsonify(credit.to_dict()), 201


@credits_bp.route("/<int:credit_id>", methods=["PUT"])
@login_required
@editor_required
def update_credit(credit_id: int):
    credit = db.get_or_404(BankCredit, credit_id)
    before_snapshot = serialize_model(credit)

    with db.session.no_autoflush:
        _apply_credit_payload(credit, request_payload())
    credit.recalc_usage()

    log_action(credit, "UPDATE", before=before_snapshot, after=serialize_model(credit))
    db.session.commit()

    logger.info("Credit %s updated", credit.credit_name)
    return jsonify(credit.to_dict())


@credits_bp.route("/<int:credit_id>", methods=["DELETE"])
@login_required
@editor_required
def delete_credit(credit_id: int):
    credit = db.get_or_404(BankCredit, credit_id)
    if _credit_has_payments(credit):
        raise ValidationError("Kredit ima evidentirana plaćanja i ne može se obrisati.", "credit_id")

    log_action(credit, "DELETE", before=serialize_model(credit))
    Invoice.query.filter_by(bank_credit_id=credit.id).update({"bank_credit_id": None})
    db.session.delete(credit)
    db.session.commit()

    logger.info("Credit %s deleted", credit_id)
    return jsonify({"ok": True})


@credits_bp.route("/payment-preview", methods=["POST"])
@login_required
def payment_preview():
    """Amortization preview for the credit form (nothing is stored)."""
    data = request_payload()
    repayment_type = choice_field(data, "repayment_type", REPAYMENT_TYPES, default="monthly")
    grace_period = int_field(data, "grace_period") or 0
    if grace_period < 0:
        raise ValidationError("Poček ne može biti negativan.", "grace_period")

    schedule = payment_schedule(
        decimal_field(data, "amount", label="Iznos kredita"),
        decimal_field(data, "interest_rate", label="Kamatna stopa") or ZERO,
        date_field(data, "start_date", label="Datum početka"),
        date_field(data, "maturity_date", label="Datum dospijeća"),
        grace_period,
        repayment_type,
        choice_field(data, "principal_repayment_type", REPAYMENT_TYPES, default=repayment_type),
        choice_field(data, "interest_repayment_type", REPAYMENT_TYPES, default=repayment_type),
    )
    return jsonify({"schedule": _schedule_dict(schedule)})


@credits_bp.route("/<int:credit_id>/schedule")
@login_required
def credit_schedule(credit_id: int):
    credit = db.get_or_404(BankCredit, credit_id)
    return jsonify({"schedule": _schedule_dict(_credit_schedule(credit))})


# ---------------------------------------------------------------------
# Allocations
# ---------------------------------------------------------------------
def _apply_allocation_payload(allocation: CreditAllocation, credit: BankCredit, data: dict) -> None:
    project = reference_field(data, "project_id", Project, label="Projekt")
    allocation.project_id = project.id if project else None
    allocation.allocated_amount = decimal_field(
        data, "allocated_amount", required=True, positive=True, label="Iznos alokacije"
    )
    allocation.description = text_field(data, "description")

    others = sum(
        (to_decimal(a.allocated_amount) for a in credit.allocations if a is not allocation),
        ZERO,
    )
    if others + allocation.allocated_amount > to_decimal(credit.amount):
        raise ValidationError(
            "Zbroj alokacija ne može biti veći od iznosa kredita.",
            "allocated_amount",
        )
    if allocation.allocated_amount < to_decimal(allocation.used_amount):
        raise ValidationError("Iznos alokacije ne može biti manji od iskorištenog iznosa.", "allocated_amount")


@credits_bp.route("/<int:credit_id>/allocations")
@login_required
def list_allocations(credit_id: int):
    credit = db.get_or_404(BankCredit, credit_id)
    return jsonify([a.to_dict() for a in credit.allocations])


@credits_bp.route("/<int:credit_id>/allocations", methods=["POST"])
@login_required
@editor_required
def create_allocation(credit_id: int):
    credit = db.get_or_404(BankCredit, credit_id)
    allocation = CreditAllocation(credit_id=credit.id, used_amount=ZERO)
    _apply_allocation_payload(allocation, credit, request_payload())

    db.session.add(allocation)
    db.session.flush()
    log_action(allocation, "CREATE", after=serialize_model(allocation))
    db.session.commit()

    logger.info("Allocation of %s created on credit %s", allocation.allocated_amount, credit.credit_name)
    return jsonify(allocation.to_dict()), 201


@credits_bp.route("/allocations/<int:allocation_id>", methods=["PUT"])
@login_required
@editor_required
def update_allocation(allocation_id: int):
    allocation = db.get_or_404(CreditAllocation, allocation_id)
    before_snapshot = serialize_model(allocation)

    with db.session.no_autoflush:
        _apply_allocation_payload(allocation, allocation.credit, request_payload())
    log_action(allocation, "UPDATE", before=before_snapshot, after=serialize_model(allocation))
    db.session.commit()

    logger.info("Allocation %s updated", allocation.id)
    return jsonify(allocation.to_dict())


@credits_bp.route("/allocations/<int:allocation_id>", methods=["DELETE"])
@login_required
@editor_required
def delete_allocation(allocation_id: int):
    allocation = db.get_or_404(CreditAllocation, allocation_id)
    if to_decimal(allocation.used_amount) > ZERO:
        raise ValidationError("Alokacija je već korištena i ne može se obrisati.", "allocation_id")

    log_action(allocation, "DELETE", before=serialize_model(allocation))
    db.session.delete(allocation)
    db.session.commit()

    logger.info("Allocation %s deleted", allocation_id)
    return jsonify({"ok": True})
