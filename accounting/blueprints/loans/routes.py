"""
accounting/blueprints/loans/routes.py

Inter-company loans (pozajmice).

Rules:
- Lender and borrower must be different companies.
- Each bank account must belong to the company it is listed under.
- Creating a loan moves the amount from the lender's account to the borrower's;
  deleting it moves the amount back. Loans carry no interest.
"""

from __future__ import annotations

import logging

from flask import Blueprint, jsonify, request
from flask_login import login_required
from sqlalchemy import func, or_

from ...audit import log_action, serialize_model
from ...errors import ValidationError
from ...extensions import db
from ...models import Company, CompanyBankAccount, CompanyLoan
from ...security import editor_required
from ...utils import date_field, decimal_field, parse_optional_int, reference_field, request_payload

logger = logging.getLogger(__name__)

loans_bp = Blueprint("loans", __name__, url_prefix="/loans")


def _company_account(data: dict, company_field: str, account_field: str, label: str):
    company = reference_field(data, company_field, Company, required=True, label=label)
    account = reference_field(data, account_field, CompanyBankAccount, required=True, label="Bankovni račun")
    if account.company_id != company.id:
        raise ValidationError("Bankovni račun ne pripada odabranoj tvrtki.", account_field)
    return company, account


@loans_bp.route("/")
@login_required
def list_loans():
    q = CompanyLoan.query
    company_id = parse_optional_int(request.args.get("company_id"))
    if company_id:
        q = q.filter(or_(CompanyLoan.from_company_id == company_id, CompanyLoan.to_company_id == company_id))

    loans = q.order_by(CompanyLoan.loan_date.desc(), CompanyLoan.id.desc()).all()
    total = q.with_entities(func.coalesce(func.sum(CompanyLoan.amount), 0)).scalar()
    return jsonify({"items": [loan.to_dict() for loan in loans], "total_amount": float(total)})


@loans_bp.route("/", methods=["POST"])
@login_required
@editor_required
def create_loan():
    data = request_payload()

    from_company, from_account = _company_account(data, "from_company_id", "from_bank_account_id", "Tvrtka davatelj")
    to_company, to_account = _company_account(data, "to_company_id", "to_bank_account_id", "Tvrtka primatelj")
    if from_company.id == to_company.id:
        raise ValidationError("Tvrtka davatelj i primatelj moraju biti različite.", "to_company_id")

    loan = CompanyLoan(
        from_company_id=from_company.id,
        from_bank_account_id=from_account.id,
        to_company_id=to_company.id,
        to_bank_account_id=to_account.id,
        amount=decimal_field(data, "amount", required=True, positive=True, label="Iznos"),
        loan_date=date_field(data, "loan_date", required=True, label="Datum pozajmice"),
    )

    from_account.adjust_balance(-loan.amount)
    to_account.adjust_balance(loan.amount)

    db.session.add(loan)
    db.session.flush()
    log_action(loan, "CREATE", after=serialize_model(loan))
    db.session.commit()

    logger.info("Loan %s: %s from %s to %s", loan.id, loan.amount, from_company.name, to_company.name)
    return jsonify(loan.to_dict()), 201


@loans_bp.route("/<int:loan_id>", methods=["DELETE"])
@login_required
@editor_required
def delete_loan(loan_id: int):
    loan = db.get_or_404(CompanyLoan, loan_id)

    loan.from_bank_account.adjust_balance(loan.amount)
    loan.to_bank_account.adjust_balance(-loan.amount)

    log_action(loan, "DELETE", before=serialize_model(loan))
    db.session.delete(loan)
    db.session.commit()

    logger.info("Loan %s deleted, balances restored", loan_id)
    return jsonify({"ok": True})
