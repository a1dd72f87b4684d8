"""
accounting/blueprints/investments/routes.py

Project investments (equity, debt, convertible notes, SAFE).

The target bank account is only kept while disbursed_to_account is set.
"""

from __future__ import annotations

import logging

from flask import Blueprint, jsonify, request
from flask_login import login_required
from sqlalchemy import func

from ...audit import log_action, serialize_model
from ...errors import ValidationError
from ...extensions import db
from ...models import INVESTMENT_TYPES, CompanyBankAccount, Investor, Project, ProjectInvestment
from ...security import editor_required
from ...utils import (
    bool_field,
    choice_field,
    date_field,
    decimal_field,
    parse_optional_int,
    reference_field,
    request_payload,
    text_field,
)

logger = logging.getLogger(__name__)

investments_bp = Blueprint("investments", __name__, url_prefix="/investments")

INVESTMENT_STATUSES = ("active", "exited", "cancelled")


def _apply_payload(investment: ProjectInvestment, data: dict) -> None:
    project = reference_field(data, "project_id", Project, required=True, label="Projekt")
    investor = reference_field(data, "investor_id", Investor, required=True, label="Investitor")
    investment.project_id = project.id
    investment.investor_id = investor.id

    investment.investment_type = choice_field(data, "investment_type", INVESTMENT_TYPES, default="equity")
    investment.amount = decimal_field(data, "amount", required=True, positive=True, label="Iznos")

    stake = decimal_field(data, "percentage_stake", label="Udio")
    if stake is not None and stake > 100:
        raise ValidationError("Udio ne može biti veći od 100%.", "percentage_stake")
    investment.percentage_stake = stake
    investment.expected_return = decimal_field(data, "expected_return", label="Očekivani povrat")

    investment.investment_date = date_field(data, "investment_date", required=True, label="Datum investicije")
    investment.maturity_date = date_field(data, "maturity_date", label="Datum dospijeća")
    if investment.maturity_date and investment.maturity_date < investment.investment_date:
        raise ValidationError("Datum dospijeća ne može biti prije datuma investicije.", "maturity_date")

    investment.status = choice_field(data, "status", INVESTMENT_STATUSES, default="active")
    investment.terms = text_field(data, "terms")

    investment.disbursed_to_account = bool_field(data, "disbursed_to_account")
    account = None
    if investment.disbursed_to_account:
        account = reference_field(data, "disbursed_to_bank_account_id", CompanyBankAccount, label="Račun isplate")
    investment.disbursed_to_bank_account_id = account.id if account else None


@investments_bp.route("/")
@login_required
def list_investments():
    q = ProjectInvestment.query
    for field in ("project_id", "investor_id"):
        value = parse_optional_int(request.args.get(field))
        if value:
            q = q.filter(getattr(ProjectInvestment, field) == value)

    investments = q.order_by(ProjectInvestment.investment_date.desc(), ProjectInvestment.id.desc()).all()
    total = q.with_entities(func.coalesce(func.sum(ProjectInvestment.amount), 0)).scalar()
    return jsonify({
        "items": [i.to_dict() for i in investments],
        "total_invested": float(total),
    })


@investments_bp.route("/", methods=["POST"])
@login_required
@editor_required
def create_investment():
    investment = ProjectInvestment()
    _apply_payload(investment, request_payload())

    db.session.add(investment)
    db.session.flush()
    log_action(investment, "CREATE", after=serialize_model(investment))
    db.session.commit()

    logger.info("Investment %s of %s created", investment.id, investment.amount)
    return jsonify(investment.to_dict()), 201


@investments_bp.route("/<int:investment_id>", methods=["PUT"])
@login_required
@editor_required
def update_investment(investment_id: int):
    investment = db.get_or_404(ProjectInvestment, investment_id)
    before_snapshot = serialize_model(investment)

    with db.session.no_autoflush:
        _apply_payload(investment, request_payload())
    log_action(investment, "UPDATE", before=before_snapshot, after=serialize_model(investment))
    db.session.commit()

    logger.info("Investment %s updated", investment.id)
    return jsonify(investment.to_dict())


@investments_bp.route("/<int:investment_id>", methods=["DELETE"])
@login_required
@editor_required
def delete_investment(investment_id: int):
    investment = db.get_or_404(ProjectInvestment, investment_id)

    log_action(investment, "DELETE", before=serialize_model(investment))
    db.session.delete(investment)
    db.session.commit()

    logger.info("Investment %s deleted", investment_id)
    return jsonify({"ok": True})
