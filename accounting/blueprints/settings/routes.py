"""
accounting/blueprints/settings/routes.py

Settings & master data routes.

Scope:
- Companies (OIB) and their bank accounts
- Simple counterparties: subcontractors, office suppliers, retail suppliers/customers,
  customers, investors, projects (one generic CRUD, see PARTY_KINDS)
- Contracts and milestones
- Invoice categories
- Per-user preferences (invoice/payment table column visibility)

SECURITY:
- Mutations require admin/accountant; the viewer guard also blocks them globally.
  Saving one's own preferences is the exception (allowed for viewers).

AUDIT:
- CREATE/UPDATE/DELETE of master data is audited via accounting/audit.py.
"""

from __future__ import annotations

import logging
import re

from flask import Blueprint, jsonify, request
from flask_login import current_user, login_required

from ...audit import log_action, serialize_model
from ...calculations import HUNDRED, ZERO, money, to_decimal
from ...errors import ValidationError
from ...extensions import db
from ...models import (
    MILESTONE_STATUSES,
    Bank,
    Company,
    CompanyBankAccount,
    Contract,
    Customer,
    Invoice,
    InvoiceCategory,
    Investor,
    Milestone,
    OfficeSupplier,
    Project,
    RetailCustomer,
    RetailSupplier,
    Supplier,
    UserPreference,
)
from ...security import editor_required
from ...utils import (
    choice_field,
    date_field,
    decimal_field,
    get_active_categories,
    int_field,
    parse_decimal,
    parse_optional_int,
    reference_field,
    request_payload,
    text_field,
)

logger = logging.getLogger(__name__)

settings_bp = Blueprint("settings", __name__, url_prefix="/settings")

OIB_RE = re.compile(r"^\d{11}$")

CONTRACT_STATUSES = ("active", "completed", "cancelled")

# kind -> (model, editable text fields, invoice column that references it)
PARTY_KINDS = {
    "suppliers": (Supplier, ("name", "contact"), "supplier_id"),
    "office-suppliers": (OfficeSupplier, ("name", "contact", "email"), "office_supplier_id"),
    "retail-suppliers": (RetailSupplier, ("name", "contact"), "retail_supplier_id"),
    "retail-customers": (RetailCustomer, ("name", "contact"), "retail_customer_id"),
    "customers": (Customer, ("name", "surname", "email"), "customer_id"),
    "investors": (Investor, ("name", "investor_type"), "investor_id"),
    "projects": (Project, ("name",), "project_id"),
}

PREFERENCE_KEYS = ("invoice_columns", "payment_columns")


def _is_referenced_by_invoices(column: str, row_id: int) -> bool:
    return Invoice.query.filter(getattr(Invoice, column) == row_id).first() is not None


# ----------------------------------------------------------------------
# Companies + bank accounts
# ----------------------------------------------------------------------
def _apply_company_payload(company: Company, data: dict) -> None:
    company.name = text_field(data, "name", required=True, label="Naziv tvrtke")
    oib = text_field(data, "oib", required=True, label="OIB")
    if not OIB_RE.match(oib):
        raise ValidationError("OIB mora imati točno 11 znamenki.", "oib")

    existing = Company.query.filter(Company.oib == oib, Company.id != company.id).first()
    if existing:
        raise ValidationError("Tvrtka s tim OIB-om već postoji.", "oib")
    company.oib = oib


@settings_bp.route("/companies")
@login_required
def list_companies():
    companies = Company.query.order_by(Company.name.asc()).all()
    return jsonify([c.to_dict(with_accounts=True) for c in companies])


@settings_bp.route("/companies", methods=["POST"])
@login_required
@editor_required
def create_company():
    company = Company()
    _apply_company_payload(company, request_payload())

    db.session.add(company)
    db.session.flush()
    log_action(company, "CREATE", after=serialize_model(company))
    db.session.commit()

    logger.info("Company %s (%s) created", company.name, company.oib)
    return jsonify(company.to_dict(with_accounts=True)), 201


@settings_bp.route("/companies/<int:company_id>", methods=["PUT"])
@login_required
@editor_required
def update_company(company_id: int):
    company = db.get_or_404(Company, company_id)
    before_snapshot = serialize_model(company)

    with db.session.no_autoflush:
        _apply_company_payload(company, request_payload())
    log_action(company, "UPDATE", before=before_snapshot, after=serialize_model(company))
    db.session.commit()

    logger.info("Company %s updated", company.name)
    return jsonify(company.to_dict(with_accounts=True))


@settings_bp.route("/companies/<int:company_id>", methods=["DELETE"])
@login_required
@editor_required
def delete_company(company_id: int):
    company = db.get_or_404(Company, company_id)
    if _is_referenced_by_invoices("company_id", company.id):
        raise ValidationError("Tvrtka ima račune i ne može se obrisati.", "company_id")

    log_action(company, "DELETE", before=serialize_model(company))
    db.session.delete(company)
    db.session.commit()

    logger.info("Company %s deleted", company_id)
    return jsonify({"ok": True})


def _apply_account_payload(account: CompanyBankAccount, data: dict) -> None:
    bank = reference_field(data, "bank_id", Bank, label="Banka")
    account.bank_id = bank.id if bank else None
    account.bank_name = text_field(data, "bank_name") or (bank.name if bank else None)
    if not account.bank_name:
        raise ValidationError("Naziv banke je obavezno polje.", "bank_name")
    account.account_number = text_field(data, "account_number")
    if "current_balance" in data:
        raw = data.get("current_balance")
        balance = parse_decimal(raw)
        if balance is None and raw not in (None, ""):
            raise ValidationError("Stanje računa: neispravan iznos.", "current_balance")
        account.current_balance = money(balance) if balance is not None else ZERO


@settings_bp.route("/companies/<int:company_id>/accounts", methods=["POST"])
@login_required
@editor_required
def create_bank_account(company_id: int):
    company = db.get_or_404(Company, company_id)
    account = CompanyBankAccount(company_id=company.id, current_balance=ZERO)
    _apply_account_payload(account, request_payload())

    db.session.add(account)
    db.session.flush()
    log_action(account, "CREATE", after=serialize_model(account))
    db.session.commit()

    logger.info("Bank account %s added to %s", account.bank_name, company.name)
    return jsonify(account.to_dict()), 201


@settings_bp.route("/accounts/<int:account_id>", methods=["PUT"])
@login_required
@editor_required
def update_bank_account(account_id: int):
    account = db.get_or_404(CompanyBankAccount, account_id)
    before_snapshot = serialize_model(account)

    with db.session.no_autoflush:
        _apply_account_payload(account, request_payload())
    log_action(account, "UPDATE", before=before_snapshot, after=serialize_model(account))
    db.session.commit()

    return jsonify(account.to_dict())


@settings_bp.route("/accounts/<int:account_id>", methods=["DELETE"])
@login_required
@editor_required
def delete_bank_account(account_id: int):
    account = db.get_or_404(CompanyBankAccount, account_id)

    log_action(account, "DELETE", before=serialize_model(account))
    db.session.delete(account)
    db.session.commit()

    logger.info("Bank account %s deleted", account_id)
    return jsonify({"ok": True})


# ----------------------------------------------------------------------
# Counterparties / projects (generic)
# ----------------------------------------------------------------------
def _party_kind(kind: str):
    if kind not in PARTY_KINDS:
        raise ValidationError("Nepoznata vrsta zapisa.", "kind")
    return PARTY_KINDS[kind]


def _apply_party_payload(row, fields: tuple, data: dict) -> None:
    for field in fields:
        setattr(row, field, text_field(data, field, required=(field == "name"), label="Naziv"))
    if isinstance(row, Customer) and row.surname is None:
        row.surname = ""


@settings_bp.route("/parties/<kind>")
@login_required
def list_parties(kind: str):
    model, _, _ = _party_kind(kind)
    q = model.query
    search = (request.args.get("search") or "").strip()
    if search:
        q = q.filter(model.name.ilike(f"%{search}%"))
    return jsonify([row.to_dict() for row in q.order_by(model.name.asc()).all()])


@settings_bp.route("/parties/<kind>", methods=["POST"])
@login_required
@editor_required
def create_party(kind: str):
    model, fields, _ = _party_kind(kind)
    row = model()
    _apply_party_payload(row, fields, request_payload())

    db.session.add(row)
    db.session.flush()
    log_action(row, "CREATE", after=serialize_model(row))
    db.session.commit()

    logger.info("%s %s created", model.__name__, row.name)
    return jsonify(row.to_dict()), 201


@settings_bp.route("/parties/<kind>/<int:row_id>", methods=["PUT"])
@login_required
@editor_required
def update_party(kind: str, row_id: int):
    model, fields, _ = _party_kind(kind)
    row = db.get_or_404(model, row_id)
    before_snapshot = serialize_model(row)

    _apply_party_payload(row, fields, request_payload())
    log_action(row, "UPDATE", before=before_snapshot, after=serialize_model(row))
    db.session.commit()

    return jsonify(row.to_dict())


@settings_bp.route("/parties/<kind>/<int:row_id>", methods=["DELETE"])
@login_required
@editor_required
def delete_party(kind: str, row_id: int):
    model, _, invoice_column = _party_kind(kind)
    row = db.get_or_404(model, row_id)
    if _is_referenced_by_invoices(invoice_column, row.id):
        raise ValidationError("Zapis se koristi na računima i ne može se obrisati.", invoice_column)

    log_action(row, "DELETE", before=serialize_model(row))
    db.session.delete(row)
    db.session.commit()

    logger.info("%s %s deleted", model.__name__, row_id)
    return jsonify({"ok": True})


# ----------------------------------------------------------------------
# Contracts + milestones
# ----------------------------------------------------------------------
def _apply_contract_payload(contract: Contract, data: dict) -> None:
    number = text_field(data, "contract_number", required=True, label="Broj ugovora")
    existing = Contract.query.filter(Contract.contract_number == number, Contract.id != contract.id).first()
    if existing:
        raise ValidationError("Ugovor s tim brojem već postoji.", "contract_number")
    contract.contract_number = number

    supplier = reference_field(data, "supplier_id", Supplier, required=True, label="Dobavljač")
    project = reference_field(data, "project_id", Project, label="Projekt")
    contract.supplier_id = supplier.id
    contract.project_id = project.id if project else None

    contract.job_description = text_field(data, "job_description")
    contract.contract_amount = decimal_field(data, "contract_amount", required=True, positive=True, label="Iznos ugovora")
    contract.status = choice_field(data, "status", CONTRACT_STATUSES, default=contract.status or "active")


@settings_bp.route("/contracts")
@login_required
def list_contracts():
    q = Contract.query
    for field in ("supplier_id", "project_id"):
        value = parse_optional_int(request.args.get(field))
        if value:
            q = q.filter(getattr(Contract, field) == value)
    contracts = q.order_by(Contract.contract_number.asc()).all()
    return jsonify([
        {**c.to_dict(), "milestones": [m.to_dict() for m in c.milestones]}
        for c in contracts
    ])


@settings_bp.route("/contracts", methods=["POST"])
@login_required
@editor_required
def create_contract():
    contract = Contract()
    _apply_contract_payload(contract, request_payload())

    db.session.add(contract)
    db.session.flush()
    log_action(contract, "CREATE", after=serialize_model(contract))
    db.session.commit()

    logger.info("Contract %s created", contract.contract_number)
    return jsonify(contract.to_dict()), 201


@settings_bp.route("/contracts/<int:contract_id>", methods=["PUT"])
@login_required
@editor_required
def update_contract(contract_id: int):
    contract = db.get_or_404(Contract, contract_id)
    before_snapshot = serialize_model(contract)

    with db.session.no_autoflush:
        _apply_contract_payload(contract, request_payload())
    log_action(contract, "UPDATE", before=before_snapshot, after=serialize_model(contract))
    db.session.commit()

    return jsonify(contract.to_dict())


@settings_bp.route("/contracts/<int:contract_id>", methods=["DELETE"])
@login_required
@editor_required
def delete_contract(contract_id: int):
    contract = db.get_or_404(Contract, contract_id)
    if _is_referenced_by_invoices("contract_id", contract.id):
        raise ValidationError("Ugovor ima račune i ne može se obrisati.", "contract_id")

    log_action(contract, "DELETE", before=serialize_model(contract))
    db.session.delete(contract)
    db.session.commit()

    logger.info("Contract %s deleted", contract_id)
    return jsonify({"ok": True})


def _apply_milestone_payload(milestone: Milestone, contract: Contract, data: dict) -> None:
    number = int_field(data, "milestone_number", required=True, label="Redni broj faze")
    duplicate = next(
        (m for m in contract.milestones if m.milestone_number == number and m is not milestone),
        None,
    )
    if duplicate is not None:
        raise ValidationError("Faza s tim rednim brojem već postoji.", "milestone_number")
    milestone.milestone_number = number

    milestone.milestone_name = text_field(data, "milestone_name", required=True, label="Naziv faze")
    milestone.description = text_field(data, "description")
    milestone.percentage = decimal_field(data, "percentage", required=True, positive=True, label="Postotak")
    milestone.due_date = date_field(data, "due_date", label="Rok")
    milestone.status = choice_field(data, "status", MILESTONE_STATUSES, default=milestone.status or "pending")

    others = sum((to_decimal(m.percentage) for m in contract.milestones if m is not milestone), ZERO)
    if others + milestone.percentage > HUNDRED:
        raise ValidationError("Zbroj postotaka faza ne može biti veći od 100%.", "percentage")


@settings_bp.route("/contracts/<int:contract_id>/milestones", methods=["POST"])
@login_required
@editor_required
def create_milestone(contract_id: int):
    contract = db.get_or_404(Contract, contract_id)
    milestone = Milestone(contract_id=contract.id)
    _apply_milestone_payload(milestone, contract, request_payload())

    db.session.add(milestone)
    db.session.flush()
    log_action(milestone, "CREATE", after=serialize_model(milestone))
    db.session.commit()

    logger.info("Milestone %s added to contract %s", milestone.milestone_number, contract.contract_number)
    return jsonify(milestone.to_dict()), 201


@settings_bp.route("/milestones/<int:milestone_id>", methods=["PUT"])
@login_required
@editor_required
def update_milestone(milestone_id: int):
    milestone = db.get_or_404(Milestone, milestone_id)
    before_snapshot = serialize_model(milestone)

    with db.session.no_autoflush:
        _apply_milestone_payload(milestone, milestone.contract, request_payload())
    log_action(milestone, "UPDATE", before=before_snapshot, after=serialize_model(milestone))
    db.session.commit()

    return jsonify(milestone.to_dict())


@settings_bp.route("/milestones/<int:milestone_id>", methods=["DELETE"])
@login_required
@editor_required
def delete_milestone(milestone_id: int):
    milestone = db.get_or_404(Milestone, milestone_id)
    if _is_referenced_by_invoices("milestone_id", milestone.id):
        raise ValidationError("Faza je fakturirana i ne može se obrisati.", "milestone_id")

    log_action(milestone, "DELETE", before=serialize_model(milestone))
    db.session.delete(milestone)
    db.session.commit()

    return jsonify({"ok": True})


# ----------------------------------------------------------------------
# Invoice categories
# ----------------------------------------------------------------------
@settings_bp.route("/categories")
@login_required
def list_categories():
    return jsonify(get_active_categories())


@settings_bp.route("/categories", methods=["POST"])
@login_required
@editor_required
def create_category():
    data = request_payload()
    name = text_field(data, "name", required=True, label="Naziv kategorije")
    if InvoiceCategory.query.filter_by(name=name).first():
        raise ValidationError("Kategorija već postoji.", "name")

    category = InvoiceCategory(name=name, is_active=True, sort_order=int_field(data, "sort_order") or 0)
    db.session.add(category)
    db.session.flush()
    log_action(category, "CREATE", after=serialize_model(category))
    db.session.commit()

    return jsonify({"id": category.id, "name": category.name}), 201


# ----------------------------------------------------------------------
# Preferences (self-service)
# ----------------------------------------------------------------------
def _preference_key(key: str) -> str:
    if key not in PREFERENCE_KEYS:
        raise ValidationError("Nepoznata postavka.", "key")
    return key


@settings_bp.route("/preferences/<key>")
@login_required
def get_preference(key: str):
    pref = UserPreference.query.filter_by(user_id=current_user.id, key=_preference_key(key)).first()
    return jsonify({"key": key, "value": pref.get_value() if pref else {}})


@settings_bp.route("/preferences/<key>", methods=["PUT"])
@login_required
def save_preference(key: str):
    """Column visibility map, e.g. {"iban": false, "description": true}."""
    key = _preference_key(key)
    data = request_payload()
    value = data.get("value", data)
    if not isinstance(value, dict) or not all(isinstance(v, bool) for v in value.values()):
        raise ValidationError("Postavka mora biti mapa stupac -> true/false.", "value")

    pref = UserPreference.query.filter_by(user_id=current_user.id, key=key).first()
    if pref is None:
        pref = UserPreference(user_id=current_user.id, key=key)
        db.session.add(pref)
    pref.set_value(value)
    db.session.commit()

    return jsonify({"key": key, "value": pref.get_value()})
