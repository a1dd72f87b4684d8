"""
accounting/models.py

Domain models of the real-estate back-office accounting module.

Includes:
- Users, per-user preferences (column visibility) and the audit log
- Master data: companies + bank accounts, banks, suppliers (subcontractors, office, retail),
  customers, investors, projects, contracts + milestones, invoice categories, refund types
- Invoices (four PDV slots), payments (incl. cesija), bank credits + allocations,
  inter-company loans, project investments

IMPORTANT:
- Derived amounts (invoice totals/status, credit usage/installment, allocation usage)
  are recomputed server-side by the recalc_* methods; client values are never trusted.
- Formulas live in calculations.py, models only apply them to their columns.
"""

from __future__ import annotations

import json
from datetime import date, datetime
from decimal import Decimal

from flask_login import UserMixin
from sqlalchemy import func, or_
from werkzeug.security import generate_password_hash, check_password_hash

from .calculations import (
    STATUS_UNPAID,
    ZERO,
    annuity_payment,
    decompose_vat,
    derive_status,
    money,
    to_decimal,
)
from .extensions import db


# ---------------------------------------------------------------------
# Vocabularies
# ---------------------------------------------------------------------
INVOICE_TYPES = (
    "INCOMING_SUPPLIER",
    "INCOMING_INVESTMENT",
    "INCOMING_OFFICE",
    "INCOMING_BANK",
    "OUTGOING_SUPPLIER",
    "OUTGOING_SALES",
    "OUTGOING_OFFICE",
    "OUTGOING_BANK",
)

# Invoices we owe money on; every other type brings money in
EXPENSE_INVOICE_TYPES = ("INCOMING_SUPPLIER", "INCOMING_OFFICE", "INCOMING_BANK")

INVOICE_TYPE_LABELS = {
    "INCOMING_SUPPLIER": "ULAZNI (DOB)",
    "INCOMING_INVESTMENT": "ULAZNI (INV)",
    "INCOMING_OFFICE": "ULAZNI (URED)",
    "INCOMING_BANK": "ULAZNI (BANKA)",
    "OUTGOING_OFFICE": "IZLAZNI (URED)",
    "OUTGOING_SUPPLIER": "IZLAZNI (DOB)",
    "OUTGOING_SALES": "IZLAZNI (PROD)",
    "OUTGOING_BANK": "IZLAZNI (BANKA)",
}

INVOICE_STATUSES = ("UNPAID", "PARTIALLY_PAID", "PAID")

PAYMENT_METHODS = ("WIRE", "CASH", "CHECK", "CARD")
PAYMENT_METHOD_LABELS = {"WIRE": "Virman", "CASH": "Gotovina", "CHECK": "Ček", "CARD": "Kartica"}
PAYMENT_SOURCE_TYPES = ("bank_account", "credit")

REPAYMENT_TYPES = ("monthly", "quarterly", "biyearly", "yearly")
CREDIT_TYPES = ("construction_loan", "term_loan", "line_of_credit", "bridge_loan", "equity")
CREDIT_SENIORITIES = ("senior", "junior")

INVESTMENT_TYPES = ("equity", "debt", "convertible_note", "safe")

MILESTONE_STATUSES = ("pending", "completed", "paid")

USER_ROLES = ("admin", "accountant", "viewer")


# ---------------------------------------------------------------------
# Serialization helpers
# ---------------------------------------------------------------------
def _num(value) -> float | None:
    """Numeric column -> float for JSON (None stays None)."""
    if value is None:
        return None
    return float(value)


def _iso(value: date | datetime | None) -> str | None:
    return value.isoformat() if value else None


class TimestampMixin:
    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


# ---------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------
class User(UserMixin, db.Model):
    """System login user."""

    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)

    username = db.Column(db.String(80), unique=True, nullable=False, index=True)
    password_hash = db.Column(db.String(255), nullable=False)
    full_name = db.Column(db.String(150), nullable=True)

    role = db.Column(db.String(20), nullable=False, default="accountant", index=True)
    is_active = db.Column(db.Boolean, default=True, nullable=False)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def set_password(self, password: str):
        self.password_hash = generate_password_hash(password)

    def check_password(self, password: str) -> bool:
        return check_password_hash(self.password_hash, password)

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    def can_edit(self) -> bool:
        return self.role in ("admin", "accountant")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "username": self.username,
            "full_name": self.full_name,
            "role": self.role,
            "is_active": self.is_active,
        }

    def __repr__(self):
        return f"<User {self.username}>"


class UserPreference(db.Model):
    """Persisted per-user setting (e.g. visible invoice table columns)."""

    __tablename__ = "user_preferences"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    key = db.Column(db.String(80), nullable=False)
    value = db.Column(db.Text, nullable=False, default="{}")

    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    user = db.relationship("User", backref=db.backref("preferences", lazy=True, cascade="all, delete-orphan"))

    __table_args__ = (db.UniqueConstraint("user_id", "key", name="uq_user_preference_key"),)

    def get_value(self):
        return json.loads(self.value or "{}")

    def set_value(self, data) -> None:
        self.value = json.dumps(data, ensure_ascii=False)


# ---------------------------------------------------------------------
# Master data
# ---------------------------------------------------------------------
class Company(db.Model):
    """One of our own companies (invoices are issued/received in its name)."""

    __tablename__ = "accounting_companies"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False, index=True)
    oib = db.Column(db.String(11), nullable=False, unique=True, index=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)

    bank_accounts = db.relationship(
        "CompanyBankAccount",
        back_populates="company",
        cascade="all, delete-orphan",
        order_by="CompanyBankAccount.bank_name",
    )

    def to_dict(self, with_accounts: bool = False) -> dict:
        data = {"id": self.id, "name": self.name, "oib": self.oib}
        if with_accounts:
            data["bank_accounts"] = [a.to_dict() for a in self.bank_accounts]
            data["total_balance"] = _num(sum((to_decimal(a.current_balance) for a in self.bank_accounts), ZERO))
        return data

    def __repr__(self):
        return f"<Company {self.oib} - {self.name}>"


class Bank(db.Model):
    __tablename__ = "banks"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False, unique=True, index=True)
    contact_person = db.Column(db.String(150))
    contact_email = db.Column(db.String(150))
    contact_phone = db.Column(db.String(50))

    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)

    credits = db.relationship("BankCredit", back_populates="bank", order_by="BankCredit.start_date.desc()")

    def credit_totals(self) -> dict:
        """Aggregates shown on the bank card: limit, used, repaid, outstanding."""
        credits = list(self.credits)
        return {
            "total_credit_limit": sum((to_decimal(c.amount) for c in credits), ZERO),
            "total_used": sum((to_decimal(c.used_amount) for c in credits), ZERO),
            "total_repaid": sum((to_decimal(c.repaid_amount) for c in credits), ZERO),
            "total_outstanding": sum((to_decimal(c.outstanding_balance) for c in credits), ZERO),
        }

    def to_dict(self, with_credits: bool = False) -> dict:
        data = {
            "id": self.id,
            "name": self.name,
            "contact_person": self.contact_person,
            "contact_email": self.contact_email,
            "contact_phone": self.contact_phone,
        }
        if with_credits:
            data.update({k: _num(v) for k, v in self.credit_totals().items()})
            data["credits"] = [c.to_dict() for c in self.credits]
        return data


class CompanyBankAccount(db.Model):
    __tablename__ = "company_bank_accounts"

    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(
        db.Integer,
        db.ForeignKey("accounting_companies.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    bank_id = db.Column(db.Integer, db.ForeignKey("banks.id", ondelete="SET NULL"), nullable=True, index=True)

    bank_name = db.Column(db.String(150), nullable=False)
    account_number = db.Column(db.String(34), nullable=True)
    current_balance = db.Column(db.Numeric(14, 2), nullable=False, default=Decimal("0.00"))

    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    company = db.relationship("Company", back_populates="bank_accounts")
    bank = db.relationship("Bank")

    def adjust_balance(self, delta: Decimal) -> None:
        self.current_balance = money(to_decimal(self.current_balance) + delta)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "company_id": self.company_id,
            "bank_id": self.bank_id,
            "bank_name": self.bank_name,
            "account_number": self.account_number,
            "current_balance": _num(self.current_balance),
        }


class Supplier(db.Model):
    """Subcontractor (site works supplier)."""

    __tablename__ = "subcontractors"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False, index=True)
    contact = db.Column(db.String(255))

    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.name, "contact": self.contact}


class OfficeSupplier(db.Model):
    __tablename__ = "office_suppliers"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False, index=True)
    contact = db.Column(db.String(255))
    email = db.Column(db.String(150))

    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.name, "contact": self.contact, "email": self.email}


class RetailSupplier(db.Model):
    __tablename__ = "retail_suppliers"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False, index=True)
    contact = db.Column(db.String(255))

    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.name, "contact": self.contact}


class RetailCustomer(db.Model):
    __tablename__ = "retail_customers"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False, index=True)
    contact = db.Column(db.String(255))

    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.name, "contact": self.contact}


class Customer(db.Model):
    """Apartment buyer."""

    __tablename__ = "customers"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False)
    surname = db.Column(db.String(120), nullable=False, default="")
    email = db.Column(db.String(150))

    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)

    def full_name(self) -> str:
        return f"{self.name} {self.surname or ''}".strip()

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.name, "surname": self.surname, "email": self.email}


class Investor(db.Model):
    __tablename__ = "investors"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False, index=True)
    investor_type = db.Column(db.String(50))

    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.name, "type": self.investor_type}


class Project(db.Model):
    __tablename__ = "projects"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False, index=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.name}


class Contract(db.Model):
    """Subcontractor agreement; contract_amount is VAT-inclusive at 25%."""

    __tablename__ = "contracts"

    id = db.Column(db.Integer, primary_key=True)
    contract_number = db.Column(db.String(100), nullable=False, unique=True, index=True)

    project_id = db.Column(db.Integer, db.ForeignKey("projects.id", ondelete="SET NULL"), nullable=True, index=True)
    supplier_id = db.Column(db.Integer, db.ForeignKey("subcontractors.id", ondelete="CASCADE"), nullable=False, index=True)

    job_description = db.Column(db.Text)
    contract_amount = db.Column(db.Numeric(14, 2), nullable=False, default=Decimal("0.00"))
    status = db.Column(db.String(20), nullable=False, default="active", index=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)

    project = db.relationship("Project")
    supplier = db.relationship("Supplier", backref=db.backref("contracts", lazy=True))

    milestones = db.relationship(
        "Milestone",
        back_populates="contract",
        cascade="all, delete-orphan",
        order_by="Milestone.milestone_number",
    )

    @property
    def milestone_percentage_total(self) -> Decimal:
        return sum((to_decimal(m.percentage) for m in self.milestones), ZERO)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "contract_number": self.contract_number,
            "project_id": self.project_id,
            "project_name": self.project.name if self.project else None,
            "supplier_id": self.supplier_id,
            "job_description": self.job_description,
            "contract_amount": _num(self.contract_amount),
            "status": self.status,
        }


class Milestone(db.Model):
    __tablename__ = "subcontractor_milestones"

    id = db.Column(db.Integer, primary_key=True)
    contract_id = db.Column(db.Integer, db.ForeignKey("contracts.id", ondelete="CASCADE"), nullable=False, index=True)

    milestone_number = db.Column(db.Integer, nullable=False)
    milestone_name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text)
    percentage = db.Column(db.Numeric(6, 2), nullable=False, default=Decimal("0.00"))
    due_date = db.Column(db.Date, nullable=True)
    status = db.Column(db.String(20), nullable=False, default="pending", index=True)

    contract = db.relationship("Contract", back_populates="milestones")

    __table_args__ = (db.UniqueConstraint("contract_id", "milestone_number", name="uq_contract_milestone_number"),)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "contract_id": self.contract_id,
            "milestone_number": self.milestone_number,
            "milestone_name": self.milestone_name,
            "description": self.description,
            "percentage": _num(self.percentage),
            "due_date": _iso(self.due_date),
            "status": self.status,
        }


class InvoiceCategory(db.Model):
    __tablename__ = "invoice_categories"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False, unique=True)
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    sort_order = db.Column(db.Integer, default=0)


class Refund(db.Model):
    __tablename__ = "accounting_invoices_refund"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False, unique=True)

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.name}


# ---------------------------------------------------------------------
# Invoices
# ---------------------------------------------------------------------
class Invoice(TimestampMixin, db.Model):
    __tablename__ = "accounting_invoices"

    id = db.Column(db.Integer, primary_key=True)

    invoice_type = db.Column(db.String(30), nullable=False, index=True)
    invoice_category = db.Column(db.String(30), nullable=False, default="GENERAL", index=True)

    company_id = db.Column(
        db.Integer,
        db.ForeignKey("accounting_companies.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    # Counterparty (at most one is set, depending on invoice_type)
    supplier_id = db.Column(db.Integer, db.ForeignKey("subcontractors.id", ondelete="SET NULL"), index=True)
    office_supplier_id = db.Column(db.Integer, db.ForeignKey("office_suppliers.id", ondelete="SET NULL"), index=True)
    retail_supplier_id = db.Column(db.Integer, db.ForeignKey("retail_suppliers.id", ondelete="SET NULL"), index=True)
    retail_customer_id = db.Column(db.Integer, db.ForeignKey("retail_customers.id", ondelete="SET NULL"), index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id", ondelete="SET NULL"), index=True)
    investor_id = db.Column(db.Integer, db.ForeignKey("investors.id", ondelete="SET NULL"), index=True)
    bank_id = db.Column(db.Integer, db.ForeignKey("banks.id", ondelete="SET NULL"), index=True)
    bank_credit_id = db.Column(db.Integer, db.ForeignKey("bank_credits.id", ondelete="SET NULL"), index=True)

    project_id = db.Column(db.Integer, db.ForeignKey("projects.id", ondelete="SET NULL"), index=True)
    contract_id = db.Column(db.Integer, db.ForeignKey("contracts.id", ondelete="SET NULL"), index=True)
    milestone_id = db.Column(db.Integer, db.ForeignKey("subcontractor_milestones.id", ondelete="SET NULL"), index=True)
    refund_id = db.Column(db.Integer, db.ForeignKey("accounting_invoices_refund.id", ondelete="SET NULL"))

    invoice_number = db.Column(db.String(100), nullable=False, index=True)
    reference_number = db.Column(db.String(100))
    iban = db.Column(db.String(34))

    issue_date = db.Column(db.Date, nullable=False, index=True)
    due_date = db.Column(db.Date, nullable=False, index=True)

    # PDV slots: 1 = 25%, 2 = 13%, 3 = 0%, 4 = 5%
    base_amount_1 = db.Column(db.Numeric(14, 2), nullable=False, default=Decimal("0.00"))
    vat_rate_1 = db.Column(db.Numeric(5, 2), nullable=False, default=Decimal("25.00"))
    vat_amount_1 = db.Column(db.Numeric(14, 2), nullable=False, default=Decimal("0.00"))
    base_amount_2 = db.Column(db.Numeric(14, 2), nullable=False, default=Decimal("0.00"))
    vat_rate_2 = db.Column(db.Numeric(5, 2), nullable=False, default=Decimal("13.00"))
    vat_amount_2 = db.Column(db.Numeric(14, 2), nullable=False, default=Decimal("0.00"))
    base_amount_3 = db.Column(db.Numeric(14, 2), nullable=False, default=Decimal("0.00"))
    vat_rate_3 = db.Column(db.Numeric(5, 2), nullable=False, default=Decimal("0.00"))
    vat_amount_3 = db.Column(db.Numeric(14, 2), nullable=False, default=Decimal("0.00"))
    base_amount_4 = db.Column(db.Numeric(14, 2), nullable=False, default=Decimal("0.00"))
    vat_rate_4 = db.Column(db.Numeric(5, 2), nullable=False, default=Decimal("5.00"))
    vat_amount_4 = db.Column(db.Numeric(14, 2), nullable=False, default=Decimal("0.00"))

    base_amount = db.Column(db.Numeric(14, 2), nullable=False, default=Decimal("0.00"))
    vat_amount = db.Column(db.Numeric(14, 2), nullable=False, default=Decimal("0.00"))
    total_amount = db.Column(db.Numeric(14, 2), nullable=False, default=Decimal("0.00"))
    paid_amount = db.Column(db.Numeric(14, 2), nullable=False, default=Decimal("0.00"))
    remaining_amount = db.Column(db.Numeric(14, 2), nullable=False, default=Decimal("0.00"))
    status = db.Column(db.String(20), nullable=False, default=STATUS_UNPAID, index=True)

    category = db.Column(db.String(120))
    description = db.Column(db.Text)
    approved = db.Column(db.Boolean, nullable=False, default=False, index=True)

    created_by_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    company = db.relationship("Company")
    supplier = db.relationship("Supplier")
    office_supplier = db.relationship("OfficeSupplier")
    retail_supplier = db.relationship("RetailSupplier")
    retail_customer = db.relationship("RetailCustomer")
    customer = db.relationship("Customer")
    investor = db.relationship("Investor")
    bank = db.relationship("Bank")
    bank_credit = db.relationship("BankCredit")
    project = db.relationship("Project")
    contract = db.relationship("Contract")
    milestone = db.relationship("Milestone")
    refund = db.relationship("Refund")

    payments = db.relationship(
        "Payment",
        back_populates="invoice",
        cascade="all, delete-orphan",
        order_by="Payment.payment_date",
    )

    @property
    def base_amounts(self) -> tuple:
        return (self.base_amount_1, self.base_amount_2, self.base_amount_3, self.base_amount_4)

    @property
    def is_expense(self) -> bool:
        return self.invoice_type in EXPENSE_INVOICE_TYPES

    @property
    def type_label(self) -> str:
        return INVOICE_TYPE_LABELS.get(self.invoice_type, self.invoice_type)

    @property
    def party_name(self) -> str:
        """Supplier/customer column: first counterparty that is set."""
        if self.supplier:
            return self.supplier.name
        if self.retail_supplier:
            return self.retail_supplier.name
        if self.office_supplier:
            return self.office_supplier.name
        if self.customer:
            return self.customer.full_name()
        if self.retail_customer:
            return self.retail_customer.name
        if self.investor:
            return self.investor.name
        if self.bank:
            return self.bank.name
        return "-"

    def is_overdue(self, today: date | None = None) -> bool:
        today = today or date.today()
        return self.status != "PAID" and self.due_date is not None and self.due_date < today

    def recalc_totals(self) -> None:
        """Recompute the PDV slots, totals, remaining amount and status from the base amounts."""
        vat = decompose_vat(self.base_amounts)

        (self.base_amount_1, self.base_amount_2, self.base_amount_3, self.base_amount_4) = vat["bases"]
        (self.vat_rate_1, self.vat_rate_2, self.vat_rate_3, self.vat_rate_4) = vat["rates"]
        (self.vat_amount_1, self.vat_amount_2, self.vat_amount_3, self.vat_amount_4) = vat["vat_amounts"]

        self.base_amount = vat["base_total"]
        self.vat_amount = vat["vat_total"]
        self.total_amount = vat["total"]
        self._refresh_balance()

    def recalc_paid_amount(self) -> None:
        """Sum the invoice's payments from the database and refresh remaining/status."""
        paid = (
            db.session.query(func.coalesce(func.sum(Payment.amount), 0))
            .filter(Payment.invoice_id == self.id)
            .scalar()
        )
        self.paid_amount = money(paid)
        self._refresh_balance()

    def _refresh_balance(self) -> None:
        self.remaining_amount = money(to_decimal(self.total_amount) - to_decimal(self.paid_amount))
        self.status = derive_status(self.paid_amount, self.total_amount)

    def to_dict(self, with_payments: bool = False) -> dict:
        data = {
            "id": self.id,
            "invoice_type": self.invoice_type,
            "type_label": self.type_label,
            "invoice_category": self.invoice_category,
            "company_id": self.company_id,
            "company_name": self.company.name if self.company else None,
            "supplier_id": self.supplier_id,
            "office_supplier_id": self.office_supplier_id,
            "retail_supplier_id": self.retail_supplier_id,
            "retail_customer_id": self.retail_customer_id,
            "customer_id": self.customer_id,
            "investor_id": self.investor_id,
            "bank_id": self.bank_id,
            "bank_credit_id": self.bank_credit_id,
            "project_id": self.project_id,
            "contract_id": self.contract_id,
            "milestone_id": self.milestone_id,
            "refund_id": self.refund_id,
            "party_name": self.party_name,
            "invoice_number": self.invoice_number,
            "reference_number": self.reference_number,
            "iban": self.iban,
            "issue_date": _iso(self.issue_date),
            "due_date": _iso(self.due_date),
            "base_amount": _num(self.base_amount),
            "vat_amount": _num(self.vat_amount),
            "total_amount": _num(self.total_amount),
            "paid_amount": _num(self.paid_amount),
            "remaining_amount": _num(self.remaining_amount),
            "status": self.status,
            "is_overdue": self.is_overdue(),
            "category": self.category,
            "description": self.description,
            "approved": self.approved,
        }
        for slot in range(1, 5):
            data[f"base_amount_{slot}"] = _num(getattr(self, f"base_amount_{slot}"))
            data[f"vat_rate_{slot}"] = _num(getattr(self, f"vat_rate_{slot}"))
            data[f"vat_amount_{slot}"] = _num(getattr(self, f"vat_amount_{slot}"))
        if with_payments:
            data["payments"] = [p.to_dict() for p in self.payments]
        return data

    def __repr__(self):
        return f"<Invoice {self.invoice_number} {self.invoice_type}>"


# ---------------------------------------------------------------------
# Payments
# ---------------------------------------------------------------------
class Payment(db.Model):
    __tablename__ = "accounting_payments"

    id = db.Column(db.Integer, primary_key=True)

    invoice_id = db.Column(
        db.Integer,
        db.ForeignKey("accounting_invoices.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    payment_source_type = db.Column(db.String(20), nullable=False, default="bank_account")
    company_bank_account_id = db.Column(db.Integer, db.ForeignKey("company_bank_accounts.id", ondelete="SET NULL"), index=True)
    credit_id = db.Column(db.Integer, db.ForeignKey("bank_credits.id", ondelete="SET NULL"), index=True)
    credit_allocation_id = db.Column(db.Integer, db.ForeignKey("credit_allocations.id", ondelete="SET NULL"), index=True)

    # Cesija: a third company pays on behalf of the invoiced company
    is_cesija = db.Column(db.Boolean, nullable=False, default=False)
    cesija_company_id = db.Column(db.Integer, db.ForeignKey("accounting_companies.id", ondelete="SET NULL"), index=True)
    cesija_bank_account_id = db.Column(db.Integer, db.ForeignKey("company_bank_accounts.id", ondelete="SET NULL"))
    cesija_credit_id = db.Column(db.Integer, db.ForeignKey("bank_credits.id", ondelete="SET NULL"))
    cesija_credit_allocation_id = db.Column(db.Integer, db.ForeignKey("credit_allocations.id", ondelete="SET NULL"))

    payment_date = db.Column(db.Date, nullable=False, index=True)
    amount = db.Column(db.Numeric(14, 2), nullable=False)
    payment_method = db.Column(db.String(10), nullable=False, default="WIRE", index=True)
    reference_number = db.Column(db.String(100))
    description = db.Column(db.Text)

    created_by_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)

    invoice = db.relationship("Invoice", back_populates="payments")
    company_bank_account = db.relationship("CompanyBankAccount", foreign_keys=[company_bank_account_id])
    credit = db.relationship("BankCredit", foreign_keys=[credit_id])
    credit_allocation = db.relationship("CreditAllocation", foreign_keys=[credit_allocation_id])
    cesija_company = db.relationship("Company", foreign_keys=[cesija_company_id])
    cesija_bank_account = db.relationship("CompanyBankAccount", foreign_keys=[cesija_bank_account_id])
    cesija_credit = db.relationship("BankCredit", foreign_keys=[cesija_credit_id])
    cesija_credit_allocation = db.relationship("CreditAllocation", foreign_keys=[cesija_credit_allocation_id])

    @property
    def source_account(self):
        """Bank account the money actually moves through (own or cesija)."""
        return self.cesija_bank_account if self.is_cesija else self.company_bank_account

    @property
    def source_credit(self):
        return self.cesija_credit if self.is_cesija else self.credit

    @property
    def source_allocation(self):
        return self.cesija_credit_allocation if self.is_cesija else self.credit_allocation

    def balance_delta(self) -> Decimal:
        """Effect on the source bank account: paying an expense lowers it, collecting raises it."""
        amount = to_decimal(self.amount)
        return -amount if self.invoice.is_expense else amount

    def to_dict(self) -> dict:
        invoice = self.invoice
        return {
            "id": self.id,
            "invoice_id": self.invoice_id,
            "invoice_number": invoice.invoice_number if invoice else None,
            "invoice_type": invoice.invoice_type if invoice else None,
            "company_name": invoice.company.name if invoice and invoice.company else None,
            "party_name": invoice.party_name if invoice else None,
            "payment_source_type": self.payment_source_type,
            "company_bank_account_id": self.company_bank_account_id,
            "credit_id": self.credit_id,
            "credit_allocation_id": self.credit_allocation_id,
            "is_cesija": self.is_cesija,
            "cesija_company_id": self.cesija_company_id,
            "cesija_company_name": self.cesija_company.name if self.cesija_company else None,
            "cesija_bank_account_id": self.cesija_bank_account_id,
            "cesija_credit_id": self.cesija_credit_id,
            "cesija_credit_allocation_id": self.cesija_credit_allocation_id,
            "payment_date": _iso(self.payment_date),
            "amount": _num(self.amount),
            "payment_method": self.payment_method,
            "payment_method_label": PAYMENT_METHOD_LABELS.get(self.payment_method, self.payment_method),
            "reference_number": self.reference_number,
            "description": self.description,
        }


# ---------------------------------------------------------------------
# Credit facilities
# ---------------------------------------------------------------------
class BankCredit(TimestampMixin, db.Model):
    __tablename__ = "bank_credits"

    id = db.Column(db.Integer, primary_key=True)

    bank_id = db.Column(db.Integer, db.ForeignKey("banks.id", ondelete="SET NULL"), nullable=True, index=True)
    company_id = db.Column(db.Integer, db.ForeignKey("accounting_companies.id", ondelete="SET NULL"), nullable=True, index=True)
    project_id = db.Column(db.Integer, db.ForeignKey("projects.id", ondelete="SET NULL"), nullable=True, index=True)

    credit_name = db.Column(db.String(255), nullable=False)
    credit_type = db.Column(db.String(40), nullable=False, default="term_loan")
    credit_seniority = db.Column(db.String(10), nullable=False, default="senior")

    amount = db.Column(db.Numeric(14, 2), nullable=False)
    used_amount = db.Column(db.Numeric(14, 2), nullable=False, default=Decimal("0.00"))
    repaid_amount = db.Column(db.Numeric(14, 2), nullable=False, default=Decimal("0.00"))
    outstanding_balance = db.Column(db.Numeric(14, 2), nullable=False, default=Decimal("0.00"))

    # Annual rate in percent (5.00 means 5%)
    interest_rate = db.Column(db.Numeric(6, 3), nullable=False, default=Decimal("0.000"))

    start_date = db.Column(db.Date, nullable=False)
    maturity_date = db.Column(db.Date, nullable=True)
    usage_expiration_date = db.Column(db.Date, nullable=True)

    # Months after start_date without principal repayment
    grace_period = db.Column(db.Integer, nullable=False, default=0)

    purpose = db.Column(db.Text)
    status = db.Column(db.String(20), nullable=False, default="active", index=True)

    repayment_type = db.Column(db.String(20), nullable=False, default="monthly")
    principal_repayment_type = db.Column(db.String(20), nullable=False, default="monthly")
    interest_repayment_type = db.Column(db.String(20), nullable=False, default="monthly")

    # Annuity installment: yearly for yearly credits, monthly for every other cadence
    monthly_payment = db.Column(db.Numeric(14, 2), nullable=False, default=Decimal("0.00"))

    disbursed_to_account = db.Column(db.Boolean, nullable=False, default=False)
    disbursed_to_bank_account_id = db.Column(
        db.Integer, db.ForeignKey("company_bank_accounts.id", ondelete="SET NULL"), nullable=True
    )

    bank = db.relationship("Bank", back_populates="credits")
    company = db.relationship("Company")
    project = db.relationship("Project")
    disbursed_to_bank_account = db.relationship("CompanyBankAccount")

    allocations = db.relationship(
        "CreditAllocation",
        back_populates="credit",
        cascade="all, delete-orphan",
        order_by="CreditAllocation.created_at.desc()",
    )

    @property
    def available_amount(self) -> Decimal:
        return money(to_decimal(self.amount) - to_decimal(self.used_amount))

    @property
    def allocated_total(self) -> Decimal:
        return sum((to_decimal(a.allocated_amount) for a in self.allocations), ZERO)

    def recalc_installment(self) -> None:
        self.monthly_payment = annuity_payment(
            self.amount,
            self.interest_rate,
            self.start_date,
            self.maturity_date,
            self.grace_period,
            self.repayment_type,
        )

    def recalc_usage(self) -> None:
        """used_amount = payments drawn from this credit (direct or cesija)."""
        used = (
            db.session.query(func.coalesce(func.sum(Payment.amount), 0))
            .filter(or_(Payment.credit_id == self.id, Payment.cesija_credit_id == self.id))
            .scalar()
        )
        self.used_amount = money(used)
        self.outstanding_balance = money(to_decimal(self.used_amount) - to_decimal(self.repaid_amount))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "bank_id": self.bank_id,
            "bank_name": self.bank.name if self.bank else None,
            "company_id": self.company_id,
            "company_name": self.company.name if self.company else None,
            "project_id": self.project_id,
            "project_name": self.project.name if self.project else None,
            "credit_name": self.credit_name,
            "credit_type": self.credit_type,
            "credit_seniority": self.credit_seniority,
            "amount": _num(self.amount),
            "used_amount": _num(self.used_amount),
            "repaid_amount": _num(self.repaid_amount),
            "outstanding_balance": _num(self.outstanding_balance),
            "available_amount": _num(self.available_amount),
            "interest_rate": _num(self.interest_rate),
            "start_date": _iso(self.start_date),
            "maturity_date": _iso(self.maturity_date),
            "usage_expiration_date": _iso(self.usage_expiration_date),
            "grace_period": self.grace_period,
            "purpose": self.purpose,
            "status": self.status,
            "repayment_type": self.repayment_type,
            "principal_repayment_type": self.principal_repayment_type,
            "interest_repayment_type": self.interest_repayment_type,
            "monthly_payment": _num(self.monthly_payment),
            "disbursed_to_account": self.disbursed_to_account,
            "disbursed_to_bank_account_id": self.disbursed_to_bank_account_id,
        }


class CreditAllocation(db.Model):
    """Portion of a credit earmarked for a project (project_id NULL = general use)."""

    __tablename__ = "credit_allocations"

    id = db.Column(db.Integer, primary_key=True)
    credit_id = db.Column(db.Integer, db.ForeignKey("bank_credits.id", ondelete="CASCADE"), nullable=False, index=True)
    project_id = db.Column(db.Integer, db.ForeignKey("projects.id", ondelete="SET NULL"), nullable=True, index=True)

    allocated_amount = db.Column(db.Numeric(14, 2), nullable=False)
    used_amount = db.Column(db.Numeric(14, 2), nullable=False, default=Decimal("0.00"))
    description = db.Column(db.Text)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)

    credit = db.relationship("BankCredit", back_populates="allocations")
    project = db.relationship("Project")

    def recalc_usage(self) -> None:
        used = (
            db.session.query(func.coalesce(func.sum(Payment.amount), 0))
            .filter(
                or_(
                    Payment.credit_allocation_id == self.id,
                    Payment.cesija_credit_allocation_id == self.id,
                )
            )
            .scalar()
        )
        self.used_amount = money(used)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "credit_id": self.credit_id,
            "project_id": self.project_id,
            "project_name": self.project.name if self.project else None,
            "allocated_amount": _num(self.allocated_amount),
            "used_amount": _num(self.used_amount),
            "available_amount": _num(to_decimal(self.allocated_amount) - to_decimal(self.used_amount)),
            "description": self.description,
        }


# ---------------------------------------------------------------------
# Inter-company loans, investments
# ---------------------------------------------------------------------
class CompanyLoan(db.Model):
    __tablename__ = "company_loans"

    id = db.Column(db.Integer, primary_key=True)

    from_company_id = db.Column(db.Integer, db.ForeignKey("accounting_companies.id", ondelete="CASCADE"), nullable=False, index=True)
    from_bank_account_id = db.Column(db.Integer, db.ForeignKey("company_bank_accounts.id", ondelete="CASCADE"), nullable=False)
    to_company_id = db.Column(db.Integer, db.ForeignKey("accounting_companies.id", ondelete="CASCADE"), nullable=False, index=True)
    to_bank_account_id = db.Column(db.Integer, db.ForeignKey("company_bank_accounts.id", ondelete="CASCADE"), nullable=False)

    amount = db.Column(db.Numeric(14, 2), nullable=False)
    loan_date = db.Column(db.Date, nullable=False, index=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)

    from_company = db.relationship("Company", foreign_keys=[from_company_id])
    to_company = db.relationship("Company", foreign_keys=[to_company_id])
    from_bank_account = db.relationship("CompanyBankAccount", foreign_keys=[from_bank_account_id])
    to_bank_account = db.relationship("CompanyBankAccount", foreign_keys=[to_bank_account_id])

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "from_company_id": self.from_company_id,
            "from_company_name": self.from_company.name if self.from_company else None,
            "from_bank_account_id": self.from_bank_account_id,
            "from_bank_name": self.from_bank_account.bank_name if self.from_bank_account else None,
            "to_company_id": self.to_company_id,
            "to_company_name": self.to_company.name if self.to_company else None,
            "to_bank_account_id": self.to_bank_account_id,
            "to_bank_name": self.to_bank_account.bank_name if self.to_bank_account else None,
            "amount": _num(self.amount),
            "loan_date": _iso(self.loan_date),
        }


class ProjectInvestment(db.Model):
    __tablename__ = "project_investments"

    id = db.Column(db.Integer, primary_key=True)

    project_id = db.Column(db.Integer, db.ForeignKey("projects.id", ondelete="SET NULL"), nullable=True, index=True)
    investor_id = db.Column(db.Integer, db.ForeignKey("investors.id", ondelete="SET NULL"), nullable=True, index=True)

    investment_type = db.Column(db.String(30), nullable=False, default="equity")
    amount = db.Column(db.Numeric(14, 2), nullable=False)
    percentage_stake = db.Column(db.Numeric(6, 2), nullable=True)
    expected_return = db.Column(db.Numeric(14, 2), nullable=True)
    investment_date = db.Column(db.Date, nullable=False)
    maturity_date = db.Column(db.Date, nullable=True)
    status = db.Column(db.String(20), nullable=False, default="active")
    terms = db.Column(db.Text)

    disbursed_to_account = db.Column(db.Boolean, nullable=False, default=False)
    disbursed_to_bank_account_id = db.Column(
        db.Integer, db.ForeignKey("company_bank_accounts.id", ondelete="SET NULL"), nullable=True
    )

    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)

    project = db.relationship("Project")
    investor = db.relationship("Investor")
    disbursed_to_bank_account = db.relationship("CompanyBankAccount")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "project_id": self.project_id,
            "project_name": self.project.name if self.project else None,
            "investor_id": self.investor_id,
            "investor_name": self.investor.name if self.investor else None,
            "investment_type": self.investment_type,
            "amount": _num(self.amount),
            "percentage_stake": _num(self.percentage_stake),
            "expected_return": _num(self.expected_return),
            "investment_date": _iso(self.investment_date),
            "maturity_date": _iso(self.maturity_date),
            "status": self.status,
            "terms": self.terms,
            "disbursed_to_account": self.disbursed_to_account,
            "disbursed_to_bank_account_id": self.disbursed_to_bank_account_id,
        }


# ---------------------------------------------------------------------
# Accounting calendar
# ---------------------------------------------------------------------
class MonthlyBudget(db.Model):
    """Spending budget for one calendar month, compared against invoices due in it."""

    __tablename__ = "monthly_budgets"

    id = db.Column(db.Integer, primary_key=True)
    year = db.Column(db.Integer, nullable=False, index=True)
    month = db.Column(db.Integer, nullable=False)
    budget_amount = db.Column(db.Numeric(14, 2), nullable=False, default=Decimal("0.00"))
    notes = db.Column(db.Text, nullable=False, default="")

    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        db.UniqueConstraint("year", "month", name="uq_monthly_budget_period"),
        db.CheckConstraint("month >= 1 AND month <= 12", name="month_range"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "year": self.year,
            "month": self.month,
            "budget_amount": _num(self.budget_amount),
            "notes": self.notes,
        }


# ---------------------------------------------------------------------
# Audit
# ---------------------------------------------------------------------
class AuditLog(db.Model):
    __tablename__ = "audit_logs"

    id = db.Column(db.Integer, primary_key=True)

    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    username_snapshot = db.Column(db.String(150), nullable=True)

    entity_type = db.Column(db.String(50), nullable=False, index=True)
    entity_id = db.Column(db.Integer, nullable=False, index=True)

    action = db.Column(db.String(20), nullable=False, index=True)

    before_data = db.Column(db.Text, nullable=True)
    after_data = db.Column(db.Text, nullable=True)

    ip_address = db.Column(db.String(45), nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)

    user = db.relationship("User", backref=db.backref("audit_entries", lazy=True))
