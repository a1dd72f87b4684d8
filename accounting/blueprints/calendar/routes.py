"""
accounting/blueprints/calendar/routes.py

Accounting calendar: invoices by due date and monthly spending budgets.

Includes:
- Month view: invoices grouped per due day, month statistics, the month's budget
- Year view: per month what falls due (expense / income, unpaid part) against the budget
- Budgets: read a year, save all twelve months of a year at once

IMPORTANT:
- Only invoices with a due date are placed on the calendar.
- The budget is compared with expense (INCOMING_*) invoices; a month without a
  saved budget reports 0.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from datetime import date

from flask import Blueprint, jsonify, request
from flask_login import login_required

from ...audit import log_action, serialize_model
from ...calculations import STATUS_PAID, STATUS_UNPAID, ZERO, money, to_decimal
from ...errors import ValidationError
from ...extensions import db
from ...models import Invoice, MonthlyBudget
from ...security import editor_required
from ...utils import decimal_field, parse_optional_int, request_payload

logger = logging.getLogger(__name__)

calendar_bp = Blueprint("calendar", __name__, url_prefix="/calendar")

MONTH_NAMES = (
    "Siječanj", "Veljača", "Ožujak", "Travanj", "Svibanj", "Lipanj",
    "Srpanj", "Kolovoz", "Rujan", "Listopad", "Studeni", "Prosinac",
)

MIN_YEAR = 2000
MAX_YEAR = 2100


def _year_arg(raw, field: str = "year") -> int:
    year = parse_optional_int(raw)
    if year is None:
        return date.today().year
    if not MIN_YEAR <= year <= MAX_YEAR:
        raise ValidationError(f"Godina mora biti između {MIN_YEAR} i {MAX_YEAR}.", field)
    return year


def _month_arg(raw) -> int:
    month = parse_optional_int(raw)
    if month is None:
        return date.today().month
    if not 1 <= month <= 12:
        raise ValidationError("Mjesec mora biti između 1 i 12.", "month")
    return month


def _invoices_due(start: date, end: date) -> list[Invoice]:
    """Invoices due in [start, end), earliest first."""
    return (
        Invoice.query
        .filter(Invoice.due_date.isnot(None), Invoice.due_date >= start, Invoice.due_date < end)
        .order_by(Invoice.due_date.asc(), Invoice.id.asc())
        .all()
    )


def _budgets_for_year(year: int) -> dict[int, MonthlyBudget]:
    return {b.month: b for b in MonthlyBudget.query.filter_by(year=year).all()}


def _budget_amount(budget: MonthlyBudget | None):
    return money(budget.budget_amount) if budget else ZERO


def _calendar_entry(invoice: Invoice, today: date) -> dict:
    return {
        "id": invoice.id,
        "invoice_number": invoice.invoice_number,
        "invoice_type": invoice.invoice_type,
        "company_name": invoice.company.name if invoice.company else None,
        "party_name": invoice.party_name,
        "due_date": invoice.due_date.isoformat(),
        "total_amount": float(invoice.total_amount),
        "remaining_amount": float(invoice.remaining_amount),
        "status": invoice.status,
        "is_overdue": invoice.is_overdue(today),
    }


def _month_statistics(invoices: list[Invoice], today: date) -> dict:
    paid = [inv for inv in invoices if inv.status == STATUS_PAID]
    open_ = [inv for inv in invoices if inv.status != STATUS_PAID]

    incoming_paid = sum((to_decimal(inv.total_amount) for inv in paid if inv.is_expense), ZERO)
    outgoing_paid = sum((to_decimal(inv.total_amount) for inv in paid if not inv.is_expense), ZERO)

    return {
        "total": len(invoices),
        "paid": len(paid),
        "unpaid": sum(1 for inv in invoices if inv.status == STATUS_UNPAID),
        "overdue": sum(1 for inv in invoices if inv.is_overdue(today)),
        "total_amount": float(sum((to_decimal(inv.total_amount) for inv in invoices), ZERO)),
        "paid_amount": float(incoming_paid + outgoing_paid),
        "unpaid_amount": float(sum((to_decimal(inv.total_amount) for inv in open_), ZERO)),
        "incoming_paid": float(incoming_paid),
        "outgoing_paid": float(outgoing_paid),
        "net_amount": float(outgoing_paid - incoming_paid),
    }


def _year_payload(year: int) -> dict:
    budgets = _budgets_for_year(year)
    return {
        "year": year,
        "months": [
            {
                "month": month,
                "name": MONTH_NAMES[month - 1],
                "budget_amount": float(_budget_amount(budgets.get(month))),
                "notes": budgets[month].notes if month in budgets else "",
            }
            for month in range(1, 13)
        ],
    }


@calendar_bp.route("/month")
@login_required
def month_view():
    year = _year_arg(request.args.get("year"))
    month = _month_arg(request.args.get("month"))
    today = date.today()

    start = date(year, month, 1)
    end = date(year + 1, 1, 1) if month == 12 else date(year, month + 1, 1)
    invoices = _invoices_due(start, end)

    days = defaultdict(list)
    for invoice in invoices:
        days[invoice.due_date.isoformat()].append(_calendar_entry(invoice, today))

    stats = _month_statistics(invoices, today)
    budget = MonthlyBudget.query.filter_by(year=year, month=month).first()
    budget_amount = _budget_amount(budget)

    return jsonify({
        "year": year,
        "month": month,
        "month_name": MONTH_NAMES[month - 1],
        "days": dict(days),
        "statistics": stats,
        "budget_amount": float(budget_amount),
        "budget_difference": float(budget_amount - money(stats["incoming_paid"])) if budget_amount > ZERO else None,
    })


@calendar_bp.route("/year")
@login_required
def year_view():
    """Per month: expenses and income falling due, their unpaid part, and the budget."""
    year = _year_arg(request.args.get("year"))
    budgets = _budgets_for_year(year)

    buckets = {m: {"expense_due": ZERO, "expense_unpaid": ZERO, "income_due": ZERO, "income_unpaid": ZERO, "count": 0}
               for m in range(1, 13)}
    for invoice in _invoices_due(date(year, 1, 1), date(year + 1, 1, 1)):
        bucket = buckets[invoice.due_date.month]
        prefix = "expense" if invoice.is_expense else "income"
        bucket[f"{prefix}_due"] += to_decimal(invoice.total_amount)
        if invoice.status != STATUS_PAID:
            bucket[f"{prefix}_unpaid"] += to_decimal(invoice.remaining_amount)
        bucket["count"] += 1

    months = []
    for month, bucket in buckets.items():
        budget_amount = _budget_amount(budgets.get(month))
        months.append({
            "month": month,
            "name": MONTH_NAMES[month - 1],
            "invoice_count": bucket["count"],
            "expense_due": float(bucket["expense_due"]),
            "expense_unpaid": float(bucket["expense_unpaid"]),
            "income_due": float(bucket["income_due"]),
            "income_unpaid": float(bucket["income_unpaid"]),
            "budget_amount": float(budget_amount),
            "budget_difference": float(budget_amount - bucket["expense_due"]),
            "over_budget": budget_amount > ZERO and bucket["expense_due"] > budget_amount,
        })

    return jsonify({
        "year": year,
        "months": months,
        "total_budget": sum(m["budget_amount"] for m in months),
        "total_expense_unpaid": sum(m["expense_unpaid"] for m in months),
    })


@calendar_bp.route("/budgets")
@login_required
def list_budgets():
    return jsonify(_year_payload(_year_arg(request.args.get("year"))))


@calendar_bp.route("/budgets/<int:year>", methods=["PUT"])
@login_required
@editor_required
def save_budgets(year: int):
    """
    Save the budget of every month of a year.

    Body: {"months": {"1": "10.000,00", "2": 8000, ...}}. A month left out is
    saved as 0, the same as an empty field in the budget form.
    """
    year = _year_arg(year)
    data = request_payload()
    months = data.get("months") or {}
    if not isinstance(months, dict):
        raise ValidationError("Budžet se šalje kao mjesec -> iznos.", "months")

    amounts = {}
    for key, raw in months.items():
        month = parse_optional_int(key)
        if month is None or not 1 <= month <= 12:
            raise ValidationError(f"Nepoznat mjesec: {key}.", "months")
        field = f"month_{month}"
        amounts[month] = decimal_field({field: raw}, field, label=MONTH_NAMES[month - 1]) or ZERO

    existing = _budgets_for_year(year)
    for month in range(1, 13):
        amount = money(amounts.get(month, ZERO))
        budget = existing.get(month)
        if budget is None:
            budget = MonthlyBudget(year=year, month=month, budget_amount=amount, notes="")
            db.session.add(budget)
            db.session.flush()
            log_action(budget, "CREATE", after=serialize_model(budget))
        elif money(budget.budget_amount) != amount:
            before_snapshot = serialize_model(budget)
            budget.budget_amount = amount
            db.session.flush()
            log_action(budget, "UPDATE", before=before_snapshot, after=serialize_model(budget))

    db.session.commit()

    logger.info("Monthly budgets saved for %s", year)
    return jsonify(_year_payload(year))
