"""
accounting/calculations.py

Pure financial formulas shared by models, routes and reports.

Contents:
- VAT decomposition across the four statutory Croatian PDV slots
- Invoice payment status derivation
- Milestone-derived invoice base amount
- Credit facility annuity installment and the amortization schedule built on it

IMPORTANT:
- Everything here is Decimal based and free of database/Flask access.
- Money results are rounded half-up to cents. VAT is rounded per slot and the
  totals are sums of the rounded slot values, so a printed invoice always adds up.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal, ROUND_CEILING, ROUND_HALF_UP

from dateutil.relativedelta import relativedelta

CENT = Decimal("0.01")
ZERO = Decimal("0.00")
HUNDRED = Decimal("100")

# Slot order is fixed by the invoice table: base_amount_1..4
VAT_RATES = (Decimal("0.25"), Decimal("0.13"), Decimal("0.00"), Decimal("0.05"))

# Contract amounts are agreed VAT-inclusive at the standard rate
CONTRACT_VAT_FACTOR = Decimal("1.25")

STATUS_UNPAID = "UNPAID"
STATUS_PARTIALLY_PAID = "PARTIALLY_PAID"
STATUS_PAID = "PAID"

PAYMENT_FREQUENCIES = {
    "monthly": 12,
    "quarterly": 4,
    "biyearly": 2,
    "yearly": 1,
}

DAYS_PER_YEAR = Decimal("365.25")
DEFAULT_MATURITY_YEARS = Decimal("10")
MIN_REPAYMENT_YEARS = Decimal("0.1")


# ---------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------
def to_decimal(value) -> Decimal:
    """Convert Numeric/float/int/str/None to Decimal (None -> 0.00)."""
    if value is None or value == "":
        return ZERO
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def money(value) -> Decimal:
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


# ---------------------------------------------------------------------
# VAT
# ---------------------------------------------------------------------
def decompose_vat(bases) -> dict:
    """
    Split four base amounts into VAT amounts, subtotals and totals.

    Input is a 4-sequence matching base_amount_1..4 (rates 25%, 13%, 0%, 5%).

        vat_i      = b_i * rate_i
        subtotal_i = b_i + vat_i
        total      = sum(subtotal_i)
    """
    bases = tuple(bases)
    if len(bases) != len(VAT_RATES):
        raise ValueError(f"Expected {len(VAT_RATES)} base amounts, got {len(bases)}")

    base_values = []
    vat_amounts = []
    subtotals = []
    for raw, rate in zip(bases, VAT_RATES):
        base = money(raw)
        if base < ZERO:
            raise ValueError("Base amount cannot be negative")
        vat = money(base * rate)
        base_values.append(base)
        vat_amounts.append(vat)
        subtotals.append(base + vat)

    return {
        "rates": [rate * HUNDRED for rate in VAT_RATES],
        "bases": base_values,
        "vat_amounts": vat_amounts,
        "subtotals": subtotals,
        "base_total": sum(base_values, ZERO),
        "vat_total": sum(vat_amounts, ZERO),
        "total": sum(subtotals, ZERO),
    }


# ---------------------------------------------------------------------
# Invoice status
# ---------------------------------------------------------------------
def derive_status(paid_amount, total_amount) -> str:
    """
    UNPAID / PARTIALLY_PAID / PAID from what has been paid against the total.

    A payment equal to or above the total settles the invoice.
    """
    paid = to_decimal(paid_amount)
    total = to_decimal(total_amount)

    if paid <= ZERO:
        return STATUS_UNPAID
    if paid >= total:
        return STATUS_PAID
    return STATUS_PARTIALLY_PAID


def milestone_base_amount(contract_amount, percentage) -> Decimal:
    """Pre-VAT invoice base for a contract milestone: amount / 1.25 * percentage / 100."""
    amount = to_decimal(contract_amount)
    pct = to_decimal(percentage)
    return money(amount / CONTRACT_VAT_FACTOR * pct / HUNDRED)


# ---------------------------------------------------------------------
# Credit facilities
# ---------------------------------------------------------------------
def get_payment_frequency(repayment_type: str | None) -> int:
    """Installments per year for a cadence; unknown cadences fall back to monthly."""
    return PAYMENT_FREQUENCIES.get((repayment_type or "").strip().lower(), 12)


def installment_periods(repayment_type: str | None) -> int:
    """Installments per year of the blended annuity: 1 for yearly credits, 12 for all others."""
    return 1 if (repayment_type or "").strip().lower() == "yearly" else 12


def maturity_years(start_date: date | None, maturity_date: date | None) -> Decimal:
    if not start_date or not maturity_date:
        return DEFAULT_MATURITY_YEARS
    return Decimal((maturity_date - start_date).days) / DAYS_PER_YEAR


def repayment_years(start_date: date | None, maturity_date: date | None, grace_period_months=0) -> Decimal:
    """Years left for repayment after the grace period, never below 0.1."""
    grace_years = to_decimal(grace_period_months or 0) / Decimal("12")
    return max(MIN_REPAYMENT_YEARS, maturity_years(start_date, maturity_date) - grace_years)


def annuity_payment(
    principal,
    annual_rate_percent,
    start_date: date | None,
    maturity_date: date | None,
    grace_period_months=0,
    repayment_type: str = "monthly",
) -> Decimal:
    """
    Installment amount of a blended (annuity) repayment plan.

        i = r if yearly else r / 12
        n = repayment_years if yearly else repayment_years * 12
        payment = P * i * (1 + i)^n / ((1 + i)^n - 1)

    Every cadence other than yearly is paid monthly. With a zero rate the
    principal is split evenly over n installments. The result is rounded
    to cents.
    """
    p = to_decimal(principal)
    if p <= ZERO:
        return ZERO

    periods = Decimal(installment_periods(repayment_type))
    n = repayment_years(start_date, maturity_date, grace_period_months) * periods
    rate = to_decimal(annual_rate_percent) / HUNDRED

    if rate == ZERO:
        return money(p / n)

    i = rate / periods
    growth = (Decimal(1) + i) ** n
    return money(p * i * growth / (growth - Decimal(1)))


def payment_schedule(
    principal,
    annual_rate_percent,
    start_date: date | None,
    maturity_date: date | None,
    grace_period_months=0,
    repayment_type: str = "monthly",
    principal_repayment_type: str | None = None,
    interest_repayment_type: str | None = None,
) -> dict | None:
    """
    Amortization preview for a credit facility.

    Rows follow the installment cadence of repayment_type (yearly, otherwise
    monthly) and use annuity_payment() for the same arguments, which is the
    value stored on the credit as monthly_payment. The principal and interest
    cadences are reported with the schedule but do not change the rows.
    The last row clears the remaining balance.

    Returns None when the plan cannot be computed (missing dates or amount,
    or a grace period reaching past maturity).
    """
    p = to_decimal(principal)
    if not start_date or not maturity_date or p <= ZERO:
        return None

    grace = int(grace_period_months or 0)
    payment_start = start_date + relativedelta(months=grace)
    if payment_start >= maturity_date:
        return None

    periods = installment_periods(repayment_type)
    months_per_period = 12 // periods
    rate = to_decimal(annual_rate_percent) / HUNDRED
    period_rate = rate / Decimal(periods)

    installment = annuity_payment(
        p, annual_rate_percent, start_date, maturity_date, grace, repayment_type
    )
    exact_count = repayment_years(start_date, maturity_date, grace) * Decimal(periods)
    count = int(
        exact_count.quantize(Decimal("0.1"), rounding=ROUND_HALF_UP).to_integral_value(rounding=ROUND_CEILING)
    )
    count = max(count, 1)

    rows = []
    balance = money(p)
    total_interest = ZERO
    for k in range(1, count + 1):
        interest = money(balance * period_rate)
        principal_part = installment - interest
        if k == count or principal_part >= balance:
            principal_part = balance
        balance = balance - principal_part
        total_interest += interest
        rows.append({
            "number": k,
            "due_date": payment_start + relativedelta(months=months_per_period * k),
            "payment": principal_part + interest,
            "principal": principal_part,
            "interest": interest,
            "balance": balance,
        })
        if balance <= ZERO:
            break

    total_paid = sum((row["payment"] for row in rows), ZERO)
    principal = principal_repayment_type or repayment_type

    return {
        "payment_start_date": payment_start,
        "installment": installment,
        "installments": len(rows),
        "periods_per_year": periods,
        "repayment_frequency": repayment_type,
        "principal_frequency": principal,
        "principal_periods_per_year": get_payment_frequency(principal),
        "interest_frequency": interest_repayment_type or principal,
        "first_principal": rows[0]["principal"],
        "first_interest": rows[0]["interest"],
        "total_paid": total_paid,
        "total_interest": total_interest,
        "rows": rows,
    }
