"""
accounting/ledger.py

Side effects of payments on the rest of the books.

A payment touches:
- its invoice (paid amount / remaining / status),
- the bank account it moved through (current_balance),
- the credit and allocation it was drawn from (used_amount / outstanding).

Routes call apply_account_effect() with +1 when a payment is recorded and -1
when it is removed, then refresh_sources() once the session holds the final state.
"""

from __future__ import annotations

from .models import Payment


def apply_account_effect(payment: Payment, sign: int) -> None:
    account = payment.source_account
    if account is None or payment.invoice is None:
        return
    account.adjust_balance(payment.balance_delta() * sign)


def payment_sources(payment: Payment) -> tuple[set, set]:
    """Credits and allocations a payment draws from (direct and cesija)."""
    credits = {c for c in (payment.credit, payment.cesija_credit) if c is not None}
    allocations = {a for a in (payment.credit_allocation, payment.cesija_credit_allocation) if a is not None}
    return credits, allocations


def refresh_sources(credits, allocations) -> None:
    """Recompute usage of the given credits/allocations from the payments now in the session."""
    for credit in credits:
        credit.recalc_usage()
    for allocation in allocations:
        allocation.recalc_usage()
