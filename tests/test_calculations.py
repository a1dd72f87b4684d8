"""
Financial formulas: VAT slots, invoice status, milestone base, annuity and schedule.
"""

from datetime import date
from decimal import Decimal

import pytest

from accounting.calculations import (
    annuity_payment,
    decompose_vat,
    derive_status,
    get_payment_frequency,
    installment_periods,
    milestone_base_amount,
    payment_schedule,
    repayment_years,
)


class TestDecomposeVat:

    def test_four_slots(self):
        vat = decompose_vat(["1000", "100", "50", "200"])

        assert vat["vat_amounts"] == [Decimal("250.00"), Decimal("13.00"), Decimal("0.00"), Decimal("10.00")]
        assert vat["subtotals"] == [Decimal("1250.00"), Decimal("113.00"), Decimal("50.00"), Decimal("210.00")]
        assert vat["base_total"] == Decimal("1350.00")
        assert vat["vat_total"] == Decimal("273.00")
        assert vat["total"] == Decimal("1623.00")

    def test_rates_are_fixed_per_slot(self):
        vat = decompose_vat([0, 0, 0, 0])
        assert vat["rates"] == [Decimal("25.00"), Decimal("13.00"), Decimal("0.00"), Decimal("5.00")]

    @pytest.mark.parametrize("bases", [
        ("19.99", "7.77", "3.33", "0.01"),
        ("123456.78", "0", "0", "0"),
        ("0.05", "0.05", "0.05", "0.05"),
    ])
    def test_total_matches_rate_weighted_sum(self, bases):
        b1, b2, b3, b4 = (Decimal(b) for b in bases)
        expected = b1 * Decimal("1.25") + b2 * Decimal("1.13") + b3 + b4 * Decimal("1.05")

        total = decompose_vat(bases)["total"]

        assert abs(total - expected) <= Decimal("0.02")

    def test_vat_is_rounded_half_up_per_slot(self):
        vat = decompose_vat(["0.02", "0", "0", "0.10"])
        # 0.005 -> 0.01 and 0.005 -> 0.01
        assert vat["vat_amounts"][0] == Decimal("0.01")
        assert vat["vat_amounts"][3] == Decimal("0.01")

    def test_rejects_negative_base(self):
        with pytest.raises(ValueError):
            decompose_vat(["-1", "0", "0", "0"])

    def test_rejects_wrong_slot_count(self):
        with pytest.raises(ValueError):
            decompose_vat(["1", "2", "3"])


class TestDeriveStatus:

    @pytest.mark.parametrize("paid, total, expected", [
        ("0", "100", "UNPAID"),
        ("0.01", "100", "PARTIALLY_PAID"),
        ("99.99", "100", "PARTIALLY_PAID"),
        ("100", "100", "PAID"),
        ("100.01", "100", "PAID"),
        ("0", "0", "UNPAID"),
    ])
    def test_status(self, paid, total, expected):
        assert derive_status(paid, total) == expected


def test_milestone_base_amount_strips_contract_vat():
    # 125.000 incl. 25% VAT, 20% milestone -> 100.000 * 0.2
    assert milestone_base_amount("125000", "20") == Decimal("20000.00")
    assert milestone_base_amount("10000", "33.33") == Decimal("2666.40")


class TestAnnuity:

    def test_yearly_scenario(self):
        """100.000 EUR, 5%, 10 years, no grace, yearly -> about 12.950 EUR per year."""
        payment = annuity_payment("100000", "5", date(2024, 1, 1), date(2034, 1, 1), 0, "yearly")
        assert abs(payment - Decimal("12950")) < Decimal("5")

    def test_monthly_scenario(self):
        payment = annuity_payment("100000", "5", date(2024, 1, 1), date(2034, 1, 1), 0, "monthly")
        assert abs(payment - Decimal("1060.66")) < Decimal("1")

    def test_zero_rate_splits_principal_evenly(self):
        # Missing dates fall back to a 10 year term
        assert annuity_payment("100000", "0", None, None, 0, "yearly") == Decimal("10000.00")
        assert annuity_payment("100000", "0", None, None, 0, "monthly") == Decimal("833.33")

    def test_grace_period_shortens_repayment(self):
        without_grace = annuity_payment("100000", "5", date(2024, 1, 1), date(2034, 1, 1), 0, "monthly")
        with_grace = annuity_payment("100000", "5", date(2024, 1, 1), date(2034, 1, 1), 24, "monthly")
        assert with_grace > without_grace

    def test_grace_beyond_maturity_floors_repayment_period(self):
        years = repayment_years(date(2024, 1, 1), date(2025, 1, 1), 24)
        assert years == Decimal("0.1")

        payment = annuity_payment("1200", "0", date(2024, 1, 1), date(2025, 1, 1), 24, "monthly")
        assert payment == Decimal("1000.00")

    def test_zero_principal(self):
        assert annuity_payment("0", "5", date(2024, 1, 1), date(2034, 1, 1)) == Decimal("0.00")

    @pytest.mark.parametrize("cadence", ["quarterly", "biyearly", "weekly"])
    def test_non_yearly_cadences_pay_monthly(self, cadence):
        monthly = annuity_payment("100000", "5", date(2024, 1, 1), date(2034, 1, 1), 0, "monthly")
        payment = annuity_payment("100000", "5", date(2024, 1, 1), date(2034, 1, 1), 0, cadence)

        assert payment == monthly
        assert abs(payment - Decimal("1060.54")) < Decimal("0.05")

    def test_zero_rate_quarterly_divides_by_months(self):
        assert annuity_payment("100000", "0", None, None, 0, "quarterly") == Decimal("833.33")

    def test_installment_periods(self):
        assert installment_periods("yearly") == 1
        assert installment_periods("quarterly") == 12
        assert installment_periods(None) == 12

    def test_unknown_cadence_is_monthly(self):
        assert get_payment_frequency("weekly") == 12
        assert get_payment_frequency(None) == 12
        assert get_payment_frequency("quarterly") == 4
        assert get_payment_frequency("biyearly") == 2


class TestPaymentSchedule:

    def test_schedule_uses_stored_installment(self):
        schedule = payment_schedule("100000", "5", date(2024, 1, 1), date(2034, 1, 1), 0, "yearly", "monthly")
        installment = annuity_payment("100000", "5", date(2024, 1, 1), date(2034, 1, 1), 0, "yearly")

        assert schedule["installment"] == installment
        assert schedule["installments"] == 10
        assert schedule["interest_frequency"] == "monthly"
        assert schedule["rows"][0]["interest"] == Decimal("5000.00")
        assert schedule["rows"][0]["due_date"] == date(2025, 1, 1)

    def test_schedule_amortizes_to_zero(self):
        schedule = payment_schedule("100000", "5", date(2024, 1, 1), date(2034, 1, 1), 0, "yearly")

        assert schedule["rows"][-1]["balance"] == Decimal("0.00")
        assert sum(r["principal"] for r in schedule["rows"]) == Decimal("100000.00")
        assert schedule["total_paid"] == Decimal("100000.00") + schedule["total_interest"]

    def test_payment_times_count_close_to_total(self):
        schedule = payment_schedule("50000", "4", date(2024, 1, 1), date(2029, 1, 1), 0, "monthly")
        approx_total = schedule["installment"] * schedule["installments"]
        assert abs(approx_total - schedule["total_paid"]) < Decimal("5")

    def test_grace_moves_first_installment(self):
        schedule = payment_schedule("100000", "5", date(2024, 1, 1), date(2034, 1, 1), 12, "quarterly")

        assert schedule["payment_start_date"] == date(2025, 1, 1)
        assert schedule["rows"][0]["due_date"] == date(2025, 2, 1)
        assert schedule["installments"] == 108
        assert schedule["periods_per_year"] == 12
        assert schedule["principal_periods_per_year"] == 4

    def test_principal_cadence_does_not_change_installment(self):
        stored = annuity_payment("100000", "5", date(2024, 1, 1), date(2034, 1, 1), 0, "monthly")
        schedule = payment_schedule(
            "100000", "5", date(2024, 1, 1), date(2034, 1, 1), 0, "monthly", "yearly", "quarterly"
        )

        assert schedule["installment"] == stored
        assert schedule["installments"] == 120
        assert schedule["principal_frequency"] == "yearly"
        assert schedule["interest_frequency"] == "quarterly"

    def test_not_computable(self):
        assert payment_schedule("100000", "5", None, date(2034, 1, 1)) is None
        assert payment_schedule(None, "5", date(2024, 1, 1), date(2034, 1, 1)) is None
        assert payment_schedule("100000", "5", date(2024, 1, 1), date(2025, 1, 1), 12) is None
