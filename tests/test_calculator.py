"""
Unit tests for the amortization calculator
"""
import pytest
from decimal import Decimal
from datetime import date

from app.core.exceptions import InvalidTermsError
from app.modules.loans.calculator import (
    build_schedule, compute_emi, compute_preclosure, compute_total_interest, due_date,
    max_principal_for_emi, outstanding_principal, periodic_rate, to_money
)
from app.modules.loans.models import TenureUnit

MONTHLY_14 = Decimal("0.14") / 12
MONTHLY_12 = Decimal("0.12") / 12


class TestPeriodicRate:
    """Tests for product rate conversion"""

    @pytest.mark.unit
    def test_month_products_divide_annual_rate(self):
        assert periodic_rate(Decimal("0.12"), TenureUnit.MONTH) == Decimal("0.01")

    @pytest.mark.unit
    def test_day_products_use_daily_rate(self):
        assert periodic_rate(Decimal("0.001"), TenureUnit.DAY) == Decimal("0.001")

    @pytest.mark.unit
    def test_negative_rate_rejected(self):
        with pytest.raises(InvalidTermsError):
            periodic_rate(Decimal("-0.01"), TenureUnit.MONTH)


class TestComputeEmi:
    """Tests for the equated installment"""

    @pytest.mark.unit
    def test_fourteen_percent_one_lakh(self):
        """P=100000 at 14% p.a. over 12 months"""
        assert compute_emi(Decimal("100000"), MONTHLY_14, 12) == Decimal("8978.71")

    @pytest.mark.unit
    def test_twelve_percent(self):
        assert compute_emi(Decimal("10000"), MONTHLY_12, 12) == Decimal("888.49")

    @pytest.mark.unit
    def test_zero_interest_splits_principal(self):
        assert compute_emi(Decimal("1200"), Decimal("0"), 12) == Decimal("100.00")

    @pytest.mark.unit
    def test_daily_product(self):
        assert compute_emi(Decimal("10000"), Decimal("0.001"), 30) == Decimal("338.52")

    @pytest.mark.unit
    def test_rounded_to_minor_unit(self):
        emi = compute_emi(Decimal("200000"), MONTHLY_14, 24)
        assert emi == Decimal("9602.58")
        assert emi.as_tuple().exponent == -2

    @pytest.mark.unit
    def test_increases_with_principal(self):
        emis = [compute_emi(Decimal(p), MONTHLY_14, 12) for p in (10000, 50000, 100000, 200000)]
        assert emis == sorted(emis)
        assert len(set(emis)) == len(emis)

    @pytest.mark.unit
    def test_increases_with_rate(self):
        rates = [Decimal("0"), Decimal("0.06"), Decimal("0.12"), Decimal("0.24")]
        emis = [compute_emi(Decimal("100000"), r / 12, 12) for r in rates]
        assert emis == sorted(emis)
        assert len(set(emis)) == len(emis)

    @pytest.mark.unit
    @pytest.mark.parametrize("principal,rate,periods", [
        (Decimal("0"), MONTHLY_14, 12),
        (Decimal("-100"), MONTHLY_14, 12),
        (Decimal("1000"), Decimal("-0.01"), 12),
        (Decimal("1000"), MONTHLY_14, 0),
    ])
    def test_invalid_terms_rejected(self, principal, rate, periods):
        with pytest.raises(InvalidTermsError):
            compute_emi(principal, rate, periods)

    @pytest.mark.unit
    def test_invalid_terms_collect_every_reason(self):
        with pytest.raises(InvalidTermsError) as exc_info:
            compute_emi(Decimal("0"), Decimal("-1"), 0)
        assert len(exc_info.value.reasons) == 3

    @pytest.mark.unit
    def test_float_rejected(self):
        with pytest.raises(TypeError):
            compute_emi(100000.0, MONTHLY_14, 12)


class TestBuildSchedule:
    """Tests for amortization schedule generation"""

    @pytest.mark.unit
    def test_first_row(self):
        schedule = build_schedule(Decimal("100000"), MONTHLY_14, 12)
        first = schedule[0]
        assert first.index == 1
        assert first.interest_component == Decimal("1166.67")
        assert first.principal_component == Decimal("7812.04")
        assert first.remaining_balance == Decimal("92187.96")
        assert first.emi == Decimal("8978.71")

    @pytest.mark.unit
    def test_balance_after_six_installments(self):
        schedule = build_schedule(Decimal("100000"), MONTHLY_14, 12)
        assert schedule[5].remaining_balance == Decimal("51739.19")

    @pytest.mark.unit
    def test_last_row_absorbs_rounding(self):
        schedule = build_schedule(Decimal("100000"), MONTHLY_14, 12)
        assert len(schedule) == 12
        assert schedule[-1].emi == Decimal("8978.73")
        assert schedule[-1].remaining_balance == Decimal("0.00")

    @pytest.mark.unit
    def test_last_row_can_be_smaller(self):
        schedule = build_schedule(Decimal("10000"), MONTHLY_12, 12)
        assert schedule[-1].emi == Decimal("888.47")

    @pytest.mark.unit
    def test_daily_schedule_last_row(self):
        schedule = build_schedule(Decimal("10000"), Decimal("0.001"), 30, tenure_unit=TenureUnit.DAY)
        assert schedule[0].emi == Decimal("338.52")
        assert schedule[-1].emi == Decimal("338.65")

    @pytest.mark.unit
    @pytest.mark.parametrize("principal,rate,periods", [
        (Decimal("100000"), MONTHLY_14, 12),
        (Decimal("10000"), MONTHLY_12, 12),
        (Decimal("250000"), Decimal("0.11") / 12, 60),
        (Decimal("10000"), Decimal("0.001"), 30),
        (Decimal("1200"), Decimal("0"), 12),
        (Decimal("999.99"), Decimal("0.16") / 12, 7),
    ])
    def test_principal_components_sum_to_principal(self, principal, rate, periods):
        schedule = build_schedule(principal, rate, periods)
        assert sum(row.principal_component for row in schedule) == principal
        assert schedule[-1].remaining_balance == Decimal("0.00")

    @pytest.mark.unit
    @pytest.mark.parametrize("principal,rate,periods", [
        (Decimal("100000"), MONTHLY_14, 12),
        (Decimal("500000"), Decimal("0.12") / 12, 36),
        (Decimal("25000"), Decimal("0.001"), 60),
    ])
    def test_balance_never_increases(self, principal, rate, periods):
        balances = [row.remaining_balance for row in build_schedule(principal, rate, periods)]
        assert all(later <= earlier for earlier, later in zip(balances, balances[1:]))
        assert all(balance >= 0 for balance in balances)

    @pytest.mark.unit
    def test_identical_inputs_give_identical_schedules(self):
        first = build_schedule(Decimal("100000"), MONTHLY_14, 12, start_date=date(2026, 1, 31))
        second = build_schedule(Decimal("100000"), MONTHLY_14, 12, start_date=date(2026, 1, 31))
        assert first == second

    @pytest.mark.unit
    def test_due_dates_follow_calendar_months(self):
        schedule = build_schedule(Decimal("100000"), MONTHLY_14, 12, start_date=date(2026, 1, 31))
        assert schedule[0].due_date == date(2026, 2, 28)
        assert schedule[1].due_date == date(2026, 3, 31)
        assert schedule[-1].due_date == date(2027, 1, 31)

    @pytest.mark.unit
    def test_due_dates_for_day_products(self):
        schedule = build_schedule(
            Decimal("10000"), Decimal("0.001"), 30, start_date=date(2026, 3, 1), tenure_unit=TenureUnit.DAY
        )
        assert schedule[0].due_date == date(2026, 3, 2)
        assert schedule[-1].due_date == date(2026, 3, 31)

    @pytest.mark.unit
    def test_no_due_dates_without_start(self):
        schedule = build_schedule(Decimal("100000"), MONTHLY_14, 12)
        assert all(row.due_date is None for row in schedule)

    @pytest.mark.unit
    def test_paid_flags(self):
        schedule = build_schedule(Decimal("100000"), MONTHLY_14, 12, paid_installments=3)
        assert [row.paid for row in schedule[:4]] == [True, True, True, False]

    @pytest.mark.unit
    def test_due_date_helper(self):
        assert due_date(date(2026, 1, 15), 2, TenureUnit.MONTH) == date(2026, 3, 15)
        assert due_date(date(2026, 1, 15), 20, TenureUnit.DAY) == date(2026, 2, 4)


class TestTotals:
    """Tests for interest totals and outstanding principal"""

    @pytest.mark.unit
    def test_total_interest(self):
        emi = compute_emi(Decimal("100000"), MONTHLY_14, 12)
        assert compute_total_interest(Decimal("100000"), emi, 12) == Decimal("7744.52")

    @pytest.mark.unit
    def test_total_interest_twelve_percent(self):
        assert compute_total_interest(Decimal("10000"), Decimal("888.49"), 12) == Decimal("661.88")

    @pytest.mark.unit
    def test_outstanding_principal(self):
        assert outstanding_principal(Decimal("100000"), MONTHLY_14, 12, 0) == Decimal("100000.00")
        assert outstanding_principal(Decimal("100000"), MONTHLY_14, 12, 6) == Decimal("51739.19")
        assert outstanding_principal(Decimal("100000"), MONTHLY_14, 12, 12) == Decimal("0.00")

    @pytest.mark.unit
    def test_to_money_rounds_half_up(self):
        assert to_money(Decimal("1.005")) == Decimal("1.01")
        assert to_money(Decimal("1.004")) == Decimal("1.00")
        assert to_money("2") == Decimal("2.00")


class TestPreclosure:
    """Tests for pre-closure quotes"""

    @pytest.mark.unit
    def test_quote_after_six_installments(self):
        quote = compute_preclosure(
            Decimal("100000"), MONTHLY_14, 6, Decimal("8978.71"), num_periods=12
        )
        assert quote.outstanding_principal == Decimal("51739.19")
        assert quote.charges == Decimal("1034.78")
        assert quote.total_payable == Decimal("52773.97")
        assert quote.remaining_interest == Decimal("2133.09")
        assert quote.savings == Decimal("1098.31")
        assert quote.remaining_installments == 6
        assert quote.paid_installments == 6

    @pytest.mark.unit
    def test_zero_charge_rate(self):
        quote = compute_preclosure(
            Decimal("100000"), MONTHLY_14, 6, Decimal("8978.71"), num_periods=12, charge_rate=Decimal("0")
        )
        assert quote.charges == Decimal("0.00")
        assert quote.total_payable == quote.outstanding_principal

    @pytest.mark.unit
    def test_nothing_paid_yet(self):
        quote = compute_preclosure(Decimal("100000"), MONTHLY_14, 0, Decimal("8978.71"), num_periods=12)
        assert quote.outstanding_principal == Decimal("100000.00")
        assert quote.remaining_installments == 12
        assert quote.remaining_interest == Decimal("7744.54")

    @pytest.mark.unit
    def test_missing_charge_rate_rejected(self):
        with pytest.raises(InvalidTermsError):
            compute_preclosure(Decimal("100000"), MONTHLY_14, 6, Decimal("8978.71"), charge_rate=None)

    @pytest.mark.unit
    def test_paid_beyond_tenure_rejected(self):
        with pytest.raises(InvalidTermsError):
            compute_preclosure(Decimal("100000"), MONTHLY_14, 13, Decimal("8978.71"), num_periods=12)


class TestMaxPrincipal:
    """Tests for the inverse annuity"""

    @pytest.mark.unit
    def test_max_principal_for_emi(self):
        assert max_principal_for_emi(Decimal("18000"), MONTHLY_14, 12) == Decimal("200474.19")

    @pytest.mark.unit
    def test_zero_rate(self):
        assert max_principal_for_emi(Decimal("100"), Decimal("0"), 12) == Decimal("1200.00")

    @pytest.mark.unit
    def test_no_budget(self):
        assert max_principal_for_emi(Decimal("0"), MONTHLY_14, 12) == Decimal("0.00")
