"""
Unit tests for the eligibility evaluator
"""
import pytest
from dataclasses import replace
from decimal import Decimal

from app.modules.loans.calculator import compute_emi, periodic_rate
from app.modules.loans.eligibility import Applicant, EligibilityEvaluator, KycFlags, monthly_burden
from app.modules.loans.models import ApplicationStatus, TenureUnit
from app.modules.loans.policy import LendingPolicy, TierPolicy

SILVER = TierPolicy(
    code="silver",
    name="Silver",
    min_amount=Decimal("10000"),
    max_amount=Decimal("200000"),
    max_tenure=24,
    tenure_unit=TenureUnit.MONTH,
    interest_rate=Decimal("0.14"),
)

STARTER = TierPolicy(
    code="starter",
    name="Starter",
    min_amount=Decimal("1000"),
    max_amount=Decimal("25000"),
    max_tenure=60,
    tenure_unit=TenureUnit.DAY,
    interest_rate=Decimal("0.001"),
)

FULL_KYC = KycFlags(identity_verified=True, bank_account_verified=True, email_verified=True, phone_verified=True)


def make_applicant(**overrides) -> Applicant:
    fields = dict(
        user_id=1,
        tier=SILVER,
        verified_monthly_income=Decimal("80000"),
        kyc=FULL_KYC,
        existing_emis=Decimal("0"),
        credit_score=760,
    )
    fields.update(overrides)
    return Applicant(**fields)


@pytest.fixture
def evaluator():
    return EligibilityEvaluator(LendingPolicy())


class TestEvaluate:
    """Tests for the blocking rules"""

    @pytest.mark.unit
    def test_eligible_applicant(self, evaluator):
        result = evaluator.evaluate(make_applicant(), Decimal("100000"), 12, TenureUnit.MONTH)

        assert result.is_eligible
        assert result.blocking_reasons == ()
        assert result.warnings == ()
        assert result.projected_emi == Decimal("8978.71")
        assert result.total_interest == Decimal("7744.52")
        assert result.interest_rate == Decimal("0.14")
        assert result.max_affordable_emi == Decimal("48000.00")

    @pytest.mark.unit
    def test_amount_above_tier_maximum(self, evaluator):
        result = evaluator.evaluate(make_applicant(), Decimal("250000"), 12, TenureUnit.MONTH)

        assert not result.is_eligible
        assert any("exceeds the Silver tier maximum" in r for r in result.blocking_reasons)

    @pytest.mark.unit
    def test_every_reason_is_reported(self, evaluator):
        applicant = make_applicant(
            verified_monthly_income=Decimal("20000"),
            kyc=KycFlags(phone_verified=True),
        )
        result = evaluator.evaluate(applicant, Decimal("5000"), 36, TenureUnit.MONTH)

        assert len(result.blocking_reasons) == 5
        reasons = " | ".join(result.blocking_reasons)
        assert "below the Silver tier minimum" in reasons
        assert "36 months exceeds the Silver tier maximum of 24" in reasons
        assert "Identity document (PAN) is not verified" in reasons
        assert "Bank account is not verified" in reasons
        assert "below the minimum of 25,000.00" in reasons
        assert "Email address is not verified" in result.warnings

    @pytest.mark.unit
    def test_unit_mismatch_is_blocked_not_converted(self, evaluator):
        result = evaluator.evaluate(make_applicant(), Decimal("100000"), 30, TenureUnit.DAY)

        assert not result.is_eligible
        assert any("offered in months, not days" in r for r in result.blocking_reasons)
        assert result.projected_emi is None

    @pytest.mark.unit
    @pytest.mark.parametrize("status", [
        ApplicationStatus.SUBMITTED,
        ApplicationStatus.UNDER_REVIEW,
        ApplicationStatus.APPROVED,
        ApplicationStatus.DISBURSED,
        ApplicationStatus.ACTIVE,
    ])
    def test_in_flight_application_blocks(self, evaluator, status):
        result = evaluator.evaluate(
            make_applicant(), Decimal("100000"), 12, TenureUnit.MONTH, in_flight_statuses=[status]
        )

        assert not result.is_eligible
        assert any("already in progress" in r and status.value in r for r in result.blocking_reasons)

    @pytest.mark.unit
    def test_terminal_applications_do_not_block(self, evaluator):
        result = evaluator.evaluate(
            make_applicant(), Decimal("100000"), 12, TenureUnit.MONTH,
            in_flight_statuses=[ApplicationStatus.COMPLETED, ApplicationStatus.REJECTED,
                                ApplicationStatus.CANCELLED, ApplicationStatus.DEFAULTED],
        )

        assert result.is_eligible

    @pytest.mark.unit
    def test_projected_emi_above_affordable_emi(self, evaluator):
        applicant = make_applicant(verified_monthly_income=Decimal("30000"), existing_emis=Decimal("15000"))
        result = evaluator.evaluate(applicant, Decimal("200000"), 24, TenureUnit.MONTH)

        assert result.max_affordable_emi == Decimal("9000.00")
        assert result.projected_emi == Decimal("9602.58")
        assert result.blocking_reasons == (
            "Projected EMI 9,602.58 exceeds the affordable EMI of 9,000.00",
        )

    @pytest.mark.unit
    def test_daily_installments_checked_against_monthly_budget(self, evaluator):
        applicant = make_applicant(
            tier=STARTER, verified_monthly_income=Decimal("30000"), existing_emis=Decimal("29000")
        )
        result = evaluator.evaluate(applicant, Decimal("25000"), 60, TenureUnit.DAY)

        assert result.max_affordable_emi == Decimal("600.00")
        assert result.projected_emi == Decimal("429.50")
        assert result.blocking_reasons == (
            "Projected EMI 429.50 per day (12,885.00 a month) exceeds the affordable EMI of 600.00",
        )

    @pytest.mark.unit
    def test_day_product_within_budget(self, evaluator):
        applicant = make_applicant(tier=STARTER, verified_monthly_income=Decimal("30000"))
        result = evaluator.evaluate(applicant, Decimal("25000"), 60, TenureUnit.DAY)

        assert result.is_eligible
        assert result.max_affordable_emi == Decimal("18000.00")

    @pytest.mark.unit
    def test_short_day_loan_counts_only_its_installments(self):
        assert monthly_burden(Decimal("100.00"), TenureUnit.DAY, 15) == Decimal("1500.00")
        assert monthly_burden(Decimal("100.00"), TenureUnit.DAY, 60) == Decimal("3000.00")
        assert monthly_burden(Decimal("100.00"), TenureUnit.MONTH, 12) == Decimal("100.00")

    @pytest.mark.unit
    def test_missing_income(self, evaluator):
        result = evaluator.evaluate(
            make_applicant(verified_monthly_income=None), Decimal("100000"), 12, TenureUnit.MONTH
        )

        assert "Verified monthly income is not available" in result.blocking_reasons
        assert result.max_affordable_emi is None

    @pytest.mark.unit
    def test_contact_details_only_warn(self, evaluator):
        applicant = make_applicant(
            kyc=replace(FULL_KYC, email_verified=False),
            credit_score=None,
        )
        result = evaluator.evaluate(applicant, Decimal("100000"), 12, TenureUnit.MONTH)

        assert result.is_eligible
        assert result.warnings == (
            "Email address is not verified",
            "Credit profile has not been fetched yet",
        )

    @pytest.mark.unit
    def test_same_input_same_result(self, evaluator):
        applicant = make_applicant(verified_monthly_income=Decimal("20000"))
        first = evaluator.evaluate(applicant, Decimal("150000"), 18, TenureUnit.MONTH)
        second = evaluator.evaluate(applicant, Decimal("150000"), 18, TenureUnit.MONTH)

        assert first == second

    @pytest.mark.unit
    def test_policy_thresholds_are_configurable(self):
        strict = EligibilityEvaluator(LendingPolicy(min_monthly_income=Decimal("100000")))
        result = strict.evaluate(make_applicant(), Decimal("100000"), 12, TenureUnit.MONTH)

        assert not result.is_eligible


class TestAffordabilityOptions:
    """Tests for tenure options"""

    @pytest.mark.unit
    def test_options_per_tenure_step(self, evaluator):
        options = evaluator.affordability_options(make_applicant(), Decimal("100000"))

        assert [o.tenure for o in options] == [12, 24]
        assert all(o.tenure_unit == TenureUnit.MONTH for o in options)
        assert options[0].emi == Decimal("8978.71")
        assert options[1].emi < options[0].emi

    @pytest.mark.unit
    def test_max_amount_from_affordable_emi(self, evaluator):
        tier = replace(SILVER, max_amount=Decimal("500000"))
        applicant = make_applicant(tier=tier, verified_monthly_income=Decimal("30000"))
        options = evaluator.affordability_options(applicant, Decimal("100000"), tenures=[12])

        assert options[0].max_amount == Decimal("200474.19")
        assert options[0].is_affordable

    @pytest.mark.unit
    def test_max_amount_capped_by_tier(self, evaluator):
        options = evaluator.affordability_options(make_applicant(), Decimal("100000"), tenures=[12])

        assert options[0].max_amount == Decimal("200000")

    @pytest.mark.unit
    def test_tenures_beyond_tier_skipped(self, evaluator):
        options = evaluator.affordability_options(make_applicant(), Decimal("100000"), tenures=[6, 30])

        assert [o.tenure for o in options] == [6]

    @pytest.mark.unit
    def test_day_product_options_fit_monthly_budget(self, evaluator):
        applicant = make_applicant(
            tier=STARTER, verified_monthly_income=Decimal("30000"), existing_emis=Decimal("29000")
        )
        options = evaluator.affordability_options(applicant, Decimal("25000"))
        rate = periodic_rate(STARTER.interest_rate, TenureUnit.DAY)

        assert [o.tenure for o in options] == [15, 30, 45, 60]
        for option in options:
            assert not option.is_affordable
            assert option.max_amount < Decimal("25000")
            emi = compute_emi(option.max_amount, rate, option.tenure)
            assert monthly_burden(emi, TenureUnit.DAY, option.tenure) <= Decimal("600.00")
