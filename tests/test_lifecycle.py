"""
Unit tests for the loan application state machine
"""
import pytest
from datetime import date, datetime, timezone
from decimal import Decimal

from app.core.exceptions import (
    ConcurrentApplicationError, EligibilityBlockedError, InvalidTermsError, InvalidTransitionError
)
from app.modules.loans.calculator import compute_preclosure
from app.modules.loans.eligibility import EligibilityResult
from app.modules.loans.lifecycle import (
    ALLOWED_TRANSITIONS, LoanLifecycle, can_transition, loan_outstanding_principal,
    loan_periodic_rate, next_due_date, status_timeline
)
from app.modules.loans.models import ApplicationStatus, LoanStatus, TenureUnit, TERMINAL_STATUSES
from app.modules.loans.policy import LendingPolicy, TierPolicy
from app.modules.transactions.models import TransactionKind, TransactionStatus

S = ApplicationStatus
NOW = datetime(2026, 1, 10, 9, 30, tzinfo=timezone.utc)
ELIGIBLE = EligibilityResult()
BLOCKED = EligibilityResult(blocking_reasons=("Bank account is not verified",))

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


@pytest.fixture
def lifecycle():
    return LoanLifecycle(LendingPolicy())


@pytest.fixture
def submitted(lifecycle):
    return lifecycle.submit(
        user_id=1,
        tier=SILVER,
        principal=Decimal("100000"),
        tenure_units=12,
        tenure_unit=TenureUnit.MONTH,
        purpose="Home renovation",
        eligibility=ELIGIBLE,
        now=NOW,
    )


@pytest.fixture
def approved(lifecycle, submitted):
    lifecycle.start_review(submitted, now=NOW)
    lifecycle.approve(submitted, SILVER, ELIGIBLE, now=NOW)
    return submitted


@pytest.fixture
def active(lifecycle, approved):
    lifecycle.disburse(approved, date(2026, 1, 10), bank_account_verified=True, now=NOW)
    lifecycle.activate(approved, now=NOW)
    return approved


def pay(lifecycle, application, count=1):
    completed = False
    for _ in range(count):
        loan = application.loan
        txn = lifecycle.add_transaction(
            loan, TransactionKind.REPAYMENT, -loan.emi, TransactionStatus.COMPLETED,
            "EMI payment", NOW, installment_number=loan.paid_installments + 1,
        )
        completed = lifecycle.record_payment(application, txn, now=NOW)
    return completed


def quote_for(application, policy=LendingPolicy()):
    loan = application.loan
    return compute_preclosure(
        loan.principal, loan_periodic_rate(loan), loan.paid_installments, loan.emi,
        num_periods=loan.tenure_units, charge_rate=policy.preclosure_charge_rate,
    )


class TestTransitionTable:
    """Tests for the allowed status moves"""

    @pytest.mark.unit
    def test_submitted_moves(self):
        allowed = {s for s in S if can_transition(S.SUBMITTED, s)}
        assert allowed == {S.UNDER_REVIEW, S.REJECTED, S.CANCELLED}

    @pytest.mark.unit
    def test_terminal_states_have_no_exit(self):
        for status in TERMINAL_STATUSES:
            assert ALLOWED_TRANSITIONS[status] == frozenset()

    @pytest.mark.unit
    def test_active_cannot_be_cancelled(self):
        assert not can_transition(S.ACTIVE, S.CANCELLED)
        assert can_transition(S.ACTIVE, S.DEFAULTED)


class TestSubmit:
    """Tests for creating applications"""

    @pytest.mark.unit
    def test_submit_creates_submitted_application(self, submitted):
        assert submitted.status == S.SUBMITTED
        assert submitted.reference.startswith("CL")
        assert submitted.principal == Decimal("100000.00")
        assert submitted.quoted_rate == Decimal("0.14")
        assert submitted.applied_at == NOW
        assert submitted.loan is None

    @pytest.mark.unit
    def test_submit_with_in_flight_application(self, lifecycle):
        with pytest.raises(ConcurrentApplicationError) as exc:
            lifecycle.submit(
                user_id=1, tier=SILVER, principal=Decimal("50000"), tenure_units=12,
                tenure_unit=TenureUnit.MONTH, purpose="Travel", eligibility=ELIGIBLE,
                in_flight_statuses=[S.ACTIVE],
            )
        assert exc.value.reasons == ["Existing application status: active"]

    @pytest.mark.unit
    def test_submit_when_ineligible(self, lifecycle):
        with pytest.raises(EligibilityBlockedError) as exc:
            lifecycle.submit(
                user_id=1, tier=SILVER, principal=Decimal("50000"), tenure_units=12,
                tenure_unit=TenureUnit.MONTH, purpose="Travel", eligibility=BLOCKED,
            )
        assert exc.value.reasons == ["Bank account is not verified"]


class TestApproval:
    """Tests for review, approval, rejection and cancellation"""

    @pytest.mark.unit
    def test_cannot_approve_without_review(self, lifecycle, submitted):
        with pytest.raises(InvalidTransitionError):
            lifecycle.approve(submitted, SILVER, ELIGIBLE, now=NOW)
        assert submitted.status == S.SUBMITTED
        assert submitted.loan is None

    @pytest.mark.unit
    def test_approve_materializes_loan_and_fees(self, approved):
        loan = approved.loan

        assert approved.status == S.APPROVED
        assert loan.status == LoanStatus.APPROVED
        assert loan.emi == Decimal("8978.71")
        assert loan.interest_rate == Decimal("0.14")
        assert loan.processing_fee == Decimal("2000.00")
        assert loan.insurance_amount == Decimal("500.00")
        fees = sorted(t.amount for t in loan.transactions)
        assert fees == [Decimal("-2000.00"), Decimal("-500.00")]
        assert all(t.status == TransactionStatus.PENDING for t in loan.transactions)

    @pytest.mark.unit
    def test_processing_fee_is_capped(self, lifecycle):
        gold = TierPolicy("gold", "Gold", Decimal("25000"), Decimal("1000000"), 36, TenureUnit.MONTH, Decimal("0.12"))
        application = lifecycle.submit(
            user_id=2, tier=gold, principal=Decimal("800000"), tenure_units=36,
            tenure_unit=TenureUnit.MONTH, purpose="Business", eligibility=ELIGIBLE, now=NOW,
        )
        lifecycle.start_review(application, now=NOW)
        loan = lifecycle.approve(application, gold, ELIGIBLE, now=NOW)

        assert loan.processing_fee == Decimal("10000.00")
        assert loan.insurance_amount == Decimal("4000.00")

    @pytest.mark.unit
    def test_approve_rechecks_eligibility(self, lifecycle, submitted):
        lifecycle.start_review(submitted, now=NOW)
        with pytest.raises(EligibilityBlockedError):
            lifecycle.approve(submitted, SILVER, BLOCKED, now=NOW)
        assert submitted.status == S.UNDER_REVIEW
        assert submitted.loan is None

    @pytest.mark.unit
    def test_approve_with_other_unit_tier(self, lifecycle, submitted):
        lifecycle.start_review(submitted, now=NOW)
        with pytest.raises(InvalidTermsError):
            lifecycle.approve(submitted, STARTER, ELIGIBLE, now=NOW)
        assert submitted.status == S.UNDER_REVIEW

    @pytest.mark.unit
    def test_reject_requires_reason(self, lifecycle, submitted):
        with pytest.raises(InvalidTransitionError):
            lifecycle.reject(submitted, "   ", now=NOW)
        assert submitted.status == S.SUBMITTED

        lifecycle.reject(submitted, "Income could not be confirmed", now=NOW)
        assert submitted.status == S.REJECTED
        assert submitted.decision_reason == "Income could not be confirmed"

    @pytest.mark.unit
    def test_cancel_approved_fails_pending_fees(self, lifecycle, approved):
        lifecycle.cancel(approved, "Changed my mind", now=NOW)

        assert approved.status == S.CANCELLED
        assert approved.loan.status == LoanStatus.CANCELLED
        assert approved.cancellation_reason == "Changed my mind"
        assert all(t.status == TransactionStatus.FAILED for t in approved.loan.transactions)

    @pytest.mark.unit
    def test_rejected_application_cannot_be_cancelled(self, lifecycle, submitted):
        lifecycle.reject(submitted, "Policy", now=NOW)
        with pytest.raises(InvalidTransitionError):
            lifecycle.cancel(submitted, "Too late", now=NOW)


class TestDisbursal:
    """Tests for disbursal and activation"""

    @pytest.mark.unit
    def test_disburse_requires_verified_bank_account(self, lifecycle, approved):
        with pytest.raises(InvalidTransitionError) as exc:
            lifecycle.disburse(approved, None, bank_account_verified=False, now=NOW)

        assert exc.value.reasons == ["A disbursal date is required", "Borrower bank account is not verified"]
        assert approved.status == S.APPROVED
        assert len(approved.loan.transactions) == 2

    @pytest.mark.unit
    def test_disburse_and_activate(self, lifecycle, approved):
        txn = lifecycle.disburse(approved, date(2026, 1, 10), bank_account_verified=True, now=NOW)

        assert txn.kind == TransactionKind.DISBURSAL
        assert txn.amount == Decimal("100000.00")
        assert txn.status == TransactionStatus.COMPLETED
        assert approved.status == S.DISBURSED
        assert approved.loan.status == LoanStatus.DISBURSED

        lifecycle.activate(approved, now=NOW)
        assert approved.status == S.ACTIVE
        assert approved.loan.activated_at == NOW
        assert next_due_date(approved.loan) == date(2026, 2, 10)

    @pytest.mark.unit
    def test_cannot_activate_before_disbursal(self, lifecycle, approved):
        with pytest.raises(InvalidTransitionError):
            lifecycle.activate(approved, now=NOW)


class TestRepayment:
    """Tests for payments, pre-closure and default"""

    @pytest.mark.unit
    def test_partial_repayment_keeps_loan_active(self, lifecycle, active):
        assert pay(lifecycle, active, 6) is False

        assert active.status == S.ACTIVE
        assert active.loan.paid_installments == 6
        assert loan_outstanding_principal(active.loan) == Decimal("51739.19")
        assert next_due_date(active.loan) == date(2026, 7, 10)

    @pytest.mark.unit
    def test_final_payment_completes_loan(self, lifecycle, active):
        assert pay(lifecycle, active, 12) is True

        assert active.status == S.COMPLETED
        assert active.loan.status == LoanStatus.COMPLETED
        assert active.loan.closed_at == NOW
        assert loan_outstanding_principal(active.loan) == Decimal("0")

    @pytest.mark.unit
    def test_payment_requires_active_loan(self, lifecycle, approved):
        txn = lifecycle.add_transaction(
            approved.loan, TransactionKind.REPAYMENT, Decimal("-8978.71"), TransactionStatus.COMPLETED, "EMI", NOW
        )
        with pytest.raises(InvalidTransitionError):
            lifecycle.record_payment(approved, txn, now=NOW)

    @pytest.mark.unit
    def test_pending_repayment_is_not_counted(self, lifecycle, active):
        txn = lifecycle.add_transaction(
            active.loan, TransactionKind.REPAYMENT, Decimal("-8978.71"), TransactionStatus.PENDING, "EMI", NOW
        )
        with pytest.raises(InvalidTransitionError):
            lifecycle.record_payment(active, txn, now=NOW)
        assert active.loan.paid_installments == 0

    @pytest.mark.unit
    def test_preclose_after_minimum_installments(self, lifecycle, active):
        pay(lifecycle, active, 6)
        quote = quote_for(active)
        transactions = lifecycle.preclose(active, quote, now=NOW)

        assert [t.amount for t in transactions] == [Decimal("-51739.19"), Decimal("-1034.78")]
        assert active.status == S.COMPLETED
        assert active.loan.preclosed
        assert loan_outstanding_principal(active.loan) == Decimal("0")

    @pytest.mark.unit
    def test_preclose_too_early(self, lifecycle, active):
        pay(lifecycle, active, 5)
        with pytest.raises(InvalidTransitionError):
            lifecycle.preclose(active, quote_for(active), now=NOW)
        assert active.status == S.ACTIVE

    @pytest.mark.unit
    def test_preclose_with_stale_quote(self, lifecycle, active):
        pay(lifecycle, active, 6)
        quote = quote_for(active)
        pay(lifecycle, active)

        with pytest.raises(InvalidTransitionError):
            lifecycle.preclose(active, quote, now=NOW)
        assert active.status == S.ACTIVE
        assert not active.loan.preclosed

    @pytest.mark.unit
    def test_default_only_when_overdue(self, lifecycle, active):
        with pytest.raises(InvalidTransitionError):
            lifecycle.mark_defaulted(active, date(2026, 2, 10), now=NOW)

        lifecycle.mark_defaulted(active, date(2026, 2, 11), now=NOW)
        assert active.status == S.DEFAULTED
        assert active.loan.status == LoanStatus.DEFAULTED

    @pytest.mark.unit
    def test_default_honours_grace_days(self, active):
        lenient = LoanLifecycle(LendingPolicy(default_grace_days=5))
        assert not lenient.is_overdue(active.loan, date(2026, 2, 15))
        assert lenient.is_overdue(active.loan, date(2026, 2, 16))


class TestStatusTimeline:
    """Tests for the progress view of an application"""

    @pytest.mark.unit
    def test_submitted_timeline(self, submitted):
        timeline = status_timeline(submitted)

        assert timeline.status == S.SUBMITTED
        assert timeline.progress_percent == 16
        assert [step.completed for step in timeline.steps] == [True, False, False, False, False, False]
        assert timeline.steps[0].at == NOW

    @pytest.mark.unit
    def test_active_timeline(self, active):
        timeline = status_timeline(active)

        assert timeline.progress_percent == 83
        assert timeline.next_action == "Pay EMI of 8,978.71 by 2026-02-10"

    @pytest.mark.unit
    def test_rejected_timeline_adds_terminal_step(self, lifecycle, submitted):
        lifecycle.start_review(submitted, now=NOW)
        lifecycle.reject(submitted, "Policy", now=NOW)
        timeline = status_timeline(submitted)

        assert timeline.progress_percent == 33
        assert len(timeline.steps) == 7
        assert timeline.steps[-1].status == S.REJECTED
        assert timeline.steps[-1].description == "Application rejected"
        assert timeline.next_action == "Application rejected: Policy"
