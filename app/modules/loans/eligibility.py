"""Eligibility rules for a requested loan.

Every rule is evaluated on every call and all blocking reasons are collected,
so a borrower sees each problem at once. The evaluator has no side effects:
the same applicant, request and policy always give the same result.
"""
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Iterable, List, Optional, Sequence, Tuple

from app.core.exceptions import InvalidTermsError
from app.modules.loans.calculator import (
    compute_emi, compute_total_interest, max_principal_for_emi, periodic_rate, to_money, ZERO
)
from app.modules.loans.models import ApplicationStatus, IN_FLIGHT_STATUSES, TenureUnit
from app.modules.loans.policy import LendingPolicy, TierPolicy

DAYS_PER_MONTH = 30


@dataclass(frozen=True)
class KycFlags:
    identity_verified: bool = False
    bank_account_verified: bool = False
    email_verified: bool = False
    phone_verified: bool = False


@dataclass(frozen=True)
class Applicant:
    user_id: int
    tier: TierPolicy
    verified_monthly_income: Optional[Decimal]
    kyc: KycFlags
    existing_emis: Decimal = ZERO
    credit_score: Optional[int] = None


@dataclass(frozen=True)
class EligibilityResult:
    blocking_reasons: Tuple[str, ...] = ()
    warnings: Tuple[str, ...] = ()
    projected_emi: Optional[Decimal] = None
    total_interest: Optional[Decimal] = None
    interest_rate: Optional[Decimal] = None
    max_affordable_emi: Optional[Decimal] = None

    @property
    def is_eligible(self) -> bool:
        return not self.blocking_reasons


@dataclass(frozen=True)
class TenureOption:
    tenure: int
    tenure_unit: TenureUnit
    max_amount: Decimal
    emi: Decimal
    total_interest: Decimal
    is_affordable: bool


def _fmt(amount: Decimal) -> str:
    return f"{to_money(amount):,}"


def _unit_label(tenure_unit: TenureUnit, count: int) -> str:
    label = "month" if tenure_unit == TenureUnit.MONTH else "day"
    return label if count == 1 else f"{label}s"


def installments_per_month(tenure_unit: TenureUnit, num_periods: int) -> int:
    """Installments falling due in one month of repayment; day products count a 30-day window"""
    if TenureUnit(tenure_unit) == TenureUnit.DAY:
        return min(num_periods, DAYS_PER_MONTH)
    return 1


def monthly_burden(emi: Decimal, tenure_unit: TenureUnit, num_periods: int) -> Decimal:
    """What an installment costs the borrower per month, comparable with a monthly income"""
    return to_money(Decimal(emi) * installments_per_month(tenure_unit, num_periods))


@dataclass
class EligibilityEvaluator:
    """Applies tier, KYC, income, affordability and single-application rules"""

    policy: LendingPolicy = field(default_factory=LendingPolicy)

    def max_affordable_emi(self, applicant: Applicant) -> Optional[Decimal]:
        """Monthly installment budget: FOIR share of income left after existing EMIs"""
        if applicant.verified_monthly_income is None:
            return None
        available = Decimal(applicant.verified_monthly_income) - Decimal(applicant.existing_emis or 0)
        return to_money(max(available, ZERO) * self.policy.max_foir)

    def evaluate(
        self,
        applicant: Applicant,
        requested_amount: Decimal,
        requested_tenure: int,
        tenure_unit: TenureUnit,
        in_flight_statuses: Iterable[ApplicationStatus] = (),
    ) -> EligibilityResult:
        tier = applicant.tier
        blocking: List[str] = []
        warnings: List[str] = []
        requested_amount = Decimal(requested_amount)

        # 1. Amount within the tier's range
        if requested_amount < tier.min_amount:
            blocking.append(
                f"Requested amount {_fmt(requested_amount)} is below the {tier.name} tier minimum of {_fmt(tier.min_amount)}"
            )
        if requested_amount > tier.max_amount:
            blocking.append(
                f"Requested amount {_fmt(requested_amount)} exceeds the {tier.name} tier maximum of {_fmt(tier.max_amount)}"
            )

        # 2. Tenure within the tier's limit, in the tier's own unit
        unit_matches = tenure_unit == tier.tenure_unit
        if not unit_matches:
            blocking.append(
                f"The {tier.name} tier is offered in {tier.tenure_unit.value}s, not {TenureUnit(tenure_unit).value}s"
            )
        if requested_tenure <= 0:
            blocking.append("Tenure must be at least one period")
        elif unit_matches and requested_tenure > tier.max_tenure:
            blocking.append(
                f"Requested tenure of {requested_tenure} {_unit_label(tier.tenure_unit, requested_tenure)} "
                f"exceeds the {tier.name} tier maximum of {tier.max_tenure}"
            )

        # 3. KYC: identity and bank account block, contact details only warn
        if not applicant.kyc.identity_verified:
            blocking.append("Identity document (PAN) is not verified")
        if not applicant.kyc.bank_account_verified:
            blocking.append("Bank account is not verified")
        if not applicant.kyc.email_verified:
            warnings.append("Email address is not verified")
        if not applicant.kyc.phone_verified:
            warnings.append("Mobile number is not verified")

        # 4. Income floor
        income = applicant.verified_monthly_income
        if income is None:
            blocking.append("Verified monthly income is not available")
        elif Decimal(income) < self.policy.min_monthly_income:
            blocking.append(
                f"Verified monthly income {_fmt(income)} is below the minimum of {_fmt(self.policy.min_monthly_income)}"
            )

        # 5. Single in-flight application per user
        open_statuses = sorted({ApplicationStatus(s) for s in in_flight_statuses} & IN_FLIGHT_STATUSES)
        if open_statuses:
            labels = ", ".join(s.value for s in open_statuses)
            blocking.append(f"Another loan application is already in progress (status: {labels})")

        if applicant.credit_score is None:
            warnings.append("Credit profile has not been fetched yet")

        # 6. Affordability of the projected EMI
        projected_emi = total_interest = None
        max_emi = self.max_affordable_emi(applicant)
        if unit_matches:
            try:
                rate = periodic_rate(tier.interest_rate, tier.tenure_unit)
                projected_emi = compute_emi(requested_amount, rate, requested_tenure)
                total_interest = compute_total_interest(requested_amount, projected_emi, requested_tenure)
            except InvalidTermsError:
                pass
        if projected_emi is not None and max_emi is not None:
            burden = monthly_burden(projected_emi, tier.tenure_unit, requested_tenure)
            if burden > max_emi:
                if tier.tenure_unit == TenureUnit.DAY:
                    blocking.append(
                        f"Projected EMI {_fmt(projected_emi)} per day ({_fmt(burden)} a month) "
                        f"exceeds the affordable EMI of {_fmt(max_emi)}"
                    )
                else:
                    blocking.append(
                        f"Projected EMI {_fmt(projected_emi)} exceeds the affordable EMI of {_fmt(max_emi)}"
                    )

        return EligibilityResult(
            blocking_reasons=tuple(blocking),
            warnings=tuple(warnings),
            projected_emi=projected_emi,
            total_interest=total_interest,
            interest_rate=tier.interest_rate,
            max_affordable_emi=max_emi,
        )

    def affordability_options(
        self,
        applicant: Applicant,
        requested_amount: Decimal,
        tenures: Optional[Sequence[int]] = None,
    ) -> List[TenureOption]:
        """Maximum eligible amount and EMI for each candidate tenure of the tier"""
        tier = applicant.tier
        if tenures is None:
            step = 12 if tier.tenure_unit == TenureUnit.MONTH else 15
            tenures = range(step, tier.max_tenure + 1, step)
        rate = periodic_rate(tier.interest_rate, tier.tenure_unit)
        max_emi = self.max_affordable_emi(applicant) or ZERO

        options = []
        for tenure in tenures:
            if tenure <= 0 or tenure > tier.max_tenure:
                continue
            per_month = installments_per_month(tier.tenure_unit, tenure)
            max_amount = min(max_principal_for_emi(max_emi / per_month, rate, tenure), tier.max_amount)
            emi = compute_emi(requested_amount, rate, tenure)
            options.append(TenureOption(
                tenure=tenure,
                tenure_unit=tier.tenure_unit,
                max_amount=max_amount,
                emi=emi,
                total_interest=compute_total_interest(requested_amount, emi, tenure),
                is_affordable=monthly_burden(emi, tier.tenure_unit, tenure) <= max_emi,
            ))
        return options
