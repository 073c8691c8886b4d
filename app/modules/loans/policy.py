"""Immutable configuration handed to the lending engine."""
from dataclasses import dataclass
from decimal import Decimal

from app.modules.loans.models import MembershipTier, TenureUnit


@dataclass(frozen=True)
class TierPolicy:
    """Rate card of one membership tier.

    ``interest_rate`` is annual for month products and daily for day products.
    """

    code: str
    name: str
    min_amount: Decimal
    max_amount: Decimal
    max_tenure: int
    tenure_unit: TenureUnit
    interest_rate: Decimal

    @classmethod
    def from_model(cls, tier: MembershipTier) -> "TierPolicy":
        return cls(
            code=tier.code,
            name=tier.name,
            min_amount=Decimal(tier.min_amount),
            max_amount=Decimal(tier.max_amount),
            max_tenure=tier.max_tenure,
            tenure_unit=TenureUnit(tier.tenure_unit),
            interest_rate=Decimal(tier.interest_rate),
        )


@dataclass(frozen=True)
class LendingPolicy:
    """Thresholds and charges applied across every product."""

    min_monthly_income: Decimal = Decimal("25000")
    max_foir: Decimal = Decimal("0.6")
    processing_fee_rate: Decimal = Decimal("0.02")
    processing_fee_cap: Decimal = Decimal("10000")
    insurance_rate: Decimal = Decimal("0.005")
    preclosure_charge_rate: Decimal = Decimal("0.02")
    preclosure_min_paid_installments: int = 6
    activation_grace_days: int = 0
    default_grace_days: int = 0
    emi_reminder_window_days: int = 7
    currency: str = "INR"

    @classmethod
    def from_settings(cls, settings) -> "LendingPolicy":
        return cls(
            min_monthly_income=Decimal(settings.MIN_MONTHLY_INCOME),
            max_foir=Decimal(settings.MAX_FOIR),
            processing_fee_rate=Decimal(settings.PROCESSING_FEE_RATE),
            processing_fee_cap=Decimal(settings.PROCESSING_FEE_CAP),
            insurance_rate=Decimal(settings.INSURANCE_RATE),
            preclosure_charge_rate=Decimal(settings.PRECLOSURE_CHARGE_RATE),
            preclosure_min_paid_installments=settings.PRECLOSURE_MIN_PAID_INSTALLMENTS,
            activation_grace_days=settings.ACTIVATION_GRACE_DAYS,
            default_grace_days=settings.DEFAULT_GRACE_DAYS,
            emi_reminder_window_days=settings.EMI_REMINDER_WINDOW_DAYS,
            currency=settings.CURRENCY,
        )


# Seeded into member_tiers on startup when the table is empty
DEFAULT_TIERS = [
    {
        "code": "starter", "name": "Starter", "min_amount": Decimal("1000"),
        "max_amount": Decimal("25000"), "max_tenure": 60, "tenure_unit": TenureUnit.DAY,
        "interest_rate": Decimal("0.001"),
    },
    {
        "code": "bronze", "name": "Bronze", "min_amount": Decimal("5000"),
        "max_amount": Decimal("50000"), "max_tenure": 12, "tenure_unit": TenureUnit.MONTH,
        "interest_rate": Decimal("0.16"),
    },
    {
        "code": "silver", "name": "Silver", "min_amount": Decimal("10000"),
        "max_amount": Decimal("200000"), "max_tenure": 24, "tenure_unit": TenureUnit.MONTH,
        "interest_rate": Decimal("0.14"),
    },
    {
        "code": "gold", "name": "Gold", "min_amount": Decimal("25000"),
        "max_amount": Decimal("500000"), "max_tenure": 36, "tenure_unit": TenureUnit.MONTH,
        "interest_rate": Decimal("0.12"),
    },
    {
        "code": "platinum", "name": "Platinum", "min_amount": Decimal("50000"),
        "max_amount": Decimal("1000000"), "max_tenure": 60, "tenure_unit": TenureUnit.MONTH,
        "interest_rate": Decimal("0.11"),
    },
]
