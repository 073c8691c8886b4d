from pydantic import BaseModel, Field, model_validator
from datetime import datetime, date
from decimal import Decimal
from typing import Optional, List

from app.modules.loans.models import ApplicationStatus, LoanStatus, TenureUnit
from app.modules.transactions.models import TransactionKind, TransactionStatus


# Rate card
class MembershipTierResponse(BaseModel):
    code: str
    name: str
    min_amount: Decimal
    max_amount: Decimal
    max_tenure: int
    tenure_unit: TenureUnit
    interest_rate: Decimal

    class Config:
        from_attributes = True


# Calculator
class EMICalculationRequest(BaseModel):
    """Either a tier code or an explicit rate and unit"""
    principal: Decimal = Field(..., gt=0, decimal_places=2)
    tenure: int = Field(..., gt=0)
    tier_code: Optional[str] = None
    interest_rate: Optional[Decimal] = Field(None, ge=0)
    tenure_unit: Optional[TenureUnit] = None
    include_schedule: bool = True

    @model_validator(mode="after")
    def check_rate_source(self):
        if self.tier_code is None and (self.interest_rate is None or self.tenure_unit is None):
            raise ValueError("Provide tier_code, or both interest_rate and tenure_unit")
        return self


class ScheduleEntryResponse(BaseModel):
    index: int
    due_date: Optional[date] = None
    emi: Decimal
    principal_component: Decimal
    interest_component: Decimal
    remaining_balance: Decimal
    paid: bool = False

    class Config:
        from_attributes = True


class EMICalculationResponse(BaseModel):
    principal: Decimal
    tenure: int
    tenure_unit: TenureUnit
    interest_rate: Decimal
    emi: Decimal
    total_interest: Decimal
    total_payable: Decimal
    schedule: List[ScheduleEntryResponse] = []


# Eligibility
class EligibilityRequest(BaseModel):
    amount: Decimal = Field(..., gt=0, decimal_places=2)
    tenure: int = Field(..., gt=0)
    tenure_unit: Optional[TenureUnit] = None  # Defaults to the tier's unit


class TenureOptionResponse(BaseModel):
    tenure: int
    tenure_unit: TenureUnit
    max_amount: Decimal
    emi: Decimal
    total_interest: Decimal
    is_affordable: bool

    class Config:
        from_attributes = True


class EligibilityResponse(BaseModel):
    is_eligible: bool
    blocking_reasons: List[str]
    warnings: List[str]
    tier_code: str
    interest_rate: Optional[Decimal] = None
    projected_emi: Optional[Decimal] = None
    total_interest: Optional[Decimal] = None
    max_affordable_emi: Optional[Decimal] = None
    options: List[TenureOptionResponse] = []


# Applications
class LoanApplicationRequest(BaseModel):
    """Loan application request"""
    amount: Decimal = Field(..., gt=0, decimal_places=2)
    tenure: int = Field(..., gt=0)
    tenure_unit: Optional[TenureUnit] = None
    purpose: str = Field(..., min_length=3, max_length=255)


class CancelRequest(BaseModel):
    reason: str = Field(..., min_length=3, max_length=500)


class PaymentRequest(BaseModel):
    amount: Optional[Decimal] = Field(None, gt=0, decimal_places=2)


class LoanResponse(BaseModel):
    id: int
    principal: Decimal
    interest_rate: Decimal
    tenure_units: int
    tenure_unit: TenureUnit
    emi: Decimal
    processing_fee: Decimal
    insurance_amount: Decimal
    status: LoanStatus
    disbursal_date: Optional[date] = None
    paid_installments: int
    preclosed: bool
    approved_at: datetime
    activated_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class LoanApplicationResponse(BaseModel):
    id: int
    reference: str
    tier_code: str
    principal: Decimal
    tenure_units: int
    tenure_unit: TenureUnit
    quoted_rate: Decimal
    purpose: str
    status: ApplicationStatus
    applied_at: datetime
    decision_at: Optional[datetime] = None
    decision_reason: Optional[str] = None
    cancellation_reason: Optional[str] = None
    loan: Optional[LoanResponse] = None

    class Config:
        from_attributes = True


class TimelineStepResponse(BaseModel):
    status: ApplicationStatus
    description: str
    completed: bool
    at: Optional[datetime] = None

    class Config:
        from_attributes = True


class StatusTimelineResponse(BaseModel):
    reference: str
    status: ApplicationStatus
    steps: List[TimelineStepResponse]
    progress_percent: int
    next_action: str


class EMIScheduleResponse(BaseModel):
    reference: str
    emi: Decimal
    paid_installments: int
    outstanding_principal: Decimal
    schedule: List[ScheduleEntryResponse]


class PreclosureQuoteResponse(BaseModel):
    reference: str
    eligible: bool
    outstanding_principal: Decimal
    charges: Decimal
    total_payable: Decimal
    savings: Decimal
    remaining_interest: Decimal
    remaining_installments: int
    paid_installments: int
    min_paid_installments: int


class TransactionSummary(BaseModel):
    reference_code: str
    kind: TransactionKind
    amount: Decimal
    status: TransactionStatus
    installment_number: Optional[int] = None
    created_at: datetime

    class Config:
        from_attributes = True


class PaymentResponse(BaseModel):
    reference: str
    transaction: TransactionSummary
    paid_installments: int
    loan_completed: bool
