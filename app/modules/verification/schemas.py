from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime
from decimal import Decimal


class CreditProfileResponse(BaseModel):
    score: int
    trend: Optional[str] = None
    factors: Optional[dict] = None
    fetched_at: datetime
    cached: bool = False


class PANVerificationRequest(BaseModel):
    pan_number: str = Field(..., min_length=10, max_length=10)


class PANVerificationResponse(BaseModel):
    pan_number: str
    identity_verified: bool
    verified_monthly_income: Optional[Decimal] = None


class BankVerificationResponse(BaseModel):
    account_number: str  # Masked
    verified: bool
    account_holder_name: Optional[str] = None
    bank_name: Optional[str] = None


class VerificationItemStatus(BaseModel):
    verified: bool
    last_updated: Optional[datetime] = None
    needs_update: bool = False


class VerificationStatusResponse(BaseModel):
    kyc_status: str
    credit: VerificationItemStatus
    credit_score: Optional[int] = None
    pan: VerificationItemStatus
    bank: VerificationItemStatus
    completion_percentage: int
    all_verified: bool
