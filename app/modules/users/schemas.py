from pydantic import BaseModel, EmailStr, Field, field_validator
from typing import Optional, List
from datetime import datetime, date
from decimal import Decimal

from app.modules.users.models import EmploymentType, KYCStatus
from app.modules.users.kyc_models import DocumentType, DocumentStatus


MOBILE_PATTERN = r"^[6-9][0-9]{9}$"


# Authentication
class OTPSendRequest(BaseModel):
    """Request a login OTP on a mobile number"""
    mobile_number: str = Field(..., pattern=MOBILE_PATTERN)


class OTPSendResponse(BaseModel):
    message: str
    mobile_number: str  # Masked
    expires_in: int


class OTPVerifyRequest(BaseModel):
    mobile_number: str = Field(..., pattern=MOBILE_PATTERN)
    otp: str = Field(..., min_length=4, max_length=8)


class TokenResponse(BaseModel):
    """JWT token response"""
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int
    is_new_user: bool = False
    profile_step: int


class RefreshTokenRequest(BaseModel):
    refresh_token: str


# Profile completion
class PersonalDetails(BaseModel):
    full_name: str = Field(..., min_length=2, max_length=200)
    date_of_birth: date
    gender: Optional[str] = Field(None, max_length=20)

    @field_validator("date_of_birth")
    @classmethod
    def validate_age(cls, v: date) -> date:
        """Borrowers must be at least 18 years old"""
        today = date.today()
        age = today.year - v.year - ((today.month, today.day) < (v.month, v.day))
        if age < 18:
            raise ValueError("Must be at least 18 years old")
        return v


class EmploymentDetails(BaseModel):
    employment_type: EmploymentType
    company_name: Optional[str] = Field(None, max_length=200)
    declared_monthly_income: Decimal = Field(..., gt=0, decimal_places=2)
    existing_emis: Decimal = Field(Decimal("0"), ge=0, decimal_places=2)


class AddressDetails(BaseModel):
    address_line: str = Field(..., min_length=5, max_length=255)
    city: str = Field(..., min_length=2, max_length=100)
    state: str = Field(..., min_length=2, max_length=100)
    pincode: str = Field(..., pattern=r"^[1-9][0-9]{5}$")


class ProfileUpdateRequest(BaseModel):
    """One or more profile sections, saved in order"""
    personal: Optional[PersonalDetails] = None
    employment: Optional[EmploymentDetails] = None
    address: Optional[AddressDetails] = None


class EmailUpdateRequest(BaseModel):
    email: EmailStr


class EmailVerificationRequest(BaseModel):
    otp: str = Field(..., min_length=4, max_length=8)


class UserProfileResponse(BaseModel):
    """User profile response"""
    id: int
    mobile_number: str
    email: Optional[str] = None
    full_name: Optional[str] = None
    date_of_birth: Optional[date] = None
    gender: Optional[str] = None
    pan_number: Optional[str] = None
    address_line: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    pincode: Optional[str] = None
    employment_type: Optional[EmploymentType] = None
    company_name: Optional[str] = None
    declared_monthly_income: Optional[Decimal] = None
    verified_monthly_income: Optional[Decimal] = None
    existing_emis: Decimal
    credit_score: Optional[int] = None
    member_tier: str
    kyc_status: KYCStatus
    profile_step: int
    phone_verified: bool
    email_verified: bool
    identity_verified: bool
    bank_account_verified: bool
    created_at: datetime

    class Config:
        from_attributes = True


# Bank account
class BankAccountRequest(BaseModel):
    account_number: str = Field(..., pattern=r"^[0-9]{9,18}$")
    ifsc_code: str = Field(..., pattern=r"^[A-Za-z]{4}0[A-Za-z0-9]{6}$")
    account_holder_name: str = Field(..., min_length=2, max_length=200)
    bank_name: Optional[str] = Field(None, max_length=100)
    account_type: str = Field("savings", pattern=r"^(savings|current)$")


class BankAccountResponse(BaseModel):
    id: int
    account_number: str  # Masked
    ifsc_code: str
    account_holder_name: str
    bank_name: Optional[str] = None
    account_type: str
    verified: bool
    verified_at: Optional[datetime] = None

    class Config:
        from_attributes = True


# KYC documents
class DocumentCreateRequest(BaseModel):
    document_type: DocumentType
    name: str = Field(..., min_length=2, max_length=100)
    file_reference: Optional[str] = Field(None, max_length=500)


class DocumentResponse(BaseModel):
    id: int
    document_type: DocumentType
    name: str
    file_reference: Optional[str] = None
    status: DocumentStatus
    remarks: Optional[str] = None
    verified_at: Optional[datetime] = None
    created_at: datetime

    class Config:
        from_attributes = True


class KYCStatusResponse(BaseModel):
    kyc_status: KYCStatus
    profile_step: int
    profile_completed: bool
    phone_verified: bool
    email_verified: bool
    identity_verified: bool
    bank_account_verified: bool
    documents: List[DocumentResponse] = []
    missing: List[str] = []
