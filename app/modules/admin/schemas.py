from pydantic import BaseModel, Field
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from app.modules.loans.schemas import LoanApplicationResponse
from app.modules.users.models import KYCStatus
from app.modules.users.kyc_models import DocumentStatus, DocumentType


# ============================================================
# Loan operations
# ============================================================

class ReasonRequest(BaseModel):
    reason: str = Field(..., min_length=3, max_length=500)


class DisburseRequest(BaseModel):
    disbursal_date: Optional[date] = None  # Defaults to today


class SweepRequest(BaseModel):
    as_of: Optional[date] = None


class SweepResponse(BaseModel):
    as_of: date
    references: List[str]
    count: int


class AdminLoanApplicationResponse(LoanApplicationResponse):
    user_id: int


class LoanApplicationListResponse(BaseModel):
    applications: List[AdminLoanApplicationResponse]
    total: int
    page: int
    page_size: int
    total_pages: int


# ============================================================
# KYC and customers
# ============================================================

class DocumentReviewRequest(BaseModel):
    status: DocumentStatus
    remarks: Optional[str] = Field(None, max_length=500)


class AdminDocumentResponse(BaseModel):
    id: int
    user_id: int
    document_type: DocumentType
    name: str
    file_reference: Optional[str] = None
    status: DocumentStatus
    remarks: Optional[str] = None
    reviewed_by: Optional[int] = None
    verified_at: Optional[datetime] = None
    created_at: datetime

    class Config:
        from_attributes = True


class CustomerResponse(BaseModel):
    id: int
    mobile_number: str
    email: Optional[str] = None
    full_name: Optional[str] = None
    member_tier: str
    kyc_status: KYCStatus
    profile_step: int
    credit_score: Optional[int] = None
    identity_verified: bool
    bank_account_verified: bool
    is_active: bool
    is_admin: bool
    created_at: datetime

    class Config:
        from_attributes = True


class CustomerListResponse(BaseModel):
    users: List[CustomerResponse]
    total: int
    page: int
    page_size: int
    total_pages: int


class TierAssignmentRequest(BaseModel):
    tier_code: str = Field(..., min_length=2, max_length=20)


class AdminFlagRequest(BaseModel):
    is_admin: bool


# ============================================================
# Dashboard and audit
# ============================================================

class DashboardStats(BaseModel):
    total_users: int
    active_users: int
    kyc_completed: int
    new_users_today: int
    applications_by_status: Dict[str, int]
    pending_reviews: int
    approved_awaiting_disbursal: int
    active_loans: int
    total_disbursed: Decimal
    total_outstanding: Decimal
    total_repaid: Decimal


class PendingApprovals(BaseModel):
    pending_documents: int
    pending_loans: int
    pending_transactions: int
    total: int


class AuditLogResponse(BaseModel):
    id: int
    admin_id: Optional[int] = None
    ip_address: Optional[str] = None
    action: str
    resource_type: str
    resource_reference: Optional[str] = None
    description: Optional[str] = None
    old_values: Optional[Dict[str, Any]] = None
    new_values: Optional[Dict[str, Any]] = None
    success: bool
    error_message: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


class AuditLogListResponse(BaseModel):
    logs: List[AuditLogResponse]
    total: int
    page: int
    page_size: int
