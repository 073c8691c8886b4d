from sqlalchemy import (
    Column, Integer, String, Boolean, DateTime, Date, Text, Numeric, ForeignKey, Index,
    Enum as SQLEnum
)
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from app.core.database import Base
import enum


class TenureUnit(str, enum.Enum):
    """Unit a product's tenure and rate are expressed in"""
    MONTH = "month"
    DAY = "day"


class ApplicationStatus(str, enum.Enum):
    """Loan application lifecycle status"""
    SUBMITTED = "submitted"
    UNDER_REVIEW = "under_review"
    APPROVED = "approved"
    DISBURSED = "disbursed"
    ACTIVE = "active"
    COMPLETED = "completed"
    REJECTED = "rejected"
    CANCELLED = "cancelled"
    DEFAULTED = "defaulted"


TERMINAL_STATUSES = frozenset({
    ApplicationStatus.COMPLETED,
    ApplicationStatus.REJECTED,
    ApplicationStatus.CANCELLED,
    ApplicationStatus.DEFAULTED,
})

IN_FLIGHT_STATUSES = frozenset(ApplicationStatus) - TERMINAL_STATUSES


class LoanStatus(str, enum.Enum):
    """Status of a materialized loan (mirrors the post-approval application states)"""
    APPROVED = "approved"
    DISBURSED = "disbursed"
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    REJECTED = "rejected"
    DEFAULTED = "defaulted"


class MembershipTier(Base):
    """Rate card row bounding amount, tenure and rate for a membership tier"""
    __tablename__ = "member_tiers"
    __mapper_args__ = {"eager_defaults": True}

    id = Column(Integer, primary_key=True, index=True)
    code = Column(String(20), unique=True, index=True, nullable=False)
    name = Column(String(100), nullable=False)

    min_amount = Column(Numeric(15, 2), nullable=False)
    max_amount = Column(Numeric(15, 2), nullable=False)
    max_tenure = Column(Integer, nullable=False)
    tenure_unit = Column(SQLEnum(TenureUnit), default=TenureUnit.MONTH, nullable=False)
    interest_rate = Column(Numeric(12, 8), nullable=False)  # Annual for month products, daily for day products

    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    def __repr__(self):
        return f"<MembershipTier(code={self.code}, rate={self.interest_rate}, unit={self.tenure_unit})>"


class LoanApplication(Base):
    """A borrower's request for credit and its lifecycle state"""
    __tablename__ = "loan_applications"
    __mapper_args__ = {"eager_defaults": True}

    id = Column(Integer, primary_key=True, index=True)
    reference = Column(String(20), unique=True, index=True, nullable=False)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)

    # Requested terms
    tier_code = Column(String(20), nullable=False)
    principal = Column(Numeric(15, 2), nullable=False)
    tenure_units = Column(Integer, nullable=False)
    tenure_unit = Column(SQLEnum(TenureUnit), nullable=False)
    quoted_rate = Column(Numeric(12, 8), nullable=False)  # Indicative, the loan locks its own at approval
    purpose = Column(String(255), nullable=False)

    # Applicant snapshot
    employment_type = Column(String(50), nullable=True)
    company_name = Column(String(200), nullable=True)
    monthly_income = Column(Numeric(15, 2), nullable=True)

    # Lifecycle
    status = Column(SQLEnum(ApplicationStatus), default=ApplicationStatus.SUBMITTED, nullable=False, index=True)
    applied_at = Column(DateTime(timezone=True), nullable=False)
    reviewed_at = Column(DateTime(timezone=True), nullable=True)
    decision_at = Column(DateTime(timezone=True), nullable=True)
    decision_reason = Column(Text, nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    cancellation_reason = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    # Relationships
    loan = relationship("Loan", back_populates="application", uselist=False, lazy="selectin")

    # At most one non-terminal application per user
    __table_args__ = (
        Index(
            "uq_loan_applications_user_in_flight",
            "user_id",
            unique=True,
            postgresql_where=status.in_(sorted(IN_FLIGHT_STATUSES)),
            sqlite_where=status.in_(sorted(IN_FLIGHT_STATUSES)),
        ),
    )

    def __repr__(self):
        return f"<LoanApplication(reference={self.reference}, status={self.status})>"


class Loan(Base):
    """Loan materialized from an approved application"""
    __tablename__ = "loans"
    __mapper_args__ = {"eager_defaults": True}

    id = Column(Integer, primary_key=True, index=True)
    application_id = Column(Integer, ForeignKey("loan_applications.id"), nullable=False, unique=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)

    # Terms locked at approval
    principal = Column(Numeric(15, 2), nullable=False)
    interest_rate = Column(Numeric(12, 8), nullable=False)
    tenure_units = Column(Integer, nullable=False)
    tenure_unit = Column(SQLEnum(TenureUnit), nullable=False)
    emi = Column(Numeric(15, 2), nullable=False)

    # Charges
    processing_fee = Column(Numeric(15, 2), default=0, nullable=False)
    insurance_amount = Column(Numeric(15, 2), default=0, nullable=False)

    # Servicing
    status = Column(SQLEnum(LoanStatus), default=LoanStatus.APPROVED, nullable=False, index=True)
    disbursal_date = Column(Date, nullable=True)
    paid_installments = Column(Integer, default=0, nullable=False)
    preclosed = Column(Boolean, default=False, nullable=False)

    approved_at = Column(DateTime(timezone=True), nullable=False)
    disbursed_at = Column(DateTime(timezone=True), nullable=True)
    activated_at = Column(DateTime(timezone=True), nullable=True)
    closed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    # Relationships
    application = relationship("LoanApplication", back_populates="loan")
    transactions = relationship("Transaction", back_populates="loan", lazy="selectin")

    def __repr__(self):
        return f"<Loan(id={self.id}, principal={self.principal}, status={self.status})>"
