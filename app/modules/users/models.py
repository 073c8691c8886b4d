from sqlalchemy import Column, Integer, String, Boolean, DateTime, Date, Numeric, Enum as SQLEnum
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from app.core.database import Base
import enum


class EmploymentType(str, enum.Enum):
    """Employment type enumeration"""
    SALARIED = "salaried"
    SELF_EMPLOYED = "self_employed"
    BUSINESS = "business"
    OTHER = "other"


class KYCStatus(str, enum.Enum):
    """KYC verification status"""
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class ProfileStep(int, enum.Enum):
    """Multi-step profile completion progress"""
    MOBILE_VERIFIED = 1
    PERSONAL_DETAILS = 2
    EMPLOYMENT_DETAILS = 3
    COMPLETED = 4


class User(Base):
    """Borrower with onboarding, KYC and verification flags"""
    __tablename__ = "users"
    __mapper_args__ = {"eager_defaults": True}

    # Primary Key
    id = Column(Integer, primary_key=True, index=True)

    # Authentication
    mobile_number = Column(String(15), unique=True, index=True, nullable=False)
    email = Column(String(255), unique=True, index=True, nullable=True)

    # Personal Information
    full_name = Column(String(200), nullable=True)
    date_of_birth = Column(Date, nullable=True)
    gender = Column(String(20), nullable=True)
    pan_number = Column(String(10), unique=True, nullable=True)

    # Address Information
    address_line = Column(String(255), nullable=True)
    city = Column(String(100), nullable=True)
    state = Column(String(100), nullable=True)
    pincode = Column(String(10), nullable=True)

    # Employment & Income
    employment_type = Column(SQLEnum(EmploymentType), nullable=True)
    company_name = Column(String(200), nullable=True)
    declared_monthly_income = Column(Numeric(15, 2), nullable=True)
    verified_monthly_income = Column(Numeric(15, 2), nullable=True)
    existing_emis = Column(Numeric(15, 2), default=0, nullable=False)

    # Credit & Membership
    credit_score = Column(Integer, nullable=True)
    member_tier = Column(String(20), default="bronze", nullable=False)

    # KYC & Verification
    kyc_status = Column(SQLEnum(KYCStatus), default=KYCStatus.PENDING, nullable=False)
    profile_step = Column(Integer, default=ProfileStep.MOBILE_VERIFIED.value, nullable=False)
    phone_verified = Column(Boolean, default=False, nullable=False)
    email_verified = Column(Boolean, default=False, nullable=False)
    identity_verified = Column(Boolean, default=False, nullable=False)
    bank_account_verified = Column(Boolean, default=False, nullable=False)

    # Access
    is_active = Column(Boolean, default=True, nullable=False)
    is_admin = Column(Boolean, default=False, nullable=False)
    last_login_at = Column(DateTime(timezone=True), nullable=True)

    # Timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    # Relationships
    documents = relationship("Document", back_populates="user", lazy="selectin")
    bank_account = relationship("BankAccount", back_populates="user", uselist=False, lazy="selectin")

    @property
    def kyc_complete(self) -> bool:
        return self.kyc_status == KYCStatus.COMPLETED

    def __repr__(self):
        return f"<User(id={self.id}, mobile={self.mobile_number}, kyc={self.kyc_status})>"
