from sqlalchemy import Column, Integer, String, Boolean, DateTime, Text, ForeignKey, Enum as SQLEnum
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from app.core.database import Base
import enum


class DocumentType(str, enum.Enum):
    """KYC document type enumeration"""
    PAN_CARD = "pan_card"
    AADHAAR = "aadhaar"
    PHOTO = "photo"
    BANK_STATEMENT = "bank_statement"
    SALARY_SLIP = "salary_slip"
    ADDRESS_PROOF = "address_proof"


class DocumentStatus(str, enum.Enum):
    """KYC document verification status"""
    PENDING = "pending"
    VERIFIED = "verified"
    REJECTED = "rejected"


class Document(Base):
    """KYC document registered by a borrower for review"""
    __tablename__ = "documents"
    __mapper_args__ = {"eager_defaults": True}

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)

    document_type = Column(SQLEnum(DocumentType), nullable=False)
    name = Column(String(100), nullable=False)
    file_reference = Column(String(500), nullable=True)  # Storage key, upload handled elsewhere

    # Verification Status
    status = Column(SQLEnum(DocumentStatus), default=DocumentStatus.PENDING, nullable=False)
    remarks = Column(Text, nullable=True)
    reviewed_by = Column(Integer, nullable=True)  # Admin user ID
    verified_at = Column(DateTime(timezone=True), nullable=True)

    # Timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    # Relationships
    user = relationship("User", back_populates="documents")

    def __repr__(self):
        return f"<Document(id={self.id}, user_id={self.user_id}, status={self.status})>"


class BankAccount(Base):
    """Disbursal / repayment bank account of a borrower"""
    __tablename__ = "bank_accounts"
    __mapper_args__ = {"eager_defaults": True}

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, unique=True, index=True)

    account_number = Column(String(20), nullable=False)
    ifsc_code = Column(String(11), nullable=False)
    account_holder_name = Column(String(200), nullable=False)
    bank_name = Column(String(100), nullable=True)
    account_type = Column(String(20), default="savings", nullable=False)

    verified = Column(Boolean, default=False, nullable=False)
    verified_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    user = relationship("User", back_populates="bank_account")

    def __repr__(self):
        return f"<BankAccount(id={self.id}, user_id={self.user_id}, verified={self.verified})>"
