from sqlalchemy import Column, Integer, String, Numeric, ForeignKey, DateTime, Enum as SQLEnum
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from app.core.database import Base
import enum


class TransactionKind(str, enum.Enum):
    """What a loan transaction moves money for"""
    FEE = "fee"
    REPAYMENT = "repayment"
    DISBURSAL = "disbursal"


class TransactionStatus(str, enum.Enum):
    """Settlement status of a transaction"""
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


# Status is the only mutable field of a transaction
STATUS_TRANSITIONS = {
    TransactionStatus.PENDING: frozenset({TransactionStatus.COMPLETED, TransactionStatus.FAILED}),
    TransactionStatus.COMPLETED: frozenset(),
    TransactionStatus.FAILED: frozenset(),
}


class Transaction(Base):
    """Money movement on a loan, signed from the borrower's point of view.

    Disbursals are positive (credited to the borrower); fees and repayments
    are negative (debited from the borrower).
    """
    __tablename__ = "transactions"

    id = Column(Integer, primary_key=True, index=True)
    reference_code = Column(String(30), unique=True, index=True, nullable=False)
    loan_id = Column(Integer, ForeignKey("loans.id"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)

    kind = Column(SQLEnum(TransactionKind), nullable=False)
    amount = Column(Numeric(15, 2), nullable=False)
    currency = Column(String(3), default="INR", nullable=False)
    status = Column(SQLEnum(TransactionStatus), default=TransactionStatus.PENDING, nullable=False)
    description = Column(String(255), nullable=True)
    installment_number = Column(Integer, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False)
    settled_at = Column(DateTime(timezone=True), nullable=True)

    loan = relationship("Loan", back_populates="transactions")

    def __repr__(self):
        return f"<Transaction(reference={self.reference_code}, kind={self.kind}, amount={self.amount})>"
