from pydantic import BaseModel
from datetime import datetime
from decimal import Decimal
from typing import Optional, List

from app.modules.transactions.models import TransactionKind, TransactionStatus


class TransactionResponse(BaseModel):
    id: int
    reference_code: str
    loan_id: int
    kind: TransactionKind
    amount: Decimal
    currency: str
    status: TransactionStatus
    description: Optional[str] = None
    installment_number: Optional[int] = None
    created_at: datetime
    settled_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class TransactionListResponse(BaseModel):
    transactions: List[TransactionResponse]
    total: int
    page: int
    page_size: int
    total_pages: int


class TransactionSettleRequest(BaseModel):
    """Settle a pending transaction"""
    status: TransactionStatus
