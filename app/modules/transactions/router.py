from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional

from app.core.database import get_db
from app.core.dependencies import get_current_active_user
from app.modules.users.models import User
from app.modules.transactions.models import TransactionKind, TransactionStatus
from app.modules.transactions.schemas import TransactionListResponse, TransactionResponse
from app.modules.transactions.services import TransactionService

router = APIRouter(prefix="/api/v1/transactions", tags=["transactions"])


@router.get("", response_model=TransactionListResponse)
async def list_my_transactions(
    kind: Optional[TransactionKind] = None,
    status: Optional[TransactionStatus] = None,
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    """Fees, disbursals and repayments on the borrower's loans"""
    service = TransactionService(db)
    transactions, total = await service.list_transactions(
        user_id=current_user.id, kind=kind, status=status, page=page, page_size=page_size
    )
    return {
        "transactions": transactions,
        "total": total,
        "page": page,
        "page_size": page_size,
        "total_pages": (total + page_size - 1) // page_size,
    }


@router.get("/{reference_code}", response_model=TransactionResponse)
async def get_transaction(
    reference_code: str,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    service = TransactionService(db)
    return await service.get_by_reference(reference_code, current_user.id)
