"""
Admin transaction endpoints.
"""
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional

from app.core.database import get_db
from app.core.dependencies import require_admin
from app.core.exceptions import LendingError
from app.modules.admin.services import AdminService
from app.modules.loans.services import LoanService
from app.modules.transactions.models import TransactionKind, TransactionStatus
from app.modules.transactions.schemas import (
    TransactionListResponse, TransactionResponse, TransactionSettleRequest
)
from app.modules.transactions.services import TransactionService
from app.modules.users.models import User

router = APIRouter(prefix="/transactions", tags=["admin-transactions"])


@router.get("", response_model=TransactionListResponse)
async def list_transactions(
    user_id: Optional[int] = None,
    loan_id: Optional[int] = None,
    kind: Optional[TransactionKind] = None,
    status: Optional[TransactionStatus] = None,
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_admin)
):
    """List transactions across all borrowers"""
    transactions, total = await TransactionService(db).list_transactions(
        user_id=user_id, kind=kind, status=status, loan_id=loan_id, page=page, page_size=page_size
    )
    return {
        "transactions": transactions,
        "total": total,
        "page": page,
        "page_size": page_size,
        "total_pages": (total + page_size - 1) // page_size
    }


@router.get("/{reference_code}", response_model=TransactionResponse)
async def get_transaction(
    reference_code: str,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_admin)
):
    return await TransactionService(db).get_by_reference(reference_code)


@router.post("/{reference_code}/settle", response_model=TransactionResponse)
async def settle_transaction(
    reference_code: str,
    body: TransactionSettleRequest,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_admin)
):
    """
    Settle a pending transaction as completed or failed.

    A completed repayment counts towards the loan's paid installments.
    """
    admin_id = admin.id
    admin_service = AdminService(db)
    try:
        txn = await LoanService(db).settle_transaction(reference_code, body.status)
    except LendingError as e:
        await admin_service.log_action(
            admin_id, "settle", "transaction", reference_code,
            new_values={"status": body.status.value},
            success=False,
            error_message=e.message,
        )
        raise

    await admin_service.log_action(
        admin_id, "settle", "transaction", reference_code,
        old_values={"status": TransactionStatus.PENDING.value},
        new_values={"status": body.status.value},
    )
    return txn
