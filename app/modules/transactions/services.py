from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func
from typing import List, Optional, Tuple

from app.core.exceptions import NotFoundError
from app.modules.transactions.models import Transaction, TransactionKind, TransactionStatus


class TransactionService:
    """Read access to the loan transaction ledger"""

    def __init__(self, db: AsyncSession):
        self.db = db

    def _filtered(
        self,
        user_id: Optional[int] = None,
        kind: Optional[TransactionKind] = None,
        status: Optional[TransactionStatus] = None,
        loan_id: Optional[int] = None,
    ):
        query = select(Transaction)
        if user_id is not None:
            query = query.where(Transaction.user_id == user_id)
        if kind is not None:
            query = query.where(Transaction.kind == kind)
        if status is not None:
            query = query.where(Transaction.status == status)
        if loan_id is not None:
            query = query.where(Transaction.loan_id == loan_id)
        return query

    async def list_transactions(
        self,
        user_id: Optional[int] = None,
        kind: Optional[TransactionKind] = None,
        status: Optional[TransactionStatus] = None,
        loan_id: Optional[int] = None,
        page: int = 1,
        page_size: int = 20,
    ) -> Tuple[List[Transaction], int]:
        query = self._filtered(user_id, kind, status, loan_id)

        count_result = await self.db.execute(select(func.count()).select_from(query.subquery()))
        total = count_result.scalar()

        query = query.order_by(Transaction.created_at.desc(), Transaction.id.desc())
        query = query.offset((page - 1) * page_size).limit(page_size)
        result = await self.db.execute(query)
        return result.scalars().all(), total

    async def get_by_reference(self, reference_code: str, user_id: Optional[int] = None) -> Transaction:
        query = select(Transaction).where(Transaction.reference_code == reference_code)
        if user_id is not None:
            query = query.where(Transaction.user_id == user_id)
        result = await self.db.execute(query)
        txn = result.scalar_one_or_none()
        if txn is None:
            raise NotFoundError(f"Transaction {reference_code} not found")
        return txn
