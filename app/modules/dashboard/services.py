from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from datetime import date
from decimal import Decimal
from typing import List, Optional

from app.core.config import settings
from app.modules.dashboard.aggregator import (
    CalendarEntry, DashboardSummary, Portfolio, build_portfolio, payment_calendar, summarize
)
from app.modules.loans.calculator import ZERO, to_money
from app.modules.loans.models import LoanApplication
from app.modules.transactions.models import Transaction
from app.modules.users.models import User


class DashboardService:
    """Loads a borrower's records and hands them to the aggregator"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _applications(self, user_id: int) -> List[LoanApplication]:
        result = await self.db.execute(
            select(LoanApplication)
            .where(LoanApplication.user_id == user_id)
            .order_by(LoanApplication.applied_at.desc(), LoanApplication.id.desc())
        )
        return result.scalars().all()

    async def _transactions(self, user_id: int) -> List[Transaction]:
        result = await self.db.execute(select(Transaction).where(Transaction.user_id == user_id))
        return result.scalars().all()

    async def get_summary(self, user: User, today: Optional[date] = None) -> DashboardSummary:
        return summarize(
            await self._applications(user.id),
            await self._transactions(user.id),
            today=today or date.today(),
            kyc_complete=user.kyc_complete,
            documents=user.documents,
            reminder_window_days=settings.EMI_REMINDER_WINDOW_DAYS,
        )

    async def get_portfolio(self, user: User) -> Portfolio:
        return build_portfolio(await self._applications(user.id))

    async def get_payment_calendar(self, user: User, year: int, month: int) -> List[CalendarEntry]:
        return payment_calendar(await self._applications(user.id), year, month)

    @staticmethod
    def total_due(entries: List[CalendarEntry]) -> Decimal:
        return to_money(sum((e.amount for e in entries if e.kind == "due"), ZERO))
