from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession
from datetime import date
from typing import Optional

from app.core.database import get_db
from app.core.dependencies import get_current_active_user
from app.modules.users.models import User
from app.modules.dashboard import schemas
from app.modules.dashboard.services import DashboardService

router = APIRouter(prefix="/api/v1/dashboard", tags=["dashboard"])


@router.get("", response_model=schemas.DashboardResponse)
async def get_dashboard(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    """
    Borrower home screen.

    - Application counts by status and outstanding balance
    - Next EMI, pending tasks and quick actions
    - Five most recent transactions
    """
    summary = await DashboardService(db).get_summary(current_user)
    return {
        "full_name": current_user.full_name,
        "member_tier": current_user.member_tier,
        "kyc_status": current_user.kyc_status.value,
        "counts_by_status": summary.counts_by_status,
        "total_outstanding": summary.total_outstanding,
        "payable_loans": summary.payable_loans,
        "total_repaid": summary.total_repaid,
        "next_emi_due_date": summary.next_emi_due_date,
        "next_emi_amount": summary.next_emi_amount,
        "pending_tasks": summary.pending_tasks,
        "quick_actions": summary.quick_actions,
        "recent_transactions": summary.recent_transactions,
    }


@router.get("/portfolio", response_model=schemas.PortfolioResponse)
async def get_portfolio(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    """Repayment progress of every disbursed loan"""
    return await DashboardService(db).get_portfolio(current_user)


@router.get("/payment-calendar", response_model=schemas.PaymentCalendarResponse)
async def get_payment_calendar(
    year: Optional[int] = Query(None, ge=2000, le=2100),
    month: Optional[int] = Query(None, ge=1, le=12),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    """Installments due and repayments made in a month, defaulting to the current one"""
    today = date.today()
    year = year or today.year
    month = month or today.month

    service = DashboardService(db)
    entries = await service.get_payment_calendar(current_user, year, month)
    return {
        "year": year,
        "month": month,
        "entries": entries,
        "total_due": service.total_due(entries),
    }
