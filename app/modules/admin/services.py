from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple
import logging

from app.core.exceptions import NotFoundError
from app.modules.admin.models import AuditLog
from app.modules.dashboard.aggregator import PAYABLE_LOAN_STATUSES, loan_outstanding
from app.modules.loans.calculator import ZERO, to_money
from app.modules.loans.models import ApplicationStatus, Loan, LoanApplication, LoanStatus, MembershipTier
from app.modules.transactions.models import Transaction, TransactionKind, TransactionStatus
from app.modules.users.models import User, KYCStatus
from app.modules.users.kyc_models import Document, DocumentStatus
from app.modules.admin.schemas import DashboardStats, PendingApprovals

logger = logging.getLogger(__name__)

DISBURSED_LOAN_STATUSES = [
    LoanStatus.DISBURSED, LoanStatus.ACTIVE, LoanStatus.COMPLETED, LoanStatus.DEFAULTED
]


class AdminService:
    """Back-office queries, customer management and the audit trail"""

    def __init__(self, db: AsyncSession):
        self.db = db

    # ============================================================
    # Audit Logging
    # ============================================================

    async def log_action(
        self,
        admin_id: int,
        action: str,
        resource_type: str,
        resource_reference: Optional[str] = None,
        description: Optional[str] = None,
        old_values: Optional[Dict[str, Any]] = None,
        new_values: Optional[Dict[str, Any]] = None,
        success: bool = True,
        error_message: Optional[str] = None,
        ip_address: Optional[str] = None,
    ) -> AuditLog:
        """Log an admin action"""
        log = AuditLog(
            admin_id=admin_id,
            action=action,
            resource_type=resource_type,
            resource_reference=resource_reference,
            description=description,
            old_values=old_values,
            new_values=new_values,
            success=success,
            error_message=error_message,
            ip_address=ip_address,
        )
        self.db.add(log)
        await self.db.commit()
        logger.info(
            f"Admin {admin_id} {action} {resource_type} {resource_reference or ''}"
            f" ({'ok' if success else 'failed'})"
        )
        return log

    async def get_audit_logs(
        self,
        admin_id: Optional[int] = None,
        action: Optional[str] = None,
        resource_type: Optional[str] = None,
        resource_reference: Optional[str] = None,
        success: Optional[bool] = None,
        page: int = 1,
        page_size: int = 50
    ) -> Tuple[List[AuditLog], int]:
        """Get audit logs with filtering"""
        query = select(AuditLog)
        if admin_id is not None:
            query = query.where(AuditLog.admin_id == admin_id)
        if action:
            query = query.where(AuditLog.action == action)
        if resource_type:
            query = query.where(AuditLog.resource_type == resource_type)
        if resource_reference:
            query = query.where(AuditLog.resource_reference == resource_reference)
        if success is not None:
            query = query.where(AuditLog.success == success)

        total_result = await self.db.execute(select(func.count()).select_from(query.subquery()))
        total = total_result.scalar()

        query = query.order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
        query = query.offset((page - 1) * page_size).limit(page_size)
        result = await self.db.execute(query)
        return list(result.scalars().all()), total

    # ============================================================
    # Dashboard Statistics
    # ============================================================

    async def get_dashboard_stats(self) -> DashboardStats:
        """Portfolio-wide counts and money totals"""
        now = datetime.now(timezone.utc)
        today_start = now.replace(hour=0, minute=0, second=0, microsecond=0)

        total_users = await self.db.execute(select(func.count(User.id)))
        active_users = await self.db.execute(select(func.count(User.id)).where(User.is_active == True))
        kyc_completed = await self.db.execute(
            select(func.count(User.id)).where(User.kyc_status == KYCStatus.COMPLETED)
        )
        new_users_today = await self.db.execute(
            select(func.count(User.id)).where(User.created_at >= today_start)
        )

        status_result = await self.db.execute(
            select(LoanApplication.status, func.count(LoanApplication.id)).group_by(LoanApplication.status)
        )
        by_status = {ApplicationStatus(s).value: c for s, c in status_result.all()}

        disbursed = await self.db.execute(
            select(func.sum(Loan.principal)).where(Loan.status.in_(DISBURSED_LOAN_STATUSES))
        )

        # Outstanding is recomputed per loan, never stored
        payable = await self.db.execute(select(Loan).where(Loan.status.in_(sorted(PAYABLE_LOAN_STATUSES))))
        total_outstanding = sum((loan_outstanding(loan) for loan in payable.scalars().all()), ZERO)

        repaid = await self.db.execute(
            select(func.sum(Transaction.amount)).where(
                Transaction.kind == TransactionKind.REPAYMENT,
                Transaction.status == TransactionStatus.COMPLETED,
            )
        )

        return DashboardStats(
            total_users=total_users.scalar() or 0,
            active_users=active_users.scalar() or 0,
            kyc_completed=kyc_completed.scalar() or 0,
            new_users_today=new_users_today.scalar() or 0,
            applications_by_status=by_status,
            pending_reviews=by_status.get(ApplicationStatus.SUBMITTED.value, 0)
            + by_status.get(ApplicationStatus.UNDER_REVIEW.value, 0),
            approved_awaiting_disbursal=by_status.get(ApplicationStatus.APPROVED.value, 0),
            active_loans=by_status.get(ApplicationStatus.ACTIVE.value, 0),
            total_disbursed=to_money(disbursed.scalar() or ZERO),
            total_outstanding=to_money(total_outstanding),
            total_repaid=to_money(abs(repaid.scalar() or ZERO)),
        )

    async def get_pending_approvals(self) -> PendingApprovals:
        """Work waiting on a back-office decision"""
        documents = await self.db.execute(
            select(func.count(Document.id)).where(Document.status == DocumentStatus.PENDING)
        )
        loans = await self.db.execute(
            select(func.count(LoanApplication.id)).where(
                LoanApplication.status.in_([ApplicationStatus.SUBMITTED, ApplicationStatus.UNDER_REVIEW])
            )
        )
        transactions = await self.db.execute(
            select(func.count(Transaction.id)).where(Transaction.status == TransactionStatus.PENDING)
        )
        pending_documents = documents.scalar() or 0
        pending_loans = loans.scalar() or 0
        pending_transactions = transactions.scalar() or 0
        return PendingApprovals(
            pending_documents=pending_documents,
            pending_loans=pending_loans,
            pending_transactions=pending_transactions,
            total=pending_documents + pending_loans + pending_transactions,
        )

    # ============================================================
    # Loan applications
    # ============================================================

    async def list_applications(
        self,
        status: Optional[ApplicationStatus] = None,
        user_id: Optional[int] = None,
        min_amount: Optional[Decimal] = None,
        max_amount: Optional[Decimal] = None,
        page: int = 1,
        page_size: int = 20
    ) -> Tuple[List[LoanApplication], int]:
        query = select(LoanApplication)
        if status:
            query = query.where(LoanApplication.status == status)
        if user_id:
            query = query.where(LoanApplication.user_id == user_id)
        if min_amount:
            query = query.where(LoanApplication.principal >= min_amount)
        if max_amount:
            query = query.where(LoanApplication.principal <= max_amount)

        count_result = await self.db.execute(select(func.count()).select_from(query.subquery()))
        total = count_result.scalar()

        # Oldest first so the review queue is worked in arrival order
        query = query.order_by(LoanApplication.applied_at.asc(), LoanApplication.id.asc())
        query = query.offset((page - 1) * page_size).limit(page_size)
        result = await self.db.execute(query)
        return list(result.scalars().all()), total

    # ============================================================
    # KYC documents
    # ============================================================

    async def list_documents(
        self,
        status: Optional[DocumentStatus] = DocumentStatus.PENDING,
        user_id: Optional[int] = None,
    ) -> List[Document]:
        query = select(Document)
        if status:
            query = query.where(Document.status == status)
        if user_id:
            query = query.where(Document.user_id == user_id)
        result = await self.db.execute(query.order_by(Document.created_at.asc(), Document.id.asc()))
        return list(result.scalars().all())

    # ============================================================
    # User Management
    # ============================================================

    async def get_users(
        self,
        search: Optional[str] = None,
        kyc_status: Optional[KYCStatus] = None,
        is_active: Optional[bool] = None,
        page: int = 1,
        page_size: int = 20
    ) -> Tuple[List[User], int]:
        """Get users with filtering"""
        query = select(User)
        if search:
            pattern = f"%{search}%"
            query = query.where(
                User.mobile_number.ilike(pattern)
                | User.email.ilike(pattern)
                | User.full_name.ilike(pattern)
            )
        if kyc_status:
            query = query.where(User.kyc_status == kyc_status)
        if is_active is not None:
            query = query.where(User.is_active == is_active)

        count_result = await self.db.execute(select(func.count()).select_from(query.subquery()))
        total = count_result.scalar()

        query = query.order_by(User.created_at.desc(), User.id.desc())
        query = query.offset((page - 1) * page_size).limit(page_size)
        result = await self.db.execute(query)
        return list(result.scalars().all()), total

    async def get_user(self, user_id: int) -> User:
        user = await self.db.get(User, user_id)
        if user is None:
            raise NotFoundError(f"User {user_id} not found")
        return user

    async def set_member_tier(self, user_id: int, tier_code: str) -> User:
        """Move a borrower to another membership tier"""
        user = await self.get_user(user_id)
        result = await self.db.execute(
            select(MembershipTier).where(MembershipTier.code == tier_code, MembershipTier.is_active == True)
        )
        if result.scalar_one_or_none() is None:
            raise NotFoundError(f"Membership tier '{tier_code}' not found")
        user.member_tier = tier_code
        await self.db.commit()
        return user

    async def set_admin(self, user_id: int, is_admin: bool) -> User:
        user = await self.get_user(user_id)
        user.is_admin = is_admin
        await self.db.commit()
        return user

    async def suspend_user(self, user_id: int) -> User:
        user = await self.get_user(user_id)
        user.is_active = False
        await self.db.commit()
        return user

    async def reactivate_user(self, user_id: int) -> User:
        user = await self.get_user(user_id)
        user.is_active = True
        await self.db.commit()
        return user
