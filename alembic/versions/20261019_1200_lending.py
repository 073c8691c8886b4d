"""Lending schema: borrowers, KYC, rate card, applications, loans, transactions

Revision ID: 20261019_1200_lending
Revises:
Create Date: 2026-10-19 12:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '20261019_1200_lending'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

# SQLAlchemy persists Python enums by member name
TENURE_UNIT = sa.Enum('MONTH', 'DAY', name='tenureunit')
APPLICATION_STATUS = sa.Enum(
    'SUBMITTED', 'UNDER_REVIEW', 'APPROVED', 'DISBURSED', 'ACTIVE',
    'COMPLETED', 'REJECTED', 'CANCELLED', 'DEFAULTED', name='applicationstatus'
)
LOAN_STATUS = sa.Enum(
    'APPROVED', 'DISBURSED', 'ACTIVE', 'COMPLETED', 'CANCELLED', 'REJECTED', 'DEFAULTED', name='loanstatus'
)
TRANSACTION_KIND = sa.Enum('FEE', 'REPAYMENT', 'DISBURSAL', name='transactionkind')
TRANSACTION_STATUS = sa.Enum('PENDING', 'COMPLETED', 'FAILED', name='transactionstatus')
DOCUMENT_TYPE = sa.Enum(
    'PAN_CARD', 'AADHAAR', 'PHOTO', 'BANK_STATEMENT', 'SALARY_SLIP', 'ADDRESS_PROOF', name='documenttype'
)
DOCUMENT_STATUS = sa.Enum('PENDING', 'VERIFIED', 'REJECTED', name='documentstatus')
EMPLOYMENT_TYPE = sa.Enum('SALARIED', 'SELF_EMPLOYED', 'BUSINESS', 'OTHER', name='employmenttype')
KYC_STATUS = sa.Enum('PENDING', 'IN_PROGRESS', 'COMPLETED', name='kycstatus')

IN_FLIGHT = "status IN ('SUBMITTED', 'UNDER_REVIEW', 'APPROVED', 'DISBURSED', 'ACTIVE')"


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
    ]


def upgrade() -> None:
    # ============================================================
    # Users
    # ============================================================
    op.create_table('users',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('mobile_number', sa.String(length=15), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=True),
        # Personal Information
        sa.Column('full_name', sa.String(length=200), nullable=True),
        sa.Column('date_of_birth', sa.Date(), nullable=True),
        sa.Column('gender', sa.String(length=20), nullable=True),
        sa.Column('pan_number', sa.String(length=10), nullable=True),
        # Address
        sa.Column('address_line', sa.String(length=255), nullable=True),
        sa.Column('city', sa.String(length=100), nullable=True),
        sa.Column('state', sa.String(length=100), nullable=True),
        sa.Column('pincode', sa.String(length=10), nullable=True),
        # Employment & Income
        sa.Column('employment_type', EMPLOYMENT_TYPE, nullable=True),
        sa.Column('company_name', sa.String(length=200), nullable=True),
        sa.Column('declared_monthly_income', sa.Numeric(precision=15, scale=2), nullable=True),
        sa.Column('verified_monthly_income', sa.Numeric(precision=15, scale=2), nullable=True),
        sa.Column('existing_emis', sa.Numeric(precision=15, scale=2), nullable=False, server_default='0'),
        # Credit & Membership
        sa.Column('credit_score', sa.Integer(), nullable=True),
        sa.Column('member_tier', sa.String(length=20), nullable=False, server_default='bronze'),
        # KYC & Verification
        sa.Column('kyc_status', KYC_STATUS, nullable=False),
        sa.Column('profile_step', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('phone_verified', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('email_verified', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('identity_verified', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('bank_account_verified', sa.Boolean(), nullable=False, server_default='false'),
        # Access
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='true'),
        sa.Column('is_admin', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('last_login_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('pan_number')
    )
    op.create_index(op.f('ix_users_id'), 'users', ['id'], unique=False)
    op.create_index(op.f('ix_users_mobile_number'), 'users', ['mobile_number'], unique=True)
    op.create_index(op.f('ix_users_email'), 'users', ['email'], unique=True)

    # ============================================================
    # KYC documents and bank accounts
    # ============================================================
    op.create_table('documents',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('document_type', DOCUMENT_TYPE, nullable=False),
        sa.Column('name', sa.String(length=100), nullable=False),
        sa.Column('file_reference', sa.String(length=500), nullable=True),
        sa.Column('status', DOCUMENT_STATUS, nullable=False),
        sa.Column('remarks', sa.Text(), nullable=True),
        sa.Column('reviewed_by', sa.Integer(), nullable=True),
        sa.Column('verified_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_documents_id'), 'documents', ['id'], unique=False)
    op.create_index(op.f('ix_documents_user_id'), 'documents', ['user_id'], unique=False)

    op.create_table('bank_accounts',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('account_number', sa.String(length=20), nullable=False),
        sa.Column('ifsc_code', sa.String(length=11), nullable=False),
        sa.Column('account_holder_name', sa.String(length=200), nullable=False),
        sa.Column('bank_name', sa.String(length=100), nullable=True),
        sa.Column('account_type', sa.String(length=20), nullable=False, server_default='savings'),
        sa.Column('verified', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('verified_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_bank_accounts_id'), 'bank_accounts', ['id'], unique=False)
    op.create_index(op.f('ix_bank_accounts_user_id'), 'bank_accounts', ['user_id'], unique=True)

    op.create_table('credit_reports',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('score', sa.Integer(), nullable=False),
        sa.Column('trend', sa.String(length=20), nullable=True),
        sa.Column('factors', sa.JSON(), nullable=True),
        sa.Column('fetched_at', sa.DateTime(timezone=True), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_credit_reports_id'), 'credit_reports', ['id'], unique=False)
    op.create_index(op.f('ix_credit_reports_user_id'), 'credit_reports', ['user_id'], unique=True)

    # ============================================================
    # Rate card
    # ============================================================
    op.create_table('member_tiers',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('code', sa.String(length=20), nullable=False),
        sa.Column('name', sa.String(length=100), nullable=False),
        sa.Column('min_amount', sa.Numeric(precision=15, scale=2), nullable=False),
        sa.Column('max_amount', sa.Numeric(precision=15, scale=2), nullable=False),
        sa.Column('max_tenure', sa.Integer(), nullable=False),
        sa.Column('tenure_unit', TENURE_UNIT, nullable=False),
        sa.Column('interest_rate', sa.Numeric(precision=12, scale=8), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='true'),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_member_tiers_id'), 'member_tiers', ['id'], unique=False)
    op.create_index(op.f('ix_member_tiers_code'), 'member_tiers', ['code'], unique=True)

    # ============================================================
    # Loan applications
    # ============================================================
    op.create_table('loan_applications',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('reference', sa.String(length=20), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        # Requested terms
        sa.Column('tier_code', sa.String(length=20), nullable=False),
        sa.Column('principal', sa.Numeric(precision=15, scale=2), nullable=False),
        sa.Column('tenure_units', sa.Integer(), nullable=False),
        sa.Column('tenure_unit', TENURE_UNIT, nullable=False),
        sa.Column('quoted_rate', sa.Numeric(precision=12, scale=8), nullable=False),
        sa.Column('purpose', sa.String(length=255), nullable=False),
        # Applicant snapshot
        sa.Column('employment_type', sa.String(length=50), nullable=True),
        sa.Column('company_name', sa.String(length=200), nullable=True),
        sa.Column('monthly_income', sa.Numeric(precision=15, scale=2), nullable=True),
        # Lifecycle
        sa.Column('status', APPLICATION_STATUS, nullable=False),
        sa.Column('applied_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('reviewed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('decision_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('decision_reason', sa.Text(), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancellation_reason', sa.Text(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_loan_applications_id'), 'loan_applications', ['id'], unique=False)
    op.create_index(op.f('ix_loan_applications_reference'), 'loan_applications', ['reference'], unique=True)
    op.create_index(op.f('ix_loan_applications_user_id'), 'loan_applications', ['user_id'], unique=False)
    op.create_index(op.f('ix_loan_applications_status'), 'loan_applications', ['status'], unique=False)
    # At most one non-terminal application per user
    op.create_index(
        'uq_loan_applications_user_in_flight', 'loan_applications', ['user_id'],
        unique=True, postgresql_where=sa.text(IN_FLIGHT)
    )

    # ============================================================
    # Loans
    # ============================================================
    op.create_table('loans',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('application_id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        # Terms locked at approval
        sa.Column('principal', sa.Numeric(precision=15, scale=2), nullable=False),
        sa.Column('interest_rate', sa.Numeric(precision=12, scale=8), nullable=False),
        sa.Column('tenure_units', sa.Integer(), nullable=False),
        sa.Column('tenure_unit', TENURE_UNIT, nullable=False),
        sa.Column('emi', sa.Numeric(precision=15, scale=2), nullable=False),
        # Charges
        sa.Column('processing_fee', sa.Numeric(precision=15, scale=2), nullable=False, server_default='0'),
        sa.Column('insurance_amount', sa.Numeric(precision=15, scale=2), nullable=False, server_default='0'),
        # Servicing
        sa.Column('status', LOAN_STATUS, nullable=False),
        sa.Column('disbursal_date', sa.Date(), nullable=True),
        sa.Column('paid_installments', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('preclosed', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('approved_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('disbursed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('activated_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('closed_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['application_id'], ['loan_applications.id']),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_loans_id'), 'loans', ['id'], unique=False)
    op.create_index(op.f('ix_loans_application_id'), 'loans', ['application_id'], unique=True)
    op.create_index(op.f('ix_loans_user_id'), 'loans', ['user_id'], unique=False)
    op.create_index(op.f('ix_loans_status'), 'loans', ['status'], unique=False)

    # ============================================================
    # Transactions
    # ============================================================
    op.create_table('transactions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('reference_code', sa.String(length=30), nullable=False),
        sa.Column('loan_id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('kind', TRANSACTION_KIND, nullable=False),
        sa.Column('amount', sa.Numeric(precision=15, scale=2), nullable=False),
        sa.Column('currency', sa.String(length=3), nullable=False, server_default='INR'),
        sa.Column('status', TRANSACTION_STATUS, nullable=False),
        sa.Column('description', sa.String(length=255), nullable=True),
        sa.Column('installment_number', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('settled_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['loan_id'], ['loans.id']),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_transactions_id'), 'transactions', ['id'], unique=False)
    op.create_index(op.f('ix_transactions_reference_code'), 'transactions', ['reference_code'], unique=True)
    op.create_index(op.f('ix_transactions_loan_id'), 'transactions', ['loan_id'], unique=False)
    op.create_index(op.f('ix_transactions_user_id'), 'transactions', ['user_id'], unique=False)

    # ============================================================
    # Audit log
    # ============================================================
    op.create_table('audit_logs',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('admin_id', sa.Integer(), nullable=True),
        sa.Column('ip_address', sa.String(length=45), nullable=True),
        sa.Column('action', sa.String(length=100), nullable=False),
        sa.Column('resource_type', sa.String(length=50), nullable=False),
        sa.Column('resource_reference', sa.String(length=50), nullable=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('old_values', sa.JSON(), nullable=True),
        sa.Column('new_values', sa.JSON(), nullable=True),
        sa.Column('success', sa.Boolean(), nullable=False, server_default='true'),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.ForeignKeyConstraint(['admin_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_audit_logs_id'), 'audit_logs', ['id'], unique=False)
    op.create_index(op.f('ix_audit_logs_admin_id'), 'audit_logs', ['admin_id'], unique=False)
    op.create_index(op.f('ix_audit_logs_action'), 'audit_logs', ['action'], unique=False)
    op.create_index(op.f('ix_audit_logs_resource_type'), 'audit_logs', ['resource_type'], unique=False)
    op.create_index(op.f('ix_audit_logs_resource_reference'), 'audit_logs', ['resource_reference'], unique=False)


def downgrade() -> None:
    op.drop_table('audit_logs')
    op.drop_table('transactions')
    op.drop_table('loans')
    op.drop_index('uq_loan_applications_user_in_flight', table_name='loan_applications')
    op.drop_table('loan_applications')
    op.drop_table('member_tiers')
    op.drop_table('credit_reports')
    op.drop_table('bank_accounts')
    op.drop_table('documents')
    op.drop_table('users')

    bind = op.get_bind()
    for enum_type in (
        TRANSACTION_STATUS, TRANSACTION_KIND, LOAN_STATUS, APPLICATION_STATUS, TENURE_UNIT,
        DOCUMENT_STATUS, DOCUMENT_TYPE, KYC_STATUS, EMPLOYMENT_TYPE,
    ):
        enum_type.drop(bind, checkfirst=True)
