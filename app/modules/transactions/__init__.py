# Transactions module
from app.modules.transactions.models import (
    Transaction, TransactionKind, TransactionStatus, STATUS_TRANSITIONS
)

__all__ = ["Transaction", "TransactionKind", "TransactionStatus", "STATUS_TRANSITIONS"]
