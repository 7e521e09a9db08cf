# Transactions module
from app.modules.transactions.models import (
    Transaction, EscrowMilestone, TransactionStatus, TransactionAction, ActorRole
)
from app.modules.transactions.services import TransactionService

__all__ = [
    "Transaction", "EscrowMilestone", "TransactionStatus", "TransactionAction", "ActorRole",
    "TransactionService"
]
