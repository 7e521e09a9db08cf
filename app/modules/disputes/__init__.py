# Disputes module
from app.modules.disputes.models import (
    Dispute, DisputeStatus, DisputeOutcome, DisputeMessage, MessageSenderType
)

__all__ = ["Dispute", "DisputeStatus", "DisputeOutcome", "DisputeMessage", "MessageSenderType"]
