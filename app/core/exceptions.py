"""
Domain errors raised by the escrow services.

Every error is scoped to a single request and carries the HTTP status it is
surfaced with; the handler in main.py renders it as ``{"error": message, ...}``.
"""
from typing import Any, Dict, Optional
from fastapi import status


class EscrowError(Exception):
    status_code: int = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str, payload: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.payload = payload or {}

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.message, **self.payload}


class NotFound(EscrowError):
    status_code = status.HTTP_404_NOT_FOUND


class PermissionDenied(EscrowError):
    status_code = status.HTTP_403_FORBIDDEN


class InvalidRequest(EscrowError):
    status_code = status.HTTP_400_BAD_REQUEST


class IllegalTransition(EscrowError):
    """Current status does not permit the requested transition"""
    status_code = status.HTTP_409_CONFLICT

    def __init__(self, message: str, current_status: str):
        super().__init__(message, {"current_status": current_status})
        self.current_status = current_status


class InvalidState(EscrowError):
    """Operation is not available in the transaction's current status"""
    status_code = status.HTTP_409_CONFLICT

    def __init__(self, message: str, current_status: Optional[str] = None):
        payload = {"current_status": current_status} if current_status else None
        super().__init__(message, payload)
        self.current_status = current_status


class AlreadyApproved(EscrowError):
    status_code = status.HTTP_409_CONFLICT


class ConcurrentModification(EscrowError):
    """Another request changed the same row first"""
    status_code = status.HTTP_409_CONFLICT


class ExternalServiceFailure(EscrowError):
    status_code = status.HTTP_502_BAD_GATEWAY

    def __init__(self, message: str, service: str = "payment_gateway"):
        super().__init__(message, {"service": service, "retryable": True})
        self.service = service
