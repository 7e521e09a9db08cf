# Audit module
from app.modules.audit.models import AuditLog, AuditActorType
from app.modules.audit.services import AuditService

__all__ = ["AuditLog", "AuditActorType", "AuditService"]
