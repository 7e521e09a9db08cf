"""
Admin module sub-routers organized by domain.
"""
from fastapi import APIRouter, Depends

from app.core.dependencies import require_staff
from app.modules.admin.routers.transactions import router as transactions_router
from app.modules.admin.routers.disputes import router as disputes_router
from app.modules.admin.routers.audit import router as audit_router

# Main admin router; every endpoint is staff-only
router = APIRouter(prefix="/admin", tags=["admin"], dependencies=[Depends(require_staff)])

router.include_router(transactions_router)
router.include_router(disputes_router)
router.include_router(audit_router)
