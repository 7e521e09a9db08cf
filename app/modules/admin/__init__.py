# Admin module
from app.modules.admin.router import router

__all__ = ["router"]
