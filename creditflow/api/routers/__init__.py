"""Credit pipeline API routers."""

from .admin import router as admin_router
from .applications import router as applications_router

__all__ = ["admin_router", "applications_router"]
