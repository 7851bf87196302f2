from .auth import router as auth_router
from .sheets import router as sheets_router

__all__ = ["auth_router", "sheets_router"]
