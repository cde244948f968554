"""API routes package."""

from stash.routes.file_routes import router as file_router
from stash.routes.folder_routes import router as folder_router
from stash.routes.settings_routes import router as settings_router
from stash.routes.transfer_routes import router as transfer_router

__all__ = ["file_router", "folder_router", "settings_router", "transfer_router"]
