"""API endpoints package for the storefront."""

from storefront.app.api.contact import router as contact_router
from storefront.app.api.csrf import router as csrf_router
from storefront.app.api.uploads import router as uploads_router

__all__ = [
    "contact_router",
    "csrf_router",
    "uploads_router",
]
