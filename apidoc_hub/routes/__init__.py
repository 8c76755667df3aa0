# apidoc_hub/routes/__init__.py
"""API routes for the API documentation hub."""
from .specs import apis_router, specs_router

__all__ = [
    "apis_router",
    "specs_router",
]
