"""Routes package initializer."""

from .sync_status_routes import register_sync_status_routes

__all__ = [
    "register_sync_status_routes",
]
