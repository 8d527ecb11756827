"""Routes package initializer."""

from .bling_auth_routes import register_bling_auth_routes
from .bling_routes import register_bling_routes

__all__ = [
    "register_bling_auth_routes",
    "register_bling_routes",
]
