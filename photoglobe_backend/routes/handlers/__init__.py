"""
Route handlers.
"""
from .health import register_health_routes
from .indexing import register_indexing_routes

__all__ = [
    "register_health_routes",
    "register_indexing_routes",
]
