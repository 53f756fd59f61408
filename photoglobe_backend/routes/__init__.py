"""
HTTP routes. Importing this package is side-effect free; registration is explicit.
"""
from aiohttp import web

from .handlers import register_health_routes, register_indexing_routes


def register_all_routes(app: web.Application) -> web.RouteTableDef:
    """Register every route table on `app`."""
    routes = web.RouteTableDef()
    register_health_routes(routes)
    register_indexing_routes(routes)
    app.add_routes(routes)
    return routes


__all__ = [
    "register_all_routes",
    "register_health_routes",
    "register_indexing_routes",
]
