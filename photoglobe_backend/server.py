"""
Standalone aiohttp server exposing the indexing API.
"""
from __future__ import annotations

import argparse

from aiohttp import web

from .config import SERVER_HOST, SERVER_PORT
from .deps import bootstrap_services
from .observability import request_context_middleware
from .routes import register_all_routes
from .routes.core import _build_services, _dispose_services
from .shared import get_logger, log_success

logger = get_logger(__name__)

_APP_KEY_DB_PATH: web.AppKey[str] = web.AppKey("photoglobe_db_path", str)


async def _on_startup(app: web.Application) -> None:
    services = await _build_services(db_path=app.get(_APP_KEY_DB_PATH))
    if not services:
        logger.error("Server started without services; API calls will report SERVICE_UNAVAILABLE")
        return
    await bootstrap_services(services)
    log_success(logger, "PhotoGlobe indexer ready")


async def _on_cleanup(app: web.Application) -> None:
    await _dispose_services()


def create_app(db_path: str | None = None) -> web.Application:
    app = web.Application(middlewares=[request_context_middleware])
    if db_path is not None:
        app[_APP_KEY_DB_PATH] = db_path
    register_all_routes(app)
    app.on_startup.append(_on_startup)
    app.on_cleanup.append(_on_cleanup)
    return app


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="PhotoGlobe media indexer")
    parser.add_argument("--host", default=SERVER_HOST)
    parser.add_argument("--port", type=int, default=SERVER_PORT)
    parser.add_argument("--db", default=None, help="SQLite catalog path")
    args = parser.parse_args(argv)
    web.run_app(create_app(args.db), host=args.host, port=args.port)


if __name__ == "__main__":
    main()
