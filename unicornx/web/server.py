# unicornx/web/server.py
from __future__ import annotations

import socket
import platform
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
import uvicorn

from unicornx.config import settings
from unicornx.container import init_db
from unicornx.core.logging import setup_logging
from unicornx.scheduler.jobs import build_scheduler
from unicornx.web.middleware_logging import LoggingMiddleware
from unicornx.web.errors import install_error_handlers
from unicornx.web.routes import router as api_router
from unicornx.web.user_routes import router as user_router
from unicornx.web.payment_routes import router as payment_router
from unicornx.web.admin_routes import router as admin_router

log = logging.getLogger("unicornx.startup")


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()

    host = socket.gethostname()
    try:
        ip = socket.gethostbyname(host)
    except OSError:
        ip = "unknown"

    env_snapshot = {
        "WEBAPP_HOST": settings.WEBAPP_HOST,
        "WEBAPP_PORT": settings.WEBAPP_PORT,
        "PUBLIC_BASE_URL": settings.PUBLIC_BASE_URL,
        "PAYMENT_PROVIDER": settings.PAYMENT_PROVIDER,
        "STRIPE_KEY_tail": (settings.STRIPE_SECRET_KEY or "")[-4:],
        "WEBHOOK_SECRET_len": len(settings.STRIPE_WEBHOOK_SECRET or ""),
        "DB_driver": settings.DATABASE_URL.split("://", 1)[0],
        "SCHEDULER_ENABLED": settings.SCHEDULER_ENABLED,
    }
    log.info(
        "app_startup | platform=%s python=%s hostname=%s ip=%s env=%s",
        platform.platform(),
        platform.python_version(),
        host,
        ip,
        env_snapshot,
    )

    if settings.DB_AUTO_CREATE:
        await init_db()
        log.info("db tables ensured (DB_AUTO_CREATE)")

    scheduler = None
    if settings.SCHEDULER_ENABLED:
        scheduler = build_scheduler()
        scheduler.start()
        log.info("scheduler started: jobs=%s", [j.id for j in scheduler.get_jobs()])
    try:
        yield
    finally:
        if scheduler is not None:
            scheduler.shutdown(wait=False)


def create_app() -> FastAPI:
    app = FastAPI(title="UnicornX API", lifespan=lifespan)

    # Middleware
    app.add_middleware(LoggingMiddleware)

    # Routers
    app.include_router(api_router)
    app.include_router(user_router)
    app.include_router(payment_router)
    app.include_router(admin_router)

    install_error_handlers(app)
    return app


app = create_app()


if __name__ == "__main__":
    uvicorn.run(
        "unicornx.web.server:app",
        host=settings.WEBAPP_HOST,
        port=settings.WEBAPP_PORT,
        log_level=settings.log_level.lower(),
        access_log=True,
    )
