import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from api.audit import AuditMiddleware
from api.middleware import add_cors_middleware
from api.routes import router
from phi.sanitizer import sanitize
from server import find_free_port, start_server
from storage import get_active_db, get_keychain
from validation.pipeline import seed_default_template

_logger = logging.getLogger(__name__)

_USE_PG = bool(os.getenv("DATABASE_URL", ""))
_SENTRY_DSN = os.getenv("SENTRY_DSN", "")


def _before_send(event, hint):
    """Run exception values and breadcrumbs through the PHI sanitizer."""
    if "exception" in event:
        for exc_info in event["exception"].get("values", []):
            if exc_info.get("value"):
                exc_info["value"] = sanitize(exc_info["value"])
    for bc in event.get("breadcrumbs", {}).get("values", []):
        if bc.get("message"):
            bc["message"] = sanitize(bc["message"])
    return event


def _init_sentry() -> None:
    if not _SENTRY_DSN:
        return
    import sentry_sdk
    from sentry_sdk.integrations.fastapi import FastApiIntegration
    from sentry_sdk.integrations.starlette import StarletteIntegration

    sentry_sdk.init(
        dsn=_SENTRY_DSN,
        environment=os.getenv("SENTRY_ENVIRONMENT", "development"),
        integrations=[FastApiIntegration(), StarletteIntegration()],
        before_send=_before_send,
        send_default_pii=False,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handle startup and shutdown events."""
    if _USE_PG:
        from storage.pg_database import _get_pool, run_migrations
        await _get_pool()
        await run_migrations()
    else:
        get_keychain()
    await seed_default_template(get_active_db())

    yield

    if _USE_PG:
        from storage.pg_database import close_pool
        await close_pool()


def create_app() -> FastAPI:
    _init_sentry()
    app = FastAPI(title="Order Validation Service", version="1.0.0", lifespan=lifespan)
    # Middleware order (inner → outer): Audit → CORS
    app.add_middleware(AuditMiddleware)
    add_cors_middleware(app)

    @app.exception_handler(Exception)
    async def _unhandled_exception_handler(request: Request, exc: Exception):
        _logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error."},
        )

    app.include_router(router)
    return app


if __name__ == "__main__":
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO"),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    port = int(os.getenv("PORT", "0")) or find_free_port()
    app = create_app()
    start_server(app, port)
