import os

from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.types import ASGIApp, Receive, Scope, Send


class NoCacheMiddleware(BaseHTTPMiddleware):
    """Validation results are per-request; keep them out of shared caches."""

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        response.headers["Cache-Control"] = "no-store, no-cache, must-revalidate, max-age=0"
        response.headers["Pragma"] = "no-cache"
        return response


class CORSErrorWrapper:
    """Raw ASGI wrapper that ensures CORS headers on ALL responses.

    Starlette's BaseHTTPMiddleware produces bare 500 responses that bypass
    CORSMiddleware. This wrapper sits outside everything and patches CORS
    headers onto any response that is missing them.
    """

    def __init__(self, app: ASGIApp, allowed_origins: list[str]) -> None:
        self.app = app
        self.allowed_origins = allowed_origins

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        request_origin = None
        for header_name, header_value in scope.get("headers", []):
            if header_name == b"origin":
                request_origin = header_value.decode("latin-1")
                break

        if not request_origin or not (
            "*" in self.allowed_origins or request_origin in self.allowed_origins
        ):
            await self.app(scope, receive, send)
            return

        async def send_with_cors(message):
            if message["type"] == "http.response.start":
                headers = dict(message.get("headers", []))
                if b"access-control-allow-origin" not in headers:
                    message["headers"] = list(message.get("headers", [])) + [
                        (b"access-control-allow-origin", request_origin.encode()),
                        (b"access-control-allow-credentials", b"true"),
                    ]
            await send(message)

        await self.app(scope, receive, send_with_cors)


def allowed_origins() -> list[str]:
    # Comma-separated ALLOWED_ORIGINS; unset means any origin
    raw = os.getenv("ALLOWED_ORIGINS", "")
    origins = [o.strip() for o in raw.split(",") if o.strip()]
    return origins or ["*"]


def add_cors_middleware(app):
    origins = allowed_origins()
    app.add_middleware(NoCacheMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
    )
    # Outermost: ensure CORS headers even on bare 500s from BaseHTTPMiddleware
    app.add_middleware(CORSErrorWrapper, allowed_origins=origins)
