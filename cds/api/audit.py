"""Audit logging middleware.

Logs every request with caller, method, path, status code and duration.
Request bodies (dictation text) are never logged.
"""

import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

logger = logging.getLogger("audit")
logger.setLevel(logging.INFO)

# Ensure we have a stream handler (stdout) if not already configured
if not logger.handlers:
    handler = logging.StreamHandler()
    handler.setFormatter(
        logging.Formatter("%(asctime)s %(levelname)s %(message)s")
    )
    logger.addHandler(handler)


class AuditMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        start_time = time.monotonic()
        response = await call_next(request)
        duration_ms = round((time.monotonic() - start_time) * 1000, 1)

        # Set by an upstream auth layer when one is deployed in front of us
        caller = request.headers.get("x-user-id") or "anonymous"

        logger.info(
            "user=%s method=%s path=%s status=%d duration_ms=%.1f",
            caller,
            request.method,
            request.url.path,
            response.status_code,
            duration_ms,
        )
        return response
