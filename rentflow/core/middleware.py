"""Request tracing middleware and response hardening."""

import logging
import time
import uuid

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from rentflow.config import settings

logger = logging.getLogger(__name__)

SLOW_REQUEST_SECONDS = 1.0
ANONYMOUS_ACTOR = "anonymous"


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Trace every request with its request ID and acting principal.

    The actor is whatever the authentication gateway put in ``X-Actor-ID``;
    it is logged as presented, validation happens in the route dependency.
    """

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint,
    ) -> Response:
        started = time.perf_counter()
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
        actor = request.headers.get("X-Actor-ID") or ANONYMOUS_ACTOR
        request.state.request_id = request_id
        request.state.actor = actor

        response = await call_next(request)
        duration = time.perf_counter() - started

        response.headers["X-Request-ID"] = request_id
        response.headers["X-Response-Time"] = f"{duration:.3f}s"

        log = logger.warning if response.status_code >= 500 else logger.info
        log(
            f"{request.method} {request.url.path} -> {response.status_code} "
            f"actor={actor} request_id={request_id} in {duration:.3f}s"
        )
        if duration > SLOW_REQUEST_SECONDS:
            logger.warning(f"SLOW REQUEST: {request.method} {request.url.path} by {actor} took {duration:.3f}s")

        return response


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Middleware to add security headers to responses."""

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint,
    ) -> Response:
        response = await call_next(request)

        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Cache-Control"] = "no-store"

        if not settings.debug:
            response.headers["Strict-Transport-Security"] = (
                "max-age=31536000; includeSubDomains"
            )

        return response
