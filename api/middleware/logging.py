import time

import structlog
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

logger = structlog.get_logger(__name__)

STREAM_PATH_PREFIX = "/api/v1/recording/stream"


class LoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        if request.url.path.startswith(STREAM_PATH_PREFIX):
            return await call_next(request)

        start = time.perf_counter()
        response = await call_next(request)
        duration_ms = int((time.perf_counter() - start) * 1000)

        client_ip = request.client.host if request.client else None
        logger.info(
            "request.completed",
            method=request.method,
            path=request.url.path,
            status=response.status_code,
            duration_ms=duration_ms,
            request_id=getattr(request.state, "request_id", None),
            user_id=request.query_params.get("userId"),
            client_ip=request.headers.get("X-Forwarded-For", client_ip),
        )
        return response
