from __future__ import annotations

from typing import Any, Optional

import httpx
import structlog
from httpx import AsyncClient, Limits, Timeout
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from config import get_settings

LOGGER = structlog.get_logger(__name__)

_http_client: AsyncClient | None = None

RETRYABLE_STATUS_CODES = frozenset({429})


async def get_http_client() -> AsyncClient:
    global _http_client
    if _http_client is None:
        settings = get_settings()
        _http_client = AsyncClient(
            timeout=Timeout(settings.gemini_timeout, connect=5.0),
            limits=Limits(max_connections=100, max_keepalive_connections=20),
        )
    return _http_client


async def close_http_client() -> None:
    global _http_client
    if _http_client is not None:
        await _http_client.aclose()
        _http_client = None


class TransientHTTPError(Exception):
    """Raised for retryable HTTP status codes (429 and 5xx)."""

    def __init__(self, message: str, status_code: int) -> None:
        super().__init__(message)
        self.status_code = status_code


def _is_retryable(status_code: int) -> bool:
    return status_code in RETRYABLE_STATUS_CODES or 500 <= status_code < 600


async def request_with_retry(
    method: str,
    url: str,
    *,
    client: Optional[AsyncClient] = None,
    retry_attempts: int = 3,
    **kwargs: Any,
) -> httpx.Response:
    """Issue an HTTP request, backing off exponentially on transport errors, throttling and 5xx."""
    session = client or await get_http_client()

    async for attempt in AsyncRetrying(
        stop=stop_after_attempt(max(retry_attempts, 1)),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=8),
        retry=retry_if_exception_type(
            (httpx.TransportError, httpx.TimeoutException, TransientHTTPError)
        ),
        reraise=True,
    ):
        with attempt:
            try:
                response = await session.request(method, url, **kwargs)
                response.raise_for_status()
                return response
            except httpx.HTTPStatusError as exc:
                status_code = exc.response.status_code
                if _is_retryable(status_code):
                    LOGGER.warning(
                        "http_request_retryable_error",
                        method=method,
                        url=url,
                        status_code=status_code,
                        attempt_number=attempt.retry_state.attempt_number,
                    )
                    raise TransientHTTPError(str(exc), status_code) from exc
                raise

    raise RuntimeError("Unexpected retry termination")  # pragma: no cover
