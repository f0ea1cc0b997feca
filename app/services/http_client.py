"""
Timeout + bounded retry for calls to third-party services.

Every outbound call (Exotel, LlamaCloud, Google, LiveKit) goes through one
of the helpers below so the policy lives in one place:

  - per-attempt timeout (HTTP_TIMEOUT_SECONDS)
  - up to HTTP_MAX_RETRIES retries with exponential backoff
  - only transient failures are retried: transport errors, timeouts,
    429 and 5xx. Other 4xx responses are returned to the caller untouched.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional, TypeVar

import httpx

from app.config import settings

logger = logging.getLogger(__name__)

T = TypeVar("T")

RETRYABLE_STATUS = frozenset({429, 500, 502, 503, 504})


def _policy(timeout, max_retries, backoff):
    return (
        settings.http_timeout_seconds if timeout is None else timeout,
        settings.http_max_retries if max_retries is None else max_retries,
        settings.http_retry_backoff_seconds if backoff is None else backoff,
    )


async def request_with_retry(
    method: str,
    url: str,
    *,
    client: Optional[httpx.AsyncClient] = None,
    timeout: Optional[float] = None,
    max_retries: Optional[int] = None,
    backoff: Optional[float] = None,
    label: str = "HTTP",
    **kwargs: Any,
) -> httpx.Response:
    """Send an HTTP request, retrying transient failures.

    Returns the last response (which may still be an error status once
    retries are exhausted). Raises the last transport error if no response
    was ever received.
    """
    timeout, max_retries, backoff = _policy(timeout, max_retries, backoff)
    owns_client = client is None
    if owns_client:
        client = httpx.AsyncClient(timeout=timeout)

    try:
        for attempt in range(max_retries + 1):
            try:
                response = await client.request(method, url, timeout=timeout, **kwargs)
            except httpx.TransportError as e:
                if attempt < max_retries:
                    wait_time = backoff * (2 ** attempt)
                    logger.warning(f"[{label}] {method} {url} failed ({e!r}), retrying in {wait_time}s")
                    await asyncio.sleep(wait_time)
                    continue
                logger.error(f"[{label}] {method} {url} failed after {attempt + 1} attempts: {e!r}")
                raise

            if response.status_code in RETRYABLE_STATUS and attempt < max_retries:
                wait_time = backoff * (2 ** attempt)
                logger.warning(
                    f"[{label}] {method} {url} returned {response.status_code}, retrying in {wait_time}s"
                )
                await asyncio.sleep(wait_time)
                continue
            return response
    finally:
        if owns_client:
            await client.aclose()


def is_transient_error(exc: BaseException) -> bool:
    """Whether an SDK/HTTP failure is worth retrying."""
    if isinstance(exc, (asyncio.TimeoutError, ConnectionError, httpx.TransportError)):
        return True
    status = getattr(exc, "status", None)
    if isinstance(status, int):
        return status in RETRYABLE_STATUS
    return False


async def call_with_retry(
    make_call: Callable[[], Awaitable[T]],
    *,
    label: str,
    timeout: Optional[float] = None,
    max_retries: Optional[int] = None,
    backoff: Optional[float] = None,
) -> T:
    """Await ``make_call()`` with a timeout, retrying transient failures.

    ``make_call`` must build a fresh coroutine on every invocation.
    """
    timeout, max_retries, backoff = _policy(timeout, max_retries, backoff)
    for attempt in range(max_retries + 1):
        try:
            return await asyncio.wait_for(make_call(), timeout=timeout)
        except Exception as e:
            if attempt < max_retries and is_transient_error(e):
                wait_time = backoff * (2 ** attempt)
                logger.warning(f"[{label}] transient failure ({e!r}), retrying in {wait_time}s")
                await asyncio.sleep(wait_time)
                continue
            raise
    raise RuntimeError("unreachable")  # pragma: no cover
