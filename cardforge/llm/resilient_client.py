import asyncio
import logging
from typing import Awaitable, Callable, Optional, TypeVar

import httpx

from cardforge.config import get_settings
from cardforge.errors import OrchestrationFatalError

logger = logging.getLogger("cardforge.resilient_client")

T = TypeVar("T")


def classify_error(exc: Exception) -> Optional[str]:
    """Return "rate_limit", "overload" or None when the error is not retryable."""
    if isinstance(exc, httpx.HTTPStatusError):
        code = exc.response.status_code
        if code == 429:
            return "rate_limit"
        if code == 503:
            return "overload"
        return None

    error_str = str(exc).upper()
    if "429" in error_str or "RESOURCE_EXHAUSTED" in error_str:
        return "rate_limit"
    if "503" in error_str or "UNAVAILABLE" in error_str:
        return "overload"
    return None


async def call_with_retries(
    call: Callable[[], Awaitable[T]],
    label: str,
    on_rate_limit: Optional[Callable[[], Awaitable[None]]] = None,
    max_retries: Optional[int] = None,
    base_delay: Optional[float] = None,
) -> T:
    """
    Await ``call()`` retrying 429 / 503 responses with exponential backoff.

    ``on_rate_limit`` runs before the backoff on a 429 only (key rotation);
    server overload just waits.  Any other error propagates unchanged.
    """
    settings = get_settings()
    retries = max_retries if max_retries is not None else settings.resilient_max_retries
    delay_base = base_delay if base_delay is not None else settings.resilient_base_delay

    for attempt in range(retries):
        try:
            return await call()
        except Exception as e:
            kind = classify_error(e)
            if kind is None:
                raise
            delay = delay_base * (2 ** attempt)
            error_type = "429 Rate Limit" if kind == "rate_limit" else "503 Server Overload"
            logger.warning("%s for %s. Attempt %d/%d. Backoff: %ss",
                           error_type, label, attempt + 1, retries, delay)
            if kind == "rate_limit" and on_rate_limit is not None:
                await on_rate_limit()
            await asyncio.sleep(delay)

    raise OrchestrationFatalError(f"{label}: exhausted all {retries} retries")
