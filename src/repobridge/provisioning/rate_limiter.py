from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Optional, TypeVar

import discord

from ..errors import (
    BridgeError,
    PlatformError,
    PlatformForbidden,
    PlatformRateLimited,
    PlatformResourceLimitReached,
    ResourceNotFound,
)

log = logging.getLogger("repobridge.provisioning.rate_limiter")

T = TypeVar("T")

# Discord JSON error codes for "maximum number of ... reached"
RESOURCE_LIMIT_CODES = frozenset({30005, 30013})
MISSING_PERMISSIONS_CODE = 50013


def _retry_after_ms(exc: discord.HTTPException) -> Optional[int]:
    response = getattr(exc, "response", None)
    headers = getattr(response, "headers", None) or {}
    raw = headers.get("Retry-After")
    if raw is None:
        return None
    try:
        return int(float(raw) * 1000)
    except (TypeError, ValueError):
        return None


def translate_http_error(exc: Exception, kind: str = "Resource", label: str = "") -> Exception:
    """Map a discord.py exception onto the bridge error taxonomy.

    Anything that is not a platform HTTP error is returned unchanged.
    """
    if isinstance(exc, BridgeError):
        return exc
    if isinstance(exc, discord.RateLimited):
        return PlatformRateLimited(int(exc.retry_after * 1000))
    if not isinstance(exc, discord.HTTPException):
        return exc
    if exc.code in RESOURCE_LIMIT_CODES:
        return PlatformResourceLimitReached()
    if exc.status == 429:
        return PlatformRateLimited(_retry_after_ms(exc))
    if isinstance(exc, discord.Forbidden) or exc.code == MISSING_PERMISSIONS_CODE:
        return PlatformForbidden(f"Missing permissions: {exc.text or 'forbidden'}")
    if isinstance(exc, discord.NotFound):
        return ResourceNotFound(kind, label or "unknown")
    return PlatformError(f"Platform error {exc.status}: {exc.text or exc}")


class RateLimiter:
    """Single seam where discord.py exceptions become bridge errors.

    Retry policy lives with the callers; this only classifies.
    """

    async def execute(
        self,
        coro: Callable[..., Awaitable[T]],
        *args: Any,
        kind: str = "Resource",
        label: str = "",
        **kwargs: Any,
    ) -> T:
        try:
            return await coro(*args, **kwargs)
        except (discord.HTTPException, discord.RateLimited) as e:
            translated = translate_http_error(e, kind=kind, label=label)
            if isinstance(translated, PlatformRateLimited):
                log.warning("Rate limited on %s %s, retry after %sms", kind, label, translated.retry_after_ms)
            else:
                log.debug("Platform error on %s %s: %s", kind, label, translated)
            raise translated from e
