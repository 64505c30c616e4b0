import asyncio
import hmac
from typing import Awaitable, Callable, TypeVar

from fastapi import Depends, Header

from local_ai_toolkit.core.config import AppConfig
from local_ai_toolkit.core.di import get_config
from local_ai_toolkit.core.errors import CapabilityError, ErrorKind

T = TypeVar("T")

_BEARER_PREFIX = "bearer "


def _extract_key(authorization: str | None) -> str | None:
    """Accepts both `Bearer <key>` and the bare key."""
    if not authorization:
        return None
    value = authorization.strip()
    if value.lower().startswith(_BEARER_PREFIX):
        value = value[len(_BEARER_PREFIX) :].strip()
    return value or None


def require_api_key(
    authorization: str | None = Header(default=None),
    config: AppConfig = Depends(get_config),
) -> None:
    expected = config.server.auth_key
    if not expected:
        return
    provided = _extract_key(authorization)
    if provided is None:
        raise CapabilityError(ErrorKind.UNAUTHORIZED, "Missing Authorization header")
    if not hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8")):
        raise CapabilityError(ErrorKind.UNAUTHORIZED, "Invalid API key")


async def run_bounded(
    awaitable: Awaitable[T],
    timeout_seconds: float,
    on_timeout: Callable[["asyncio.Future[T]"], None] | None = None,
) -> T:
    """Await with the configured wall-clock limit; 0 disables it.

    The engine call keeps running on its lane after a timeout. `on_timeout`
    receives the still-running call so resources it uses can outlive the request.
    """
    if timeout_seconds <= 0:
        return await awaitable
    pending = asyncio.ensure_future(awaitable)
    try:
        return await asyncio.wait_for(asyncio.shield(pending), timeout=timeout_seconds)
    except asyncio.TimeoutError as exc:
        if on_timeout is not None:
            on_timeout(pending)
        else:
            pending.cancel()
        raise CapabilityError(ErrorKind.TIMEOUT, f"Request exceeded {timeout_seconds:g}s") from exc
