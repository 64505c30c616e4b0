import asyncio
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from fastapi import Request

from local_ai_toolkit.core.errors import CapabilityError, ErrorKind
from local_ai_toolkit.core.logger import get_logger

logger = get_logger("api.staging")


class StagedFile:
    """A unique temp path whose removal can wait for an engine call still using it."""

    def __init__(self, path: Path) -> None:
        self.path = path
        self._pending: asyncio.Future | None = None

    def hold_until(self, pending: asyncio.Future) -> None:
        self._pending = pending

    def release(self) -> None:
        pending = self._pending
        if pending is None or pending.done():
            self.path.unlink(missing_ok=True)
            return
        logger.info("Keeping %s until the abandoned engine call settles", self.path.name)
        pending.add_done_callback(self._release_settled)

    def _release_settled(self, pending: asyncio.Future) -> None:
        self.path.unlink(missing_ok=True)
        if not pending.cancelled() and pending.exception() is not None:
            logger.warning("Abandoned engine call for %s failed: %s", self.path.name, pending.exception())


@contextmanager
def staged_file(tmp_dir: Path, suffix: str = "") -> Iterator[StagedFile]:
    """Yield a unique staged path in `tmp_dir`; the file is removed on every exit path."""
    tmp_dir.mkdir(parents=True, exist_ok=True)
    staged = StagedFile(tmp_dir / f"{uuid.uuid4().hex}{suffix}")
    try:
        yield staged
    finally:
        staged.release()


def _too_large(limit: int) -> CapabilityError:
    return CapabilityError(ErrorKind.PAYLOAD_TOO_LARGE, f"Request body exceeds {limit} bytes")


def check_declared_length(request: Request, limit: int) -> None:
    declared = request.headers.get("content-length")
    if declared is None:
        return
    try:
        size = int(declared)
    except ValueError as exc:
        raise CapabilityError(ErrorKind.INVALID_REQUEST, "Malformed Content-Length header") from exc
    if size > limit:
        logger.warning("Rejected %s %s: declared %d bytes, limit %d", request.method, request.url.path, size, limit)
        raise _too_large(limit)


async def read_capped_body(request: Request, limit: int, empty_kind: ErrorKind) -> bytes:
    """Read the whole body, failing as soon as it grows past `limit`."""
    check_declared_length(request, limit)
    buffer = bytearray()
    async for chunk in request.stream():
        buffer.extend(chunk)
        if len(buffer) > limit:
            raise _too_large(limit)
    if not buffer:
        raise CapabilityError(empty_kind, "Request body is empty")
    return bytes(buffer)


async def stage_capped_body(request: Request, destination: Path, limit: int, empty_kind: ErrorKind) -> int:
    """Stream the body into `destination`; returns the number of bytes written."""
    check_declared_length(request, limit)
    written = 0
    with destination.open("wb") as handle:
        async for chunk in request.stream():
            written += len(chunk)
            if written > limit:
                raise _too_large(limit)
            handle.write(chunk)
    if written == 0:
        raise CapabilityError(empty_kind, "Request body is empty")
    return written
