import asyncio
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable, TypeVar

from local_ai_toolkit.core.logger import get_logger
from local_ai_toolkit.domain.models import HistoryRecord
from local_ai_toolkit.ports.history import HistorySinkPort

T = TypeVar("T")

logger = get_logger("services.serial")


class EngineLane:
    """Single worker thread owning one engine.

    Work items run one at a time in submission order, so the engine is never
    entered twice concurrently. Engines bound to their creating thread are
    always used from the same worker.
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix=name)

    def submit(self, fn: Callable[..., T], *args: Any, **kwargs: Any) -> "Future[T]":
        return self._executor.submit(fn, *args, **kwargs)

    async def run(self, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        return await asyncio.wrap_future(self.submit(fn, *args, **kwargs))

    def shutdown(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)


def emit_history(sink: HistorySinkPort | None, record: HistoryRecord) -> None:
    """Hand a record to the history sink; a failing sink never fails the call."""
    if sink is None:
        return
    try:
        sink.record(record)
    except Exception:
        logger.warning("History sink rejected %s record", record.kind, exc_info=True)


def preview(text: str, limit: int = 200) -> str:
    text = " ".join(text.split())
    return text if len(text) <= limit else text[: limit - 1] + "…"
