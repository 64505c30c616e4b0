from typing import Protocol

from local_ai_toolkit.domain.models import HistoryRecord


class HistorySinkPort(Protocol):
    """Receives one record per capability invocation. Fire-and-forget."""

    def record(self, entry: HistoryRecord) -> None:
        ...
