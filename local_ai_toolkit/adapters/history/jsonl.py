import json
from dataclasses import asdict
from pathlib import Path
from threading import Lock

from local_ai_toolkit.core.logger import get_logger
from local_ai_toolkit.domain.models import HistoryRecord

logger = get_logger("adapters.history.jsonl")


class JsonlHistoryAdapter:
    """Appends history records to a JSON-lines file, keeping the newest `max_items`."""

    def __init__(self, path: Path, max_items: int = 1000) -> None:
        self.path = path
        self.max_items = max_items
        self._lock = Lock()
        self._count: int | None = None

    def record(self, entry: HistoryRecord) -> None:
        line = json.dumps(asdict(entry), default=str, ensure_ascii=False)
        with self._lock:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            if self._count is None:
                self._count = self._count_lines()
            with self.path.open("a", encoding="utf-8") as handle:
                handle.write(line + "\n")
            self._count += 1
            if self._count > self.max_items:
                self._trim()

    def read_all(self) -> list[dict]:
        """Newest first."""
        with self._lock:
            if not self.path.exists():
                return []
            with self.path.open("r", encoding="utf-8") as handle:
                items = [json.loads(line) for line in handle if line.strip()]
        items.reverse()
        return items

    def _count_lines(self) -> int:
        if not self.path.exists():
            return 0
        with self.path.open("r", encoding="utf-8") as handle:
            return sum(1 for line in handle if line.strip())

    def _trim(self) -> None:
        with self.path.open("r", encoding="utf-8") as handle:
            lines = [line for line in handle if line.strip()]
        kept = lines[-self.max_items :]
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        with tmp.open("w", encoding="utf-8") as handle:
            handle.writelines(kept)
        tmp.replace(self.path)
        self._count = len(kept)
        logger.debug("History trimmed to %d records", self._count)
