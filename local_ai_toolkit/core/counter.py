from threading import Lock


class RequestCounter:
    """Process-wide count of successful capability calls."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._count = 0

    def increment(self) -> int:
        with self._lock:
            self._count += 1
            return self._count

    @property
    def value(self) -> int:
        with self._lock:
            return self._count
