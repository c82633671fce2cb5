import time
from typing import Callable


class FixedWindowLimiter:
    """
    Count hits per identifier inside a window that resets once it has elapsed.

    Counters live in this instance only, so every service (and every test)
    owns its own limiter.
    """

    def __init__(self, max_hits: int, window_seconds: float, clock: Callable[[], float] = time.monotonic):
        self.max_hits = max_hits
        self.window_seconds = window_seconds
        self.clock = clock
        self.windows: dict[str, dict] = {}

    def hit(self, identifier: str):
        """
        Record one hit for an identifier.

        Args:
            identifier (str): Client key, usually the caller IP.

        Returns:
            bool: True while the identifier stays within its allowance.
        """
        now = self.clock()
        record = self.windows.get(identifier) or {"count": 0, "start": now}
        if now - record["start"] > self.window_seconds:
            record = {"count": 0, "start": now}
        record["count"] += 1
        self.windows[identifier] = record
        return record["count"] <= self.max_hits

    def reset(self, identifier: str):
        self.windows.pop(identifier, None)
