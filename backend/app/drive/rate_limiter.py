"""Request pacing for Google Drive API calls."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

from app.core.config import settings
from app.core.logging import get_logger

logger = get_logger(__name__)


class RequestPacer:
    """Rate limiter for Google API requests.

    Implements:
    - Minimum delay between requests (prevents burst requests)
    - Per-minute request limiting with sliding window

    One pacer is shared by every user in the process because Google's
    per-project quota is shared too.
    """

    def __init__(
        self,
        min_delay: float = 0.1,
        requests_per_minute: int = 600,
    ):
        self.min_delay = min_delay
        self.requests_per_minute = requests_per_minute
        self._last_request: datetime | None = None
        self._request_times: list[datetime] = []
        self._lock = asyncio.Lock()

    async def acquire(self) -> None:
        """Wait until it's safe to make a request."""
        async with self._lock:
            now = datetime.now(timezone.utc)

            cutoff = now - timedelta(seconds=60)
            self._request_times = [t for t in self._request_times if t > cutoff]

            if len(self._request_times) >= self.requests_per_minute:
                oldest = self._request_times[0]
                wait_time = 60 - (now - oldest).total_seconds()
                if wait_time > 0:
                    logger.debug(
                        "rate_pacer_waiting",
                        wait_seconds=round(wait_time, 2),
                        reason="per_minute_limit",
                    )
                    await asyncio.sleep(wait_time)
                    now = datetime.now(timezone.utc)

            if self._last_request and self.min_delay > 0:
                elapsed = (now - self._last_request).total_seconds()
                if elapsed < self.min_delay:
                    await asyncio.sleep(self.min_delay - elapsed)

            self._last_request = datetime.now(timezone.utc)
            self._request_times.append(self._last_request)


_pacer: RequestPacer | None = None


def get_request_pacer() -> RequestPacer:
    """Get or create the global request pacer."""
    global _pacer
    if _pacer is None:
        _pacer = RequestPacer(
            min_delay=settings.google_request_delay,
            requests_per_minute=settings.google_requests_per_minute,
        )
    return _pacer


def reset_request_pacer() -> None:
    """Drop the global pacer so the next call picks up current settings."""
    global _pacer
    _pacer = None
