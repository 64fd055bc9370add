"""Clock seam for retry backoff, cache expiry and record timestamps."""

from __future__ import annotations

import asyncio
import time as _time
from datetime import datetime, timezone


class Clock:
    """Wall clock and sleeper; tests substitute a deterministic one."""

    def now(self) -> float:
        """Seconds since the epoch."""
        return _time.time()

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)


def utc_datetime(timestamp: float) -> datetime:
    """Timezone-aware UTC datetime for an epoch ``timestamp``."""
    return datetime.fromtimestamp(timestamp, tz=timezone.utc)
