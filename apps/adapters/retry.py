"""Back-off schedule for transport connects."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import AsyncIterator

from django.conf import settings


@dataclass(frozen=True)
class RetryPolicy:
    """A bounded number of attempts, the pause before each doubling up to ``max_delay``."""

    base_delay: float = 1.0
    max_delay: float = 60.0
    max_attempts: int = 3

    @classmethod
    def from_settings(cls) -> "RetryPolicy":
        return cls(
            base_delay=float(getattr(settings, "LORABRIDGE_MQTT_RETRY_BASE_DELAY", cls.base_delay)),
            max_delay=float(getattr(settings, "LORABRIDGE_MQTT_RETRY_MAX_DELAY", cls.max_delay)),
            max_attempts=int(getattr(settings, "LORABRIDGE_MQTT_CONNECT_ATTEMPTS", cls.max_attempts)),
        )

    def delay_before(self, attempt: int) -> float:
        """Pause before ``attempt`` (1-based); the first attempt starts at once."""

        if attempt <= 1:
            return 0.0
        return min(self.base_delay * 2 ** (attempt - 2), self.max_delay)

    def is_last(self, attempt: int) -> bool:
        return attempt >= self.max_attempts

    async def attempts(self) -> AsyncIterator[int]:
        """Yield attempt numbers, sleeping the back-off in between.

        The caller leaves the loop on success; exhausting it means every
        attempt failed.
        """

        for attempt in range(1, self.max_attempts + 1):
            delay = self.delay_before(attempt)
            if delay:
                await asyncio.sleep(delay)
            yield attempt


__all__ = ["RetryPolicy"]
