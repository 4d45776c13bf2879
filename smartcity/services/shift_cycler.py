"""Rotate the feed subscription through all shifts on a fixed cadence."""
from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from smartcity.models.feed import FeedConfig
from smartcity.services.feed_config import DEFAULT_INTERVAL

logger = logging.getLogger(__name__)

# None = the combined "all shifts" figure.
SHIFT_SEQUENCE: tuple[Optional[int], ...] = (None, 1, 2, 3)


class ShiftCycler:
    """Upstream only pushes one shift scope at a time, so ask for each in turn.

    `send_config` is the feed client's sender (it queues while disconnected);
    `baseline` supplies the caller's interval/date/tuman settings.
    """

    def __init__(
        self,
        send_config: Callable[[FeedConfig], Awaitable[object]],
        baseline: Callable[[], FeedConfig],
        interval: float = 30.0,
    ):
        self._send_config = send_config
        self._baseline = baseline
        self.interval = interval
        self.current_index = 0
        self._task: Optional[asyncio.Task] = None

    @property
    def active(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def current_shift(self) -> Optional[int]:
        """Shift that the next rotation will request."""
        return SHIFT_SEQUENCE[self.current_index]

    def start(self) -> None:
        """(Re)start from the first entry; the first request goes out immediately."""
        self.stop()
        self.current_index = 0
        self._task = asyncio.create_task(self._run())

    def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            self._task = None

    async def advance(self) -> FeedConfig:
        shift_no = SHIFT_SEQUENCE[self.current_index]
        base = self._baseline()
        config = FeedConfig(
            interval=base.interval or DEFAULT_INTERVAL,
            shift_no=shift_no,
            date=base.date,
            tuman_id=base.tuman_id,
            all_shifts=shift_no is None,
        )
        await self._send_config(config)
        self.current_index = (self.current_index + 1) % len(SHIFT_SEQUENCE)
        return config

    async def _run(self) -> None:
        while True:
            try:
                config = await self.advance()
                label = "all" if config.shift_no is None else f"shift {config.shift_no}"
                logger.debug(f"Shift cycle: requested {label}")
            except Exception:
                logger.exception("Shift cycle step failed")
            await asyncio.sleep(self.interval)
