"""Partner attendance feed: WebSocket client, reconnect policies and live buffer."""
from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from collections import deque
from datetime import datetime
from typing import Any, Awaitable, Callable, Iterator, Optional, Protocol

import websockets
from pydantic import ValidationError
from websockets.exceptions import ConnectionClosed, WebSocketException

from smartcity.config import settings
from smartcity.models.feed import ConnectionState, FeedConfig
from smartcity.models.snapshot import AttendanceSnapshot, StatsMessage
from smartcity.services.aggregator import Aggregator
from smartcity.services.feed_config import (
    ARCHIVE_INTERVAL,
    DEFAULT_INTERVAL,
    build_config_message,
    clamp_interval,
)
from smartcity.services.shift_cycler import ShiftCycler

logger = logging.getLogger(__name__)

Connector = Callable[[str], Awaitable[Any]]


class ReconnectPolicy(Protocol):
    def next_delay(self, attempt: int) -> Optional[float]:
        """Seconds to wait before reconnect number `attempt + 1`; None = give up."""


class FixedDelay:
    def __init__(self, delay: float = 3.0):
        self.delay = delay

    def next_delay(self, attempt: int) -> Optional[float]:
        return self.delay


class ExponentialBackoff:
    """base * 2**attempt, until max_attempts reconnects have been tried."""

    def __init__(self, base_delay: float = 1.0, max_attempts: int = 10, max_delay: Optional[float] = None):
        self.base_delay = base_delay
        self.max_attempts = max_attempts
        self.max_delay = max_delay

    def next_delay(self, attempt: int) -> Optional[float]:
        if attempt >= self.max_attempts:
            return None
        delay = self.base_delay * 2 ** attempt
        if self.max_delay is not None:
            delay = min(delay, self.max_delay)
        return delay


class SnapshotBuffer:
    """Last N snapshots, newest first."""

    def __init__(self, capacity: int = 100):
        self._items: deque[AttendanceSnapshot] = deque(maxlen=capacity)

    def push(self, snapshot: AttendanceSnapshot) -> None:
        self._items.appendleft(snapshot)

    def latest(self) -> Optional[AttendanceSnapshot]:
        return self._items[0] if self._items else None

    def clear(self) -> None:
        self._items.clear()

    def __iter__(self) -> Iterator[AttendanceSnapshot]:
        return iter(self._items)

    def __len__(self) -> int:
        return len(self._items)


def utc_today() -> str:
    return datetime.utcnow().date().isoformat()


class FeedClient:
    """Owns one connection to the partner feed.

    States: DISCONNECTED -> CONNECTING -> CONNECTED -> RECONNECT_SCHEDULED
    -> CONNECTING ...; `disconnect()` returns to DISCONNECTED from any state.
    Stats snapshots go to the aggregator and then into `buffer`; every other
    message is dropped.
    """

    def __init__(
        self,
        url: str,
        aggregator: Aggregator,
        *,
        reconnect_policy: Optional[ReconnectPolicy] = None,
        cycle_interval: float = 30.0,
        buffer_size: int = 100,
        baseline: Optional[FeedConfig] = None,
        auto_cycle: bool = True,
        connector: Optional[Connector] = None,
    ):
        self.url = url
        self.aggregator = aggregator
        self.reconnect_policy = reconnect_policy or FixedDelay()
        self.buffer = SnapshotBuffer(buffer_size)
        self.baseline = baseline or FeedConfig(interval=DEFAULT_INTERVAL)
        self.auto_cycle = auto_cycle
        self.cycler = ShiftCycler(self.send_config, lambda: self.baseline, interval=cycle_interval)

        self.state = ConnectionState.DISCONNECTED
        self.reconnect_attempts = 0
        self.current_config: Optional[FeedConfig] = None
        self.pending_config: Optional[FeedConfig] = None
        self.pinned_shift: Optional[int] = None

        self._connector = connector or websockets.connect
        self._ws: Any = None
        self._task: Optional[asyncio.Task] = None
        self._reconnect_handle: Optional[asyncio.TimerHandle] = None
        self._closing = False

    @property
    def connected(self) -> bool:
        return self.state is ConnectionState.CONNECTED

    @property
    def is_realtime(self) -> bool:
        return not self.baseline.date or self.baseline.date == utc_today()

    def _set_state(self, state: ConnectionState) -> None:
        if state is not self.state:
            logger.debug(f"Feed state {self.state.value} -> {state.value}")
        self.state = state

    # -- connection lifecycle -------------------------------------------------

    def connect(self) -> None:
        """Open the connection in the background; no-op while connecting or connected."""
        if self.state in (ConnectionState.CONNECTING, ConnectionState.CONNECTED):
            return
        self._cancel_reconnect()
        self._closing = False
        self._set_state(ConnectionState.CONNECTING)
        self._task = asyncio.create_task(self._session())

    async def _session(self) -> None:
        try:
            ws = await self._connector(self.url)
        except (OSError, WebSocketException, asyncio.TimeoutError) as e:
            logger.error(f"Feed connection to {self.url} failed: {e}")
            self.on_close()
            return

        self._ws = ws
        try:
            await self.on_open()
            async for raw in ws:
                await self.on_message(raw)
        except ConnectionClosed as e:
            logger.warning(f"Feed connection closed: {e}")
        finally:
            self.on_close()

    async def on_open(self) -> None:
        self._set_state(ConnectionState.CONNECTED)
        self.reconnect_attempts = 0
        logger.info(f"Connected to attendance feed {self.url}")

        replay = self.pending_config or self.current_config
        self.pending_config = None
        if self.auto_cycle and self.pinned_shift is None:
            self.cycler.start()
        elif replay is not None:
            await self.send_config(replay)

    def on_close(self) -> None:
        self.cycler.stop()
        self._ws = None
        if self._closing:
            self._set_state(ConnectionState.DISCONNECTED)
            return

        delay = self.reconnect_policy.next_delay(self.reconnect_attempts)
        if delay is None:
            logger.error(
                f"Giving up on attendance feed after {self.reconnect_attempts} reconnect attempts"
            )
            self._set_state(ConnectionState.DISCONNECTED)
            return

        self.reconnect_attempts += 1
        self._set_state(ConnectionState.RECONNECT_SCHEDULED)
        logger.warning(f"Attendance feed disconnected, reconnecting in {delay}s (attempt {self.reconnect_attempts})")
        self._reconnect_handle = asyncio.get_running_loop().call_later(delay, self._reconnect)

    def _reconnect(self) -> None:
        self._reconnect_handle = None
        self.connect()

    def _cancel_reconnect(self) -> None:
        if self._reconnect_handle is not None:
            self._reconnect_handle.cancel()
            self._reconnect_handle = None

    async def disconnect(self) -> None:
        """Close for good: no reconnect, no cycling."""
        self._closing = True
        self._cancel_reconnect()
        self.cycler.stop()
        ws = self._ws
        if ws is not None:
            with contextlib.suppress(ConnectionClosed, OSError):
                await ws.close()
        task = self._task
        self._task = None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._ws = None
        self._set_state(ConnectionState.DISCONNECTED)

    # -- messages -------------------------------------------------------------

    async def on_message(self, raw: str | bytes) -> None:
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8", errors="replace")
        try:
            message = json.loads(raw)
        except ValueError:
            logger.debug("Ignoring non-JSON feed message")
            return
        if not isinstance(message, dict) or message.get("type") != "stats":
            return

        try:
            stats = StatsMessage.model_validate(message)
        except ValidationError as e:
            logger.warning(f"Dropping malformed stats message: {e.errors()[0]['msg']}")
            return

        snapshot = stats.data.model_copy(update={"received_at": stats.timestamp or datetime.utcnow()})
        tuman_id = self.current_config.tuman_id if self.current_config else None
        try:
            await self.aggregator.merge_snapshot(snapshot, tuman_id=tuman_id)
        except Exception:
            logger.exception(f"Unexpected error merging snapshot for {snapshot.date}")
        self.buffer.push(snapshot)

    async def send_config(self, config: FeedConfig) -> bool:
        """Send now if connected, otherwise keep it for the next open."""
        if not self.connected or self._ws is None:
            self.pending_config = config
            logger.debug(f"Feed not connected, queued config {build_config_message(config)}")
            return False

        message = build_config_message(config)
        try:
            await self._ws.send(json.dumps(message))
        except (ConnectionClosed, OSError) as e:
            logger.warning(f"Could not send feed config: {e}")
            self.pending_config = config
            return False
        self.current_config = config
        logger.info(f"Feed config sent: {message}")
        return True

    # -- caller intents -------------------------------------------------------

    async def configure(
        self,
        *,
        shift_no: Optional[int] = None,
        date: Optional[str] = None,
        interval: Optional[int] = None,
        tuman_id: Optional[int] = None,
    ) -> FeedConfig:
        """Apply a dashboard request to the subscription.

        Today (or no date) keeps live updates at the clamped interval; a past
        date gets a single push. A shift pins the subscription and stops
        cycling; no shift resumes cycling.
        """
        is_today = not date or date == utc_today()
        effective_interval = clamp_interval(interval) if is_today else ARCHIVE_INTERVAL
        baseline = FeedConfig(interval=effective_interval, date=date, tuman_id=tuman_id)
        changed = baseline != self.baseline
        self.baseline = baseline

        if shift_no is not None:
            self.pinned_shift = shift_no
            self.cycler.stop()
            config = baseline.model_copy(update={"shift_no": shift_no})
            await self.send_config(config)
            return config

        self.pinned_shift = None
        if not self.auto_cycle:
            await self.send_config(baseline)
        elif self.connected and (changed or not self.cycler.active):
            self.cycler.start()
        return baseline

    def status(self) -> dict:
        return {
            "url": self.url,
            "state": self.state.value,
            "connected": self.connected,
            "reconnect_attempts": self.reconnect_attempts,
            "current_config": build_config_message(self.current_config) if self.current_config else None,
            "pending_config": build_config_message(self.pending_config) if self.pending_config else None,
            "pinned_shift": self.pinned_shift,
            "cycling": self.cycler.active,
            "current_shift": self.cycler.current_shift,
            "buffered_snapshots": len(self.buffer),
        }


class EnhancedFeedClient(FeedClient):
    """Collector variant: exponential backoff and explicit subscriptions, no cycling."""

    def __init__(self, url: str, aggregator: Aggregator, **kwargs):
        kwargs.setdefault("reconnect_policy", ExponentialBackoff())
        kwargs["auto_cycle"] = False
        super().__init__(url, aggregator, **kwargs)

    async def collect(
        self,
        *,
        shift_no: Optional[int] = None,
        date: Optional[str] = None,
        tuman_id: Optional[int] = None,
        interval: int = DEFAULT_INTERVAL,
    ) -> bool:
        """Subscribe to any combination of shift, date and tuman filters."""
        config = FeedConfig(interval=interval, shift_no=shift_no, date=date, tuman_id=tuman_id)
        self.pinned_shift = shift_no
        self.baseline = config.model_copy(update={"shift_no": None})
        return await self.send_config(config)

    async def collect_all_data(self, interval: int = DEFAULT_INTERVAL) -> bool:
        return await self.collect(interval=interval)

    async def collect_shift_data(self, shift_no: int, interval: int = DEFAULT_INTERVAL) -> bool:
        return await self.collect(shift_no=shift_no, interval=interval)

    async def collect_date_data(self, date: str, interval: int = DEFAULT_INTERVAL) -> bool:
        return await self.collect(date=date, interval=interval)

    async def collect_date_shift_data(self, date: str, shift_no: int, interval: int = DEFAULT_INTERVAL) -> bool:
        return await self.collect(date=date, shift_no=shift_no, interval=interval)

    async def collect_tuman_data(self, tuman_id: int, interval: int = DEFAULT_INTERVAL) -> bool:
        return await self.collect(tuman_id=tuman_id, interval=interval)

    async def collect_tuman_shift_data(self, tuman_id: int, shift_no: int, interval: int = DEFAULT_INTERVAL) -> bool:
        return await self.collect(tuman_id=tuman_id, shift_no=shift_no, interval=interval)


def reconnect_policy_from_settings(policy: Optional[str] = None) -> ReconnectPolicy:
    if (policy or settings.reconnect_policy) == "exponential":
        return ExponentialBackoff(
            base_delay=settings.reconnect_base_delay_seconds,
            max_attempts=settings.reconnect_max_attempts,
        )
    return FixedDelay(settings.reconnect_delay_seconds)


def create_feed_client(aggregator: Optional[Aggregator] = None, *, enhanced: bool = False) -> FeedClient:
    """Feed client wired from settings; the enhanced collector always backs off exponentially."""
    cls = EnhancedFeedClient if enhanced else FeedClient
    return cls(
        settings.feed_url,
        aggregator or Aggregator(),
        reconnect_policy=reconnect_policy_from_settings("exponential" if enhanced else None),
        buffer_size=settings.realtime_buffer_size,
        cycle_interval=settings.shift_cycle_seconds,
        baseline=FeedConfig(interval=settings.feed_interval),
    )
