"""Control messages for the partner attendance feed."""
from __future__ import annotations

from smartcity.models.feed import FeedConfig

DEFAULT_INTERVAL = 25
MIN_INTERVAL = 25
MAX_INTERVAL = 120
# Upstream has no "send once" switch; a huge interval gives one push for past dates.
ARCHIVE_INTERVAL = 999999


def clamp_interval(value: int | None, default: int = DEFAULT_INTERVAL) -> int:
    if value is None:
        return default
    return min(max(int(value), MIN_INTERVAL), MAX_INTERVAL)


def build_config_message(config: FeedConfig) -> dict:
    """Map a FeedConfig to the `config` message the feed expects.

    Unset filters are left out of the message. `shift_no` is sent as an
    explicit null only when the combined all-shifts figure is wanted.
    """
    message: dict = {
        "type": "config",
        "interval": config.interval or DEFAULT_INTERVAL,
    }
    if config.shift_no is not None:
        message["shift_no"] = config.shift_no
    elif config.all_shifts:
        message["shift_no"] = None
    if config.date:
        message["date"] = config.date
    if config.tuman_id is not None:
        message["tuman_id"] = config.tuman_id
    return message
