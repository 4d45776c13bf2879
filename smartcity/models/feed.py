"""Feed subscription settings and connection states."""
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECT_SCHEDULED = "reconnect_scheduled"


class FeedConfig(BaseModel):
    """What we ask the partner feed to push.

    `shift_no=None` alone means "no shift filter"; set `all_shifts` to ask
    explicitly for the combined figure (sent upstream as `shift_no: null`).
    """

    model_config = ConfigDict(frozen=True)

    interval: Optional[int] = None
    shift_no: Optional[int] = None
    date: Optional[str] = None
    tuman_id: Optional[int] = None
    all_shifts: bool = False
