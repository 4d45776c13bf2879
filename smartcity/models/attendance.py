"""Merged per-day attendance document and its shift slots."""
from datetime import datetime
from enum import Enum
from typing import Optional

from beanie import Document
from pydantic import BaseModel, Field
from pymongo import ASCENDING, IndexModel

from smartcity.models.snapshot import GeoStat, SchoolStats, StudentStats, TeacherStats

SHIFT_KEYS = ("all", "shift1", "shift2", "shift3")


def shift_key_for(shift_no: Optional[int]) -> str:
    return "all" if shift_no is None else f"shift{shift_no}"


def shift_no_for(shift_key: str) -> Optional[int]:
    return None if shift_key == "all" else int(shift_key.removeprefix("shift"))


class DayDocumentType(str, Enum):
    REALTIME = "realtime"
    FINALIZED = "finalized"


class RegionRef(BaseModel):
    id: Optional[int] = None
    name: Optional[str] = None


class ShiftSummary(BaseModel):
    schools: Optional[SchoolStats] = None
    students: Optional[StudentStats] = None
    teachers: Optional[TeacherStats] = None


class ShiftSlot(BaseModel):
    """Everything received for one shift of one day."""
    summary: ShiftSummary = Field(default_factory=ShiftSummary)
    districts: list[GeoStat] = Field(default_factory=list)
    cities: list[GeoStat] = Field(default_factory=list)
    received_at: datetime = Field(default_factory=datetime.utcnow)


class ShiftSlots(BaseModel):
    all: Optional[ShiftSlot] = None
    shift1: Optional[ShiftSlot] = None
    shift2: Optional[ShiftSlot] = None
    shift3: Optional[ShiftSlot] = None

    def get(self, shift_key: str) -> Optional[ShiftSlot]:
        return getattr(self, shift_key)

    def populated(self) -> list[tuple[str, ShiftSlot]]:
        return [(key, slot) for key in SHIFT_KEYS if (slot := getattr(self, key)) is not None]


class Totals(BaseModel):
    total_present: int = 0
    total_students: int = 0
    overall_rate: float = 0.0


class AttendanceDay(BaseModel):
    """One merged record per (date, region, sub-region).

    Slots are written independently by the aggregator; `totals` is derived
    from whichever slots are populated. `type` is advisory and stays
    `realtime`; readers compare `date` with today instead.
    """

    type: DayDocumentType = DayDocumentType.REALTIME
    date: str
    region: RegionRef = Field(default_factory=RegionRef)
    tuman_id: Optional[int] = None  # None = region-wide document
    shift_slots: ShiftSlots = Field(default_factory=ShiftSlots)
    totals: Totals = Field(default_factory=Totals)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class DayDocument(Document, AttendanceDay):
    """Mongo-backed AttendanceDay (collection `attendance_days`)."""

    class Settings:
        name = "attendance_days"
        indexes = [
            IndexModel(
                [("date", ASCENDING), ("region.id", ASCENDING), ("tuman_id", ASCENDING)],
                unique=True,
                name="day_key_unique",
            ),
            IndexModel([("region.id", ASCENDING), ("date", ASCENDING)]),
        ]
