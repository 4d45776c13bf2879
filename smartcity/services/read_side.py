"""Read attendance from the live buffer or from stored day documents."""
from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from smartcity.models.attendance import (
    SHIFT_KEYS,
    AttendanceDay,
    RegionRef,
    ShiftSlot,
    Totals,
    shift_key_for,
    shift_no_for,
)
from smartcity.models.snapshot import AttendanceSnapshot, GeoStat, SchoolStats, StudentStats, TeacherStats
from smartcity.services.day_store import BeanieDayStore
from smartcity.services.feed_client import SnapshotBuffer

GEO_FIGURES = {"schools_count", "students_total", "students_present", "attendance_rate"}


class ReadMode(str, Enum):
    REALTIME = "realtime"
    ARCHIVE = "archive"


class AttendanceView(BaseModel):
    """Common shape for live snapshots and stored shift slots."""
    source: ReadMode
    date: str
    shift_no: Optional[int] = None
    shift_key: str = "all"
    region: RegionRef = Field(default_factory=RegionRef)
    tuman_id: Optional[int] = None
    schools: Optional[SchoolStats] = None
    students: Optional[StudentStats] = None
    teachers: Optional[TeacherStats] = None
    districts: list[GeoStat] = Field(default_factory=list)
    cities: list[GeoStat] = Field(default_factory=list)
    received_at: Optional[datetime] = None
    day_totals: Optional[Totals] = None


class ReadResult(BaseModel):
    """`found=False` is the regular "no data" answer, not a failure."""
    mode: ReadMode
    date: Optional[str] = None
    shift_no: Optional[int] = None
    found: bool = False
    view: Optional[AttendanceView] = None


def view_from_snapshot(snapshot: AttendanceSnapshot) -> AttendanceView:
    return AttendanceView(
        source=ReadMode.REALTIME,
        date=snapshot.date,
        shift_no=snapshot.shift_no,
        shift_key=snapshot.shift_key,
        region=RegionRef(id=snapshot.region_id, name=snapshot.region_name),
        schools=snapshot.schools,
        students=snapshot.students,
        teachers=snapshot.teachers,
        districts=list(snapshot.districts or []),
        cities=list(snapshot.cities or []),
        received_at=snapshot.received_at,
    )


def view_from_slot(day: AttendanceDay, shift_key: str, slot: ShiftSlot) -> AttendanceView:
    return AttendanceView(
        source=ReadMode.ARCHIVE,
        date=day.date,
        shift_no=shift_no_for(shift_key),
        shift_key=shift_key,
        region=day.region,
        tuman_id=day.tuman_id,
        schools=slot.summary.schools,
        students=slot.summary.students,
        teachers=slot.summary.teachers,
        districts=list(slot.districts),
        cities=list(slot.cities),
        received_at=slot.received_at,
        day_totals=day.totals,
    )


def pick_slot(day: AttendanceDay, shift_no: Optional[int] = None) -> Optional[tuple[str, ShiftSlot]]:
    """The requested shift, or `all` falling back to the first populated shift."""
    if shift_no is not None:
        key = shift_key_for(shift_no)
        slot = day.shift_slots.get(key)
        return (key, slot) if slot is not None else None
    populated = day.shift_slots.populated()
    return populated[0] if populated else None


def geography_breakdown(day: AttendanceDay) -> dict[str, list[dict]]:
    """Per district / city figures for every shift of the day (zeros where missing)."""
    return {
        "districts": _breakdown(day, "districts"),
        "cities": _breakdown(day, "cities"),
    }


def _breakdown(day: AttendanceDay, field: str) -> list[dict]:
    rows: dict[str, dict] = {}
    for shift_key, slot in day.shift_slots.populated():
        for stat in getattr(slot, field):
            row = rows.setdefault(
                stat.name,
                {
                    "name": stat.name,
                    "shifts": {key: dict.fromkeys(GEO_FIGURES, 0) for key in SHIFT_KEYS},
                },
            )
            row["shifts"][shift_key] = stat.model_dump(include=GEO_FIGURES)
    return list(rows.values())


class ReadSideSelector:
    def __init__(self, buffer: SnapshotBuffer, store: Optional[BeanieDayStore] = None):
        self.buffer = buffer
        self.store = store or BeanieDayStore()

    async def read(
        self,
        mode: ReadMode | str = ReadMode.REALTIME,
        date: Optional[str] = None,
        shift_no: Optional[int] = None,
        *,
        region_id: Optional[int] = None,
        tuman_id: Optional[int] = None,
    ) -> ReadResult:
        mode = ReadMode(mode)
        if mode is ReadMode.ARCHIVE and date:
            return await self.read_archive(date, shift_no, region_id=region_id, tuman_id=tuman_id)
        return self.read_realtime(shift_no)

    def read_realtime(self, shift_no: Optional[int] = None) -> ReadResult:
        result = ReadResult(mode=ReadMode.REALTIME, shift_no=shift_no)
        for snapshot in self.buffer:
            if shift_no is None or snapshot.shift_no == shift_no:
                view = view_from_snapshot(snapshot)
                return result.model_copy(update={"found": True, "view": view, "date": view.date})
        return result

    async def read_archive(
        self,
        date: str,
        shift_no: Optional[int] = None,
        *,
        region_id: Optional[int] = None,
        tuman_id: Optional[int] = None,
    ) -> ReadResult:
        result = ReadResult(mode=ReadMode.ARCHIVE, date=date, shift_no=shift_no)
        day = await self.store.find_for_date(date, region_id=region_id, tuman_id=tuman_id)
        if day is None:
            return result
        picked = pick_slot(day, shift_no)
        if picked is None:
            return result
        return result.model_copy(update={"found": True, "view": view_from_slot(day, *picked)})
