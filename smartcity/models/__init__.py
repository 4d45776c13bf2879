"""Beanie document models and Pydantic schemas."""
from smartcity.models.attendance import (
    AttendanceDay,
    DayDocument,
    DayDocumentType,
    RegionRef,
    ShiftSlot,
    ShiftSlots,
    ShiftSummary,
    Totals,
)
from smartcity.models.feed import ConnectionState, FeedConfig
from smartcity.models.snapshot import (
    AttendanceSnapshot,
    GeoStat,
    SchoolStats,
    StatsMessage,
    StudentStats,
    TeacherStats,
)

__all__ = [
    "AttendanceDay",
    "DayDocument",
    "DayDocumentType",
    "RegionRef",
    "ShiftSlot",
    "ShiftSlots",
    "ShiftSummary",
    "Totals",
    "ConnectionState",
    "FeedConfig",
    "AttendanceSnapshot",
    "GeoStat",
    "SchoolStats",
    "StatsMessage",
    "StudentStats",
    "TeacherStats",
]
