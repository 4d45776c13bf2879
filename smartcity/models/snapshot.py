"""Wire models for the partner attendance feed (inbound `stats` messages)."""
import re
from datetime import date as date_type
from datetime import datetime, timezone
from typing import Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

ISO_DATE = re.compile(r"\d{4}-\d{2}-\d{2}")


class SchoolStats(BaseModel):
    model_config = ConfigDict(extra="allow")

    total: int = 0
    active: Optional[int] = None


class StudentStats(BaseModel):
    model_config = ConfigDict(extra="allow")

    total: int = 0
    active: Optional[int] = None
    present_today: int = 0
    absent_today: Optional[int] = None
    late_today: Optional[int] = None
    attendance_rate: float = 0.0


class TeacherStats(BaseModel):
    model_config = ConfigDict(extra="allow")

    total: int = 0
    active: Optional[int] = None


class GeoStat(BaseModel):
    """One district (tuman) or city (shahar) row.

    Upstream names the row by `tuman_nomi` / `shahar_nomi` and sometimes sends
    `schools` / `students` instead of the `*_count` / `*_total` fields.
    """

    model_config = ConfigDict(populate_by_name=True)

    id: Optional[int] = Field(None, validation_alias=AliasChoices("id", "tuman_id", "shahar_id"))
    name: str = Field("", validation_alias=AliasChoices("name", "tuman_nomi", "shahar_nomi"))
    schools_count: int = Field(0, validation_alias=AliasChoices("schools_count", "schools"))
    students_total: int = Field(0, validation_alias=AliasChoices("students_total", "students"))
    students_present: int = 0
    attendance_rate: float = 0.0


class AttendanceSnapshot(BaseModel):
    """A single shift-scoped statistics snapshot.

    Every sub-object is optional; `None` means upstream did not send it.
    `shift_no=None` is upstream's own "all shifts combined" figure.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    date: str
    shift_no: Optional[int] = None
    region_id: Optional[int] = Field(None, validation_alias=AliasChoices("region_id", "viloyat_id"))
    region_name: Optional[str] = Field(None, validation_alias=AliasChoices("region_name", "viloyat_nomi"))
    schools: Optional[SchoolStats] = None
    students: Optional[StudentStats] = None
    teachers: Optional[TeacherStats] = None
    districts: Optional[list[GeoStat]] = Field(None, validation_alias=AliasChoices("districts", "tumanlarda"))
    cities: Optional[list[GeoStat]] = Field(None, validation_alias=AliasChoices("cities", "shaxarlarda"))
    # Set from the stats envelope when the snapshot arrives; never sent upstream.
    received_at: Optional[datetime] = None

    @field_validator("date")
    @classmethod
    def validate_date(cls, value: str) -> str:
        value = (value or "").strip()
        if not ISO_DATE.fullmatch(value):
            raise ValueError(f"date must be YYYY-MM-DD, got {value!r}")
        try:
            date_type.fromisoformat(value)
        except ValueError:
            raise ValueError(f"date must be a real calendar day, got {value!r}")
        return value

    @field_validator("shift_no")
    @classmethod
    def validate_shift_no(cls, value: Optional[int]) -> Optional[int]:
        if value is not None and value not in (1, 2, 3):
            raise ValueError(f"shift_no must be 1, 2, 3 or null, got {value}")
        return value

    @property
    def shift_key(self) -> str:
        return "all" if self.shift_no is None else f"shift{self.shift_no}"


class StatsMessage(BaseModel):
    """Inbound envelope: {"type": "stats", "timestamp": ..., "data": {...}}."""

    type: str
    timestamp: Optional[datetime] = None
    data: AttendanceSnapshot

    @field_validator("timestamp")
    @classmethod
    def as_naive_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        # Stored datetimes are naive UTC, like datetime.utcnow()
        if value is not None and value.tzinfo is not None:
            value = value.astimezone(timezone.utc).replace(tzinfo=None)
        return value
