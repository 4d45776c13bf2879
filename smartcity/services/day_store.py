"""Day document storage: keyed upserts with field-level slot writes."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from beanie import UpdateResponse
from pymongo.errors import DuplicateKeyError

from smartcity.models.attendance import (
    SHIFT_KEYS,
    DayDocument,
    DayDocumentType,
    ShiftSlot,
)


@dataclass(frozen=True)
class DayKey:
    """Unique key of a day document."""

    date: str
    region_id: Optional[int] = None
    tuman_id: Optional[int] = None

    def as_filter(self) -> dict:
        return {"date": self.date, "region.id": self.region_id, "tuman_id": self.tuman_id}


def _students_sum(field: str) -> dict:
    return {
        "$add": [
            {"$ifNull": [f"$shift_slots.{key}.summary.students.{field}", 0]}
            for key in SHIFT_KEYS
        ]
    }


def slot_write_pipeline(shift_key: str, slot: ShiftSlot, *, region_name: str | None, now: datetime) -> list[dict]:
    """Update pipeline writing `shift_slots.<shift_key>` and refreshing `totals`.

    Sibling slots keep whatever they hold (null on a new document). Totals
    are summed from the slots as they are after this write, in the same
    update, so concurrent writers from any process cannot leave them stale.
    The rate is rounded half-up to two decimals like `attendance_rate`.
    """
    write: dict = {
        f"shift_slots.{shift_key}": {"$literal": slot.model_dump()},
        "type": {"$ifNull": ["$type", DayDocumentType.REALTIME.value]},
        "created_at": {"$ifNull": ["$created_at", {"$literal": now}]},
        "updated_at": {"$literal": now},
    }
    for other in SHIFT_KEYS:
        if other != shift_key:
            write[f"shift_slots.{other}"] = {"$ifNull": [f"$shift_slots.{other}", None]}
    if region_name is not None:
        write["region.name"] = {"$literal": region_name}

    rate = {
        "$cond": [
            {"$gt": ["$totals.total_students", 0]},
            {
                "$divide": [
                    {
                        "$floor": {
                            "$add": [
                                {
                                    "$multiply": [
                                        {"$divide": ["$totals.total_present", "$totals.total_students"]},
                                        10000,
                                    ]
                                },
                                0.5,
                            ]
                        }
                    },
                    100,
                ]
            },
            0,
        ]
    }
    return [
        {"$set": write},
        {
            "$set": {
                "totals.total_present": _students_sum("present_today"),
                "totals.total_students": _students_sum("total"),
            }
        },
        {"$set": {"totals.overall_rate": rate}},
    ]


class BeanieDayStore:
    """DayDocument persistence on MongoDB through Beanie."""

    async def write_slot(
        self,
        key: DayKey,
        shift_key: str,
        slot: ShiftSlot,
        *,
        region_name: str | None = None,
    ) -> DayDocument:
        """Upsert one slot; the returned document already carries fresh totals."""
        pipeline = slot_write_pipeline(shift_key, slot, region_name=region_name, now=datetime.utcnow())
        try:
            return await self._upsert(key, pipeline)
        except DuplicateKeyError:
            # Another writer inserted the same key first; now it is a plain update.
            return await self._upsert(key, pipeline)

    async def _upsert(self, key: DayKey, pipeline: list[dict]) -> DayDocument:
        return await DayDocument.find_one(key.as_filter()).update(
            pipeline,
            upsert=True,
            response_type=UpdateResponse.NEW_DOCUMENT,
        )

    async def get(self, key: DayKey) -> Optional[DayDocument]:
        return await DayDocument.find_one(key.as_filter())

    async def find_for_date(
        self,
        date: str,
        *,
        region_id: int | None = None,
        tuman_id: int | None = None,
    ) -> Optional[DayDocument]:
        """Point lookup; without a region the lowest region id wins."""
        query: dict = {"date": date, "tuman_id": tuman_id}
        if region_id is not None:
            query["region.id"] = region_id
        return await DayDocument.find(query).sort("region.id").first_or_none()

    async def list_for_date(self, date: str) -> list[DayDocument]:
        return await DayDocument.find({"date": date}).sort("region.id", "tuman_id").to_list()

    async def list_between(
        self,
        start: str | None,
        end: str | None,
        *,
        region_id: int | None = None,
    ) -> list[DayDocument]:
        """Region-wide documents with start <= date <= end (ISO strings sort by date)."""
        date_filter: dict = {}
        if start:
            date_filter["$gte"] = start
        if end:
            date_filter["$lte"] = end
        query: dict = {"tuman_id": None}
        if date_filter:
            query["date"] = date_filter
        if region_id is not None:
            query["region.id"] = region_id
        return await DayDocument.find(query).sort("date", "region.id").to_list()
