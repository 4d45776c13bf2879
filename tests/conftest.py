from __future__ import annotations

import asyncio
import copy
import json
from datetime import datetime
from typing import Optional

import pytest
from pymongo.errors import PyMongoError

from smartcity.models.attendance import SHIFT_KEYS, AttendanceDay, DayDocumentType, ShiftSlot
from smartcity.models.snapshot import AttendanceSnapshot
from smartcity.services.aggregator import Aggregator, compute_totals
from smartcity.services.day_store import DayKey


class InMemoryDayStore:
    """Mirrors the Mongo store: one slot write and a totals refresh per update."""

    def __init__(self):
        self.docs: dict[DayKey, dict] = {}
        self.fail_writes = False
        self.inserts = 0

    async def write_slot(self, key: DayKey, shift_key: str, slot: ShiftSlot, *, region_name=None) -> AttendanceDay:
        await asyncio.sleep(0)
        if self.fail_writes:
            raise PyMongoError("write concern error")
        now = datetime.utcnow()
        doc = self.docs.get(key)
        if doc is None:
            doc = {
                "date": key.date,
                "region": {"id": key.region_id},
                "tuman_id": key.tuman_id,
                "type": DayDocumentType.REALTIME.value,
                "created_at": now,
                "shift_slots": dict.fromkeys(SHIFT_KEYS),
            }
            self.docs[key] = doc
            self.inserts += 1
        doc["shift_slots"][shift_key] = copy.deepcopy(slot.model_dump())
        if region_name is not None:
            doc["region"]["name"] = region_name
        doc["updated_at"] = now
        doc["totals"] = compute_totals(AttendanceDay.model_validate(copy.deepcopy(doc)).shift_slots).model_dump()
        return AttendanceDay.model_validate(copy.deepcopy(doc))

    async def get(self, key: DayKey) -> Optional[AttendanceDay]:
        doc = self.docs.get(key)
        return AttendanceDay.model_validate(copy.deepcopy(doc)) if doc else None

    def _sorted(self, docs: list[dict]) -> list[AttendanceDay]:
        docs = sorted(docs, key=lambda d: (d["date"], d["region"].get("id") or 0, d.get("tuman_id") or 0))
        return [AttendanceDay.model_validate(copy.deepcopy(d)) for d in docs]

    async def find_for_date(self, date, *, region_id=None, tuman_id=None) -> Optional[AttendanceDay]:
        matches = [
            d for d in self.docs.values()
            if d["date"] == date
            and d.get("tuman_id") == tuman_id
            and (region_id is None or d["region"].get("id") == region_id)
        ]
        found = self._sorted(matches)
        return found[0] if found else None

    async def list_for_date(self, date) -> list[AttendanceDay]:
        return self._sorted([d for d in self.docs.values() if d["date"] == date])

    async def list_between(self, start, end, *, region_id=None) -> list[AttendanceDay]:
        return self._sorted(
            [
                d for d in self.docs.values()
                if d.get("tuman_id") is None
                and (start is None or d["date"] >= start)
                and (end is None or d["date"] <= end)
                and (region_id is None or d["region"].get("id") == region_id)
            ]
        )


_CLOSED = object()


class FakeConnection:
    """Stands in for a websockets client connection."""

    def __init__(self):
        self.sent: list[dict] = []
        self.closed = False
        self._incoming: asyncio.Queue = asyncio.Queue()

    async def send(self, data: str) -> None:
        self.sent.append(json.loads(data))

    def push(self, message) -> None:
        self._incoming.put_nowait(message if isinstance(message, str) else json.dumps(message))

    def drop(self) -> None:
        """Server side hang-up."""
        self._incoming.put_nowait(_CLOSED)

    async def close(self) -> None:
        self.closed = True
        self._incoming.put_nowait(_CLOSED)

    def __aiter__(self):
        return self

    async def __anext__(self):
        item = await self._incoming.get()
        if item is _CLOSED:
            raise StopAsyncIteration
        return item


class FakeConnector:
    def __init__(self):
        self.connections: list[FakeConnection] = []
        self.failures = 0
        self.calls = 0

    async def __call__(self, url: str) -> FakeConnection:
        self.calls += 1
        if self.failures:
            self.failures -= 1
            raise OSError("connection refused")
        connection = FakeConnection()
        self.connections.append(connection)
        return connection

    @property
    def last(self) -> FakeConnection:
        return self.connections[-1]


def make_snapshot(
    date: str = "2025-12-02",
    shift_no: Optional[int] = 1,
    total: int = 450000,
    present: int = 425000,
    region_id: int = 1,
    **extra,
) -> AttendanceSnapshot:
    data = {
        "date": date,
        "shift_no": shift_no,
        "viloyat_id": region_id,
        "viloyat_nomi": "Qashqadaryo",
        "schools": {"total": 1250, "active": 1180},
        "students": {
            "total": total,
            "present_today": present,
            "absent_today": total - present,
            "attendance_rate": round(present / total * 100, 2) if total else 0,
        },
        "teachers": {"total": 28000, "active": 27500},
        "tumanlarda": [
            {"tuman_nomi": "Qarshi", "schools_count": 180, "students_total": 65000, "students_present": 61880, "attendance_rate": 95.2},
            {"tuman_nomi": "Koson", "schools_count": 110, "students_total": 42000, "students_present": 39522, "attendance_rate": 94.1},
        ],
        "shaxarlarda": [
            {"shahar_nomi": "Shahrisabz", "schools_count": 25, "students_total": 15000, "students_present": 14220, "attendance_rate": 94.8},
        ],
    }
    data.update(extra)
    return AttendanceSnapshot.model_validate(data)


def stats_message(snapshot: AttendanceSnapshot) -> dict:
    return {
        "type": "stats",
        "timestamp": "2025-12-02T08:00:00.000Z",
        "data": snapshot.model_dump(mode="json"),
    }


async def settle(rounds: int = 20) -> None:
    """Let background tasks run until they block."""
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def store() -> InMemoryDayStore:
    return InMemoryDayStore()


@pytest.fixture
def aggregator(store) -> Aggregator:
    return Aggregator(store)


@pytest.fixture
def connector() -> FakeConnector:
    return FakeConnector()
