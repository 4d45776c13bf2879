import asyncio
from datetime import datetime

import pytest
from beanie import init_beanie
from conftest import make_snapshot
from mongomock_motor import AsyncMongoMockClient
from pymongo.errors import DuplicateKeyError

from smartcity.models.attendance import SHIFT_KEYS, DayDocument
from smartcity.services.aggregator import Aggregator, compute_totals
from smartcity.services.day_store import BeanieDayStore, DayKey

KEY = DayKey(date="2025-12-02", region_id=1)


@pytest.fixture
async def mongo_store():
    client = AsyncMongoMockClient()
    await init_beanie(database=client["smartcity_test"], document_models=[DayDocument])
    yield BeanieDayStore()
    client.close()


@pytest.fixture
def mongo_aggregator(mongo_store):
    return Aggregator(mongo_store)


async def test_two_shifts_share_one_document(mongo_aggregator, mongo_store):
    await mongo_aggregator.merge_snapshot(make_snapshot(shift_no=1, total=450000, present=425000))
    day = await mongo_aggregator.merge_snapshot(make_snapshot(shift_no=2, total=445000, present=418000))

    assert day.totals.model_dump() == {"total_present": 843000, "total_students": 895000, "overall_rate": 94.19}
    assert await DayDocument.find_all().count() == 1

    stored = await mongo_store.get(KEY)
    assert stored.shift_slots.shift1.summary.students.total == 450000
    assert stored.shift_slots.shift2.summary.students.total == 445000
    assert stored.totals == day.totals
    assert stored.region.name == "Qashqadaryo"


async def test_slot_write_keeps_siblings_and_creation_fields(mongo_aggregator, mongo_store):
    await mongo_aggregator.merge_snapshot(make_snapshot(shift_no=3, total=250, present=200))
    created = await mongo_store.get(KEY)
    await mongo_aggregator.merge_snapshot(make_snapshot(shift_no=None, total=1000, present=900))
    day = await mongo_aggregator.merge_snapshot(make_snapshot(shift_no=3, total=260, present=210))

    assert day.shift_slots.all.summary.students.total == 1000
    assert day.shift_slots.shift3.summary.students.total == 260
    assert day.shift_slots.shift1 is None
    assert day.totals.total_students == 1260
    assert day.created_at == created.created_at
    assert day.type.value == "realtime"

    raw = await DayDocument.get_motor_collection().find_one(KEY.as_filter())
    assert set(raw["shift_slots"]) == set(SHIFT_KEYS)


async def test_writers_with_separate_locks_leave_consistent_totals(mongo_store):
    """Two aggregators stand in for the API process and the collector."""
    first, second = Aggregator(mongo_store), Aggregator(mongo_store)
    snapshots = [make_snapshot(shift_no=shift_no, total=100 * n, present=90 * n)
                 for n, shift_no in enumerate((None, 1, 2, 3), start=1)]

    await asyncio.gather(
        *(aggregator.merge_snapshot(snapshot)
          for snapshot in snapshots
          for aggregator in (first, second))
    )

    day = await mongo_store.get(KEY)
    assert await DayDocument.find_all().count() == 1
    assert day.totals == compute_totals(day.shift_slots)
    assert day.totals.total_students == 1000


async def test_duplicate_key_on_insert_retries_as_update(mongo_store, monkeypatch):
    upsert = mongo_store._upsert
    calls = []

    async def racing_upsert(key, pipeline):
        calls.append(key)
        if len(calls) == 1:
            raise DuplicateKeyError("E11000 duplicate key error")
        return await upsert(key, pipeline)

    monkeypatch.setattr(mongo_store, "_upsert", racing_upsert)

    day = await Aggregator(mongo_store).merge_snapshot(make_snapshot(shift_no=1, total=10, present=5))

    assert len(calls) == 2
    assert day.totals.overall_rate == 50.0


async def test_region_and_tuman_documents_are_kept_apart(mongo_aggregator, mongo_store):
    await mongo_aggregator.merge_snapshot(make_snapshot(shift_no=1, total=1000, present=900))
    await mongo_aggregator.merge_snapshot(make_snapshot(shift_no=1, total=100, present=50), tuman_id=7)

    region_day = await mongo_store.get(KEY)
    tuman_day = await mongo_store.get(DayKey("2025-12-02", 1, 7))
    assert region_day.tuman_id is None
    assert region_day.totals.total_students == 1000
    assert tuman_day.totals.total_students == 100
    assert [d.tuman_id for d in await mongo_store.list_for_date("2025-12-02")] == [None, 7]


async def test_find_for_date_prefers_lowest_region(mongo_aggregator, mongo_store):
    await mongo_aggregator.merge_snapshot(make_snapshot(shift_no=1, region_id=5, total=500, present=400))
    await mongo_aggregator.merge_snapshot(make_snapshot(shift_no=1, region_id=2, total=200, present=100))

    assert (await mongo_store.find_for_date("2025-12-02")).region.id == 2
    assert (await mongo_store.find_for_date("2025-12-02", region_id=5)).region.id == 5
    assert await mongo_store.find_for_date("2025-12-02", tuman_id=7) is None


async def test_list_between_returns_region_documents_in_range(mongo_aggregator, mongo_store):
    for date in ("2025-12-01", "2025-12-02", "2025-12-20"):
        await mongo_aggregator.merge_snapshot(make_snapshot(date=date, shift_no=1))
    await mongo_aggregator.merge_snapshot(make_snapshot(date="2025-12-02", shift_no=1), tuman_id=7)

    days = await mongo_store.list_between("2025-12-01", "2025-12-10")

    assert [(d.date, d.tuman_id) for d in days] == [("2025-12-01", None), ("2025-12-02", None)]
    assert len(await mongo_store.list_between(None, None)) == 3


async def test_received_at_is_stored_on_the_slot(mongo_aggregator, mongo_store):
    received_at = datetime(2025, 12, 2, 8, 0)
    snapshot = make_snapshot(shift_no=2).model_copy(update={"received_at": received_at})

    await mongo_aggregator.merge_snapshot(snapshot)

    assert (await mongo_store.get(KEY)).shift_slots.shift2.received_at == received_at
