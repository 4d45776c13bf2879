"""Merge incoming attendance snapshots into per-day documents."""
from __future__ import annotations

import asyncio
import contextlib
import logging
import math
from collections import Counter
from datetime import datetime
from typing import Any, AsyncIterator, Optional

from pydantic import ValidationError
from pymongo.errors import PyMongoError

from smartcity.models.attendance import AttendanceDay, ShiftSlot, ShiftSlots, ShiftSummary, Totals
from smartcity.models.snapshot import AttendanceSnapshot
from smartcity.services.day_store import BeanieDayStore, DayKey

logger = logging.getLogger(__name__)


def attendance_rate(present: int, total: int) -> float:
    """Percentage rounded half-up to two decimals; 0 when nobody is enrolled."""
    if not total:
        return 0.0
    return math.floor(present / total * 10000 + 0.5) / 100


def compute_totals(slots: ShiftSlots) -> Totals:
    """Sum students over every populated slot; always recomputed from scratch."""
    total_present = 0
    total_students = 0
    for _, slot in slots.populated():
        students = slot.summary.students
        if students is None:
            continue
        total_present += students.present_today or 0
        total_students += students.total or 0
    return Totals(
        total_present=total_present,
        total_students=total_students,
        overall_rate=attendance_rate(total_present, total_students),
    )


def build_slot(snapshot: AttendanceSnapshot) -> ShiftSlot:
    return ShiftSlot(
        summary=ShiftSummary(
            schools=snapshot.schools,
            students=snapshot.students,
            teachers=snapshot.teachers,
        ),
        districts=list(snapshot.districts or []),
        cities=list(snapshot.cities or []),
        received_at=snapshot.received_at or datetime.utcnow(),
    )


class Aggregator:
    """Single write path into the day document store.

    Merges for the same (date, region, tuman) key run one at a time; merges
    for different keys do not wait on each other. A key's lock lives only
    while some merge holds or waits for it.
    """

    def __init__(self, store: Optional[BeanieDayStore] = None):
        self.store = store or BeanieDayStore()
        self._locks: dict[DayKey, asyncio.Lock] = {}
        self._lock_users: Counter[DayKey] = Counter()

    @contextlib.asynccontextmanager
    async def _key_lock(self, key: DayKey) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._lock_users[key] += 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[key] -= 1
            if not self._lock_users[key]:
                del self._lock_users[key]
                del self._locks[key]

    async def merge_snapshot(
        self,
        snapshot: AttendanceSnapshot | dict[str, Any],
        tuman_id: int | None = None,
    ) -> Optional[AttendanceDay]:
        """Write one snapshot into its shift slot and refresh the totals.

        Returns the merged document, or None when the snapshot was rejected
        or the write failed. Nothing is raised: the shift cycler will ask for
        the same shift again on its next rotation.
        """
        if not isinstance(snapshot, AttendanceSnapshot):
            try:
                snapshot = AttendanceSnapshot.model_validate(snapshot)
            except ValidationError as e:
                logger.warning(f"Rejected attendance snapshot: {e.error_count()} invalid field(s): {e.errors()[0]['msg']}")
                return None

        key = DayKey(date=snapshot.date, region_id=snapshot.region_id, tuman_id=tuman_id)
        shift_key = snapshot.shift_key
        slot = build_slot(snapshot)

        async with self._key_lock(key):
            try:
                document = await self.store.write_slot(key, shift_key, slot, region_name=snapshot.region_name)
            except PyMongoError as e:
                logger.error(f"Failed to store {shift_key} snapshot for {snapshot.date}: {e}")
                return None

        rate = snapshot.students.attendance_rate if snapshot.students else 0
        scope = f" | tuman {tuman_id}" if tuman_id is not None else ""
        logger.info(
            f"Merged {snapshot.date} | {shift_key}{scope} | rate {rate}% | "
            f"districts {len(slot.districts)} | cities {len(slot.cities)} | overall {document.totals.overall_rate}%"
        )
        return document
