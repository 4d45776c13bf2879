from datetime import date
from typing import Literal, Optional

from fastapi import APIRouter, HTTPException, Query

from smartcity.api.deps import DayStore, LiveFeed, Selector
from smartcity.models.attendance import shift_key_for
from smartcity.services.attendance_stats import aggregate_period_stats, period_date_range
from smartcity.services.read_side import ReadMode, geography_breakdown

router = APIRouter()

Period = Literal["weekly", "monthly", "yearly", "full"]


def _parse_date(date_str: str) -> str:
    try:
        return date.fromisoformat(date_str).isoformat()
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid date format (YYYY-MM-DD)")


def _parse_shift(shift: Optional[int]) -> Optional[int]:
    # 0 and "not given" both mean all shifts
    if not shift:
        return None
    if shift not in (1, 2, 3):
        raise HTTPException(status_code=400, detail="shift must be 0, 1, 2 or 3")
    return shift


@router.get("/live")
async def get_live_attendance(
    feed: LiveFeed,
    selector: Selector,
    mode: ReadMode = Query(ReadMode.REALTIME),
    date_str: Optional[str] = Query(None, alias="date"),
    shift: Optional[int] = Query(None),
    interval: Optional[int] = Query(None),
    region_id: Optional[int] = Query(None),
    tuman_id: Optional[int] = Query(None),
):
    """Latest attendance: the live buffer (realtime) or the stored day (archive)."""
    selected_date = _parse_date(date_str) if date_str else None
    shift_no = _parse_shift(shift)

    if mode is ReadMode.REALTIME:
        await feed.configure(shift_no=shift_no, date=selected_date, interval=interval, tuman_id=tuman_id)

    result = await selector.read(mode, selected_date, shift_no, region_id=region_id, tuman_id=tuman_id)
    return {
        **result.model_dump(mode="json"),
        "live": mode is ReadMode.REALTIME and feed.is_realtime,
        "feed": feed.status(),
    }


@router.get("/days/{date_str}")
async def get_day_documents(date_str: str, store: DayStore):
    """Every stored document (region-wide and per tuman) for a date."""
    day = _parse_date(date_str)
    documents = await store.list_for_date(day)
    return {
        "date": day,
        "documents": [doc.model_dump(mode="json", exclude={"revision_id"}) for doc in documents],
    }


@router.get("/days/{date_str}/breakdown")
async def get_day_breakdown(
    date_str: str,
    store: DayStore,
    region_id: Optional[int] = Query(None),
    tuman_id: Optional[int] = Query(None),
):
    """District and city figures side by side for each shift."""
    day = _parse_date(date_str)
    document = await store.find_for_date(day, region_id=region_id, tuman_id=tuman_id)
    if document is None:
        return {"date": day, "found": False, "totals": None, "districts": [], "cities": []}
    return {
        "date": day,
        "found": True,
        "totals": document.totals.model_dump(),
        **geography_breakdown(document),
    }


@router.get("/stats")
async def get_attendance_stats(
    store: DayStore,
    period: Period = Query("weekly"),
    start_date: Optional[str] = Query(None),
    end_date: Optional[str] = Query(None),
    region_id: Optional[int] = Query(None),
    shift: Optional[int] = Query(None),
):
    """Attendance statistics over a period with daily, region and shift breakdowns."""
    start = _parse_date(start_date) if start_date else None
    end = _parse_date(end_date) if end_date else None
    start, end = period_date_range(period, start, end)
    shift_no = _parse_shift(shift)

    documents = await store.list_between(start, end, region_id=region_id)
    shift_key = shift_key_for(shift_no) if shift_no is not None else None
    return {
        "data": aggregate_period_stats(documents, shift_key=shift_key),
        "period": period,
        "date_range": {"start": start, "end": end},
    }


@router.get("/feed/status")
async def get_feed_status(feed: LiveFeed):
    return feed.status()
