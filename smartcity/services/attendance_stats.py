"""Attendance statistics over a period of stored day documents."""
from __future__ import annotations

import calendar
from datetime import date, datetime, timedelta
from typing import Iterable, Optional

import pandas as pd

from smartcity.models.attendance import AttendanceDay

FIGURES = ["students_total", "students_present", "schools_total"]


def period_date_range(
    period: str = "weekly",
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
    today: Optional[date] = None,
) -> tuple[Optional[str], str]:
    """(start, end) ISO dates for a period; an explicit start and end win."""
    today = today or datetime.utcnow().date()
    if start_date and end_date:
        return start_date, end_date

    if period == "weekly":
        return (today - timedelta(days=7)).isoformat(), today.isoformat()
    if period == "monthly":
        last_day = calendar.monthrange(today.year, today.month)[1]
        return today.replace(day=1).isoformat(), today.replace(day=last_day).isoformat()
    if period == "yearly":
        return date(today.year, 1, 1).isoformat(), date(today.year, 12, 31).isoformat()
    if period == "full":
        return None, today.isoformat()
    return today.isoformat(), today.isoformat()


def _slot_rows(days: Iterable[AttendanceDay], shift_key: Optional[str]) -> list[dict]:
    rows = []
    for day in days:
        for key, slot in day.shift_slots.populated():
            if shift_key and key != shift_key:
                continue
            students = slot.summary.students
            schools = slot.summary.schools
            rows.append(
                {
                    "date": day.date,
                    "region": day.region.name or "Unknown",
                    "shift": key,
                    "students_total": students.total if students else 0,
                    "students_present": students.present_today if students else 0,
                    "schools_total": schools.total if schools else 0,
                }
            )
    return rows


def _with_rate(frame: pd.DataFrame) -> pd.DataFrame:
    rate = (frame["students_present"] / frame["students_total"] * 100).round(2)
    frame["attendance_rate"] = rate.where(frame["students_total"] > 0, 0.0)
    return frame


def _breakdown(df: pd.DataFrame, by: str) -> list[dict]:
    grouped = df.groupby(by, sort=True)[FIGURES].sum().reset_index()
    return _with_rate(grouped).to_dict("records")


def aggregate_period_stats(days: Iterable[AttendanceDay], shift_key: Optional[str] = None) -> dict:
    """Totals plus daily, region and shift breakdowns over every populated slot."""
    rows = _slot_rows(days, shift_key)
    if not rows:
        return {
            "records": 0,
            "total_students": 0,
            "total_present": 0,
            "total_schools": 0,
            "average_attendance": 0.0,
            "daily_breakdown": [],
            "region_breakdown": [],
            "shift_breakdown": [],
        }

    df = pd.DataFrame(rows)
    total_students = int(df["students_total"].sum())
    total_present = int(df["students_present"].sum())
    average = round(total_present / total_students * 100, 2) if total_students else 0.0
    return {
        "records": len(rows),
        "total_students": total_students,
        "total_present": total_present,
        "total_schools": int(df["schools_total"].sum()),
        "average_attendance": average,
        "daily_breakdown": _breakdown(df, "date"),
        "region_breakdown": _breakdown(df, "region"),
        "shift_breakdown": _breakdown(df, "shift"),
    }
