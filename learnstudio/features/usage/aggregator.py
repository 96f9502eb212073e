"""
Usage aggregation for billing periods.

Turns the append-only usage_events log into a UsageSnapshot for one org and
one half-open period [period_start, period_end). The aggregation runs as a
single statement in the database.
"""

import logging
from datetime import date, datetime, time, timezone
from typing import Optional, Tuple

from sqlalchemy import and_, case, distinct, func, or_, select

from learnstudio.core.database import get_db_session, usage_events
from learnstudio.models.usage_event import UsageEventType, UsageSnapshot

logger = logging.getLogger("learnstudio.usage")

ACTIVE_STUDENT_EVENTS = (UsageEventType.STUDENT_ACTIVE.value, UsageEventType.STUDENT_LOGIN.value)
STORAGE_ADD_EVENTS = (UsageEventType.VIDEO_UPLOAD.value, UsageEventType.STORAGE_UPLOAD.value)
STORAGE_REMOVE_EVENTS = (UsageEventType.VIDEO_DELETE.value, UsageEventType.STORAGE_DELETE.value)


def first_of_month(day: date) -> date:
    return day.replace(day=1)


def add_months(day: date, months: int) -> date:
    """First day of the month `months` away from `day` (negative goes back)."""
    index = day.year * 12 + (day.month - 1) + months
    return date(index // 12, index % 12 + 1, 1)


def current_month_period(today: Optional[date] = None) -> Tuple[date, date]:
    today = today or datetime.now(timezone.utc).date()
    start = first_of_month(today)
    return start, add_months(start, 1)


def _to_datetime(value) -> datetime:
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)
    return datetime.combine(value, time.min, tzinfo=timezone.utc)


def get_usage(
    org_id: str,
    period_start: Optional[date] = None,
    period_end: Optional[date] = None,
) -> UsageSnapshot:
    """
    Aggregate usage for an organization over [period_start, period_end).

    Defaults to the current calendar month (UTC) when either bound is missing.

    - active_students: distinct users with student.active/student.login in the period
    - video_storage_bytes: uploads minus deletes over all history before
      period_end, floored at 0 (a point-in-time total)
    - video_bandwidth_bytes: video.stream bytes in the period
    - certificates_issued: certificate.issued count in the period
    """
    if period_start is None or period_end is None:
        default_start, default_end = current_month_period()
        period_start = period_start or default_start
        period_end = period_end or default_end

    start_dt = _to_datetime(period_start)
    end_dt = _to_datetime(period_end)

    col = usage_events.c
    in_period = col.created_at >= start_dt
    event_is = col.event_type

    stmt = (
        select(
            func.count(
                distinct(
                    case(
                        (and_(in_period, event_is.in_(ACTIVE_STUDENT_EVENTS)), col.user_id),
                        else_=None,
                    )
                )
            ).label("active_students"),
            func.coalesce(
                func.sum(case((event_is.in_(STORAGE_ADD_EVENTS), col.quantity), else_=0)), 0
            ).label("storage_added"),
            func.coalesce(
                func.sum(case((event_is.in_(STORAGE_REMOVE_EVENTS), col.quantity), else_=0)), 0
            ).label("storage_removed"),
            func.coalesce(
                func.sum(
                    case(
                        (and_(in_period, event_is == UsageEventType.VIDEO_STREAM.value), col.quantity),
                        else_=0,
                    )
                ),
                0,
            ).label("bandwidth"),
            func.coalesce(
                func.sum(
                    case(
                        (and_(in_period, event_is == UsageEventType.CERTIFICATE_ISSUED.value), col.quantity),
                        else_=0,
                    )
                ),
                0,
            ).label("certificates"),
        )
        .where(col.org_id == org_id)
        .where(col.created_at < end_dt)
        .where(
            or_(
                in_period,
                event_is.in_(STORAGE_ADD_EVENTS + STORAGE_REMOVE_EVENTS),
            )
        )
    )

    with get_db_session() as session:
        row = session.execute(stmt).one()

    storage = max(0, int((row.storage_added or 0) - (row.storage_removed or 0)))
    snapshot = UsageSnapshot(
        active_students=int(row.active_students or 0),
        video_storage_bytes=storage,
        video_bandwidth_bytes=int(row.bandwidth or 0),
        certificates_issued=int(row.certificates or 0),
    )

    logger.debug(
        "usage.aggregated",
        extra={"org_id": org_id, "period_start": str(period_start), "period_end": str(period_end)},
    )
    return snapshot
