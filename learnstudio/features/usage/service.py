"""
learnstudio/features/usage/service.py

Usage event recording.

Handles:
- Usage event emission (append-only, never raises to the caller)
- Convenience wrappers for common events
- Usage event queries
"""

import logging
from datetime import datetime, timezone
from typing import Dict, Optional, Any, List, Union

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import select, insert

from learnstudio.core.database import get_db_session, usage_events
from learnstudio.models.usage_event import UsageEvent, UsageEventType

_logger = logging.getLogger("learnstudio.usage")


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def record_usage_event(
    org_id: str,
    event_type: Union[UsageEventType, str],
    quantity: float = 1,
    unit: Optional[str] = None,
    resource_id: Optional[str] = None,
    resource_type: Optional[str] = None,
    user_id: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None,
    created_at: Optional[datetime] = None,
    logger: Optional[logging.Logger] = None,
) -> None:
    """
    Append one usage event.

    Never raises: usage tracking must not abort the operation that produced
    the event (a video upload succeeds even if this write fails). Failures are
    logged on `logger` (defaults to "learnstudio.usage") and dropped.

    Retried callers may produce duplicates; nothing here deduplicates them.
    """
    log = logger or _logger
    try:
        event = UsageEvent(
            org_id=org_id,
            event_type=event_type,
            quantity=quantity,
            unit=unit,
            resource_id=resource_id,
            resource_type=resource_type,
            user_id=user_id,
            metadata=metadata or {},
            created_at=created_at or datetime.now(timezone.utc),
        )
    except PydanticValidationError as exc:
        log.error(
            "usage.record_rejected",
            extra={"org_id": org_id, "event_type": str(event_type), "error_message": str(exc)},
        )
        return

    try:
        with get_db_session() as session:
            session.execute(
                insert(usage_events).values(
                    org_id=event.org_id,
                    event_type=event.event_type.value,
                    quantity=event.quantity,
                    unit=event.unit,
                    resource_id=event.resource_id,
                    resource_type=event.resource_type,
                    user_id=event.user_id,
                    metadata=event.metadata,
                    created_at=event.created_at,
                )
            )
    except Exception:
        log.error(
            "usage.record_failed",
            exc_info=True,
            extra={"org_id": org_id, "event_type": event.event_type.value},
        )


def track_certificate_issued(org_id: str, user_id: str, certificate_id: str, course_id: str) -> None:
    """Track a certificate issuance."""
    record_usage_event(
        org_id=org_id,
        event_type=UsageEventType.CERTIFICATE_ISSUED,
        quantity=1,
        unit="count",
        resource_id=certificate_id,
        resource_type="certificate",
        user_id=user_id,
        metadata={"course_id": course_id},
    )


def track_video_upload(org_id: str, lesson_id: str, bytes: int) -> None:
    """Track a video upload (adds to storage)."""
    record_usage_event(
        org_id=org_id,
        event_type=UsageEventType.VIDEO_UPLOAD,
        quantity=bytes,
        unit="bytes",
        resource_id=lesson_id,
        resource_type="lesson",
    )


def track_video_delete(org_id: str, lesson_id: str, bytes: int) -> None:
    """Track a video deletion (subtracts from storage)."""
    record_usage_event(
        org_id=org_id,
        event_type=UsageEventType.VIDEO_DELETE,
        quantity=bytes,
        unit="bytes",
        resource_id=lesson_id,
        resource_type="lesson",
    )


def track_video_stream(org_id: str, lesson_id: str, bytes: int, user_id: Optional[str] = None) -> None:
    """Track bytes streamed to a student (bandwidth)."""
    record_usage_event(
        org_id=org_id,
        event_type=UsageEventType.VIDEO_STREAM,
        quantity=bytes,
        unit="bytes",
        resource_id=lesson_id,
        resource_type="lesson",
        user_id=user_id,
    )


def track_course_created(org_id: str, course_id: str) -> None:
    record_usage_event(
        org_id=org_id,
        event_type=UsageEventType.COURSE_CREATED,
        quantity=1,
        resource_id=course_id,
        resource_type="course",
    )


def track_course_published(org_id: str, course_id: str) -> None:
    record_usage_event(
        org_id=org_id,
        event_type=UsageEventType.COURSE_PUBLISHED,
        quantity=1,
        resource_id=course_id,
        resource_type="course",
    )


def track_active_student(org_id: str, user_id: str, course_id: Optional[str] = None) -> None:
    """Mark a student active for the org (counted once per period by the aggregator)."""
    record_usage_event(
        org_id=org_id,
        event_type=UsageEventType.STUDENT_ACTIVE,
        quantity=1,
        unit="count",
        resource_id=course_id,
        resource_type="course" if course_id else None,
        user_id=user_id,
    )


def get_usage_events(
    org_id: str,
    event_type: Optional[Union[UsageEventType, str]] = None,
    start_time: Optional[datetime] = None,
    end_time: Optional[datetime] = None,
) -> List[UsageEvent]:
    """
    Get usage events for an organization.

    Args:
        org_id: Organization to query
        event_type: Optional filter by event type
        start_time: Optional start of time window (inclusive)
        end_time: Optional end of time window (exclusive)

    Returns:
        List of UsageEvent instances ordered by created_at
    """
    with get_db_session() as session:
        query = select(usage_events).where(usage_events.c.org_id == org_id)

        if event_type:
            query = query.where(usage_events.c.event_type == UsageEventType(event_type).value)
        if start_time:
            query = query.where(usage_events.c.created_at >= _as_utc(start_time))
        if end_time:
            query = query.where(usage_events.c.created_at < _as_utc(end_time))

        rows = session.execute(query.order_by(usage_events.c.created_at, usage_events.c.id)).all()

        return [
            UsageEvent(
                org_id=row.org_id,
                event_type=row.event_type,
                quantity=row.quantity,
                unit=row.unit,
                resource_id=row.resource_id,
                resource_type=row.resource_type,
                user_id=row.user_id,
                metadata=row.metadata or {},
                created_at=row.created_at,
            )
            for row in rows
        ]
