"""
learnstudio/models/usage_event.py

Usage event and usage snapshot models.

Usage events are immutable facts of platform consumption, owned by the
organization they reference. Snapshots are derived per billing period and
never persisted on their own.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Dict, Any
from pydantic import BaseModel, ConfigDict, Field, field_validator


class UsageEventType(str, Enum):
    STUDENT_LOGIN = "student.login"
    STUDENT_ACTIVE = "student.active"
    VIDEO_UPLOAD = "video.upload"
    VIDEO_STREAM = "video.stream"
    VIDEO_DELETE = "video.delete"
    CERTIFICATE_ISSUED = "certificate.issued"
    COURSE_CREATED = "course.created"
    COURSE_PUBLISHED = "course.published"
    LESSON_CREATED = "lesson.created"
    QUIZ_COMPLETED = "quiz.completed"
    STORAGE_UPLOAD = "storage.upload"
    STORAGE_DELETE = "storage.delete"


class UsageEvent(BaseModel):
    """
    UsageEvent records one unit (or byte-count) of consumption.

    Units:
    - bytes: video.upload, video.stream, video.delete, storage.*
    - count: student.active, certificate.issued, ...

    resource_id/resource_type point back at the lesson, course or certificate
    that produced the event; they are references, not ownership links.
    """
    model_config = ConfigDict(frozen=True)

    org_id: str = Field(..., min_length=1)
    event_type: UsageEventType
    quantity: float = Field(default=1, ge=0)
    unit: Optional[str] = None
    resource_id: Optional[str] = None
    resource_type: Optional[str] = None
    user_id: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: Optional[datetime] = None

    @field_validator("created_at")
    @classmethod
    def _normalize_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        # Naive timestamps are taken as UTC
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class UsageSnapshot(BaseModel):
    """Per-organization usage for one billing period."""
    model_config = ConfigDict(frozen=True)

    active_students: int = 0
    video_storage_bytes: int = 0  # current total, not a period delta
    video_bandwidth_bytes: int = 0  # period delta
    certificates_issued: int = 0  # period delta
