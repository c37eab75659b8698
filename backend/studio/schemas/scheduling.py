# backend/studio/schemas/scheduling.py
"""
Request models for the session write path and class schedule.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import Field, field_validator, model_validator

from .base import StrictRequestModel, require_aware


class SessionCreate(StrictRequestModel):
    """Input for a new individual session (or blocked time when ``client_id`` is empty)."""

    room_id: str = Field(..., min_length=1, max_length=26)
    staff_id: str = Field(..., min_length=1, max_length=26)
    client_id: Optional[str] = Field(default=None, max_length=26)
    start_at: datetime
    end_at: datetime
    title: Optional[str] = Field(default=None, max_length=200)
    notes: Optional[str] = None

    @field_validator("start_at", "end_at")
    @classmethod
    def ensure_timezone(cls, value: Optional[datetime]) -> Optional[datetime]:
        return require_aware(value)

    @model_validator(mode="after")
    def check_order(self) -> "SessionCreate":
        if self.end_at <= self.start_at:
            raise ValueError("end_at must be after start_at")
        return self


class SessionUpdate(StrictRequestModel):
    """Partial update; omitted fields keep their stored values."""

    room_id: Optional[str] = Field(default=None, min_length=1, max_length=26)
    staff_id: Optional[str] = Field(default=None, min_length=1, max_length=26)
    client_id: Optional[str] = Field(default=None, max_length=26)
    start_at: Optional[datetime] = None
    end_at: Optional[datetime] = None
    title: Optional[str] = Field(default=None, max_length=200)
    notes: Optional[str] = None

    @field_validator("start_at", "end_at")
    @classmethod
    def ensure_timezone(cls, value: Optional[datetime]) -> Optional[datetime]:
        return require_aware(value)

    @model_validator(mode="after")
    def check_order(self) -> "SessionUpdate":
        if self.start_at and self.end_at and self.end_at <= self.start_at:
            raise ValueError("end_at must be after start_at")
        return self


class SessionUpsert(SessionCreate):
    """Create when ``session_id`` is empty, otherwise reschedule that session."""

    session_id: Optional[str] = Field(default=None, max_length=26)


class OccurrenceCreate(StrictRequestModel):
    """
    Input for scheduling one class occurrence.

    Capacity, credits and duration fall back to the template when omitted.
    """

    template_id: Optional[str] = Field(default=None, max_length=26)
    title: Optional[str] = Field(default=None, max_length=200)
    room_id: str = Field(..., min_length=1, max_length=26)
    trainer_id: str = Field(..., min_length=1, max_length=26)
    start_at: datetime
    end_at: Optional[datetime] = None
    capacity: Optional[int] = Field(default=None, gt=0)
    credits_required: Optional[int] = Field(default=None, ge=1)
    price: Optional[Decimal] = Field(default=None, ge=0)

    @field_validator("start_at", "end_at")
    @classmethod
    def ensure_timezone(cls, value: Optional[datetime]) -> Optional[datetime]:
        return require_aware(value)

    @model_validator(mode="after")
    def check_shape(self) -> "OccurrenceCreate":
        if self.end_at is not None and self.end_at <= self.start_at:
            raise ValueError("end_at must be after start_at")
        if self.end_at is None and self.template_id is None:
            raise ValueError("end_at is required when no template is given")
        return self


class OccurrenceReschedule(StrictRequestModel):
    start_at: datetime
    end_at: datetime
    room_id: Optional[str] = Field(default=None, min_length=1, max_length=26)
    trainer_id: Optional[str] = Field(default=None, min_length=1, max_length=26)

    @field_validator("start_at", "end_at")
    @classmethod
    def ensure_timezone(cls, value: Optional[datetime]) -> Optional[datetime]:
        return require_aware(value)

    @model_validator(mode="after")
    def check_order(self) -> "OccurrenceReschedule":
        if self.end_at <= self.start_at:
            raise ValueError("end_at must be after start_at")
        return self
