"""
Base schemas shared by request and result models.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict


class StandardizedModel(BaseModel):
    """Base model for results handed back to callers."""

    model_config = ConfigDict(use_enum_values=True, populate_by_name=True)


class StrictRequestModel(BaseModel):
    """Request models: forbid extras, validate defaults and assignments."""

    model_config = ConfigDict(
        extra="forbid",
        validate_default=True,
        validate_assignment=True,
    )


def require_aware(value: Optional[datetime]) -> Optional[datetime]:
    """Reject naive datetimes; every instant in the core carries a timezone."""
    if value is None:
        return value
    if value.tzinfo is None or value.tzinfo.utcoffset(value) is None:
        raise ValueError("datetime must include a timezone offset")
    return value
