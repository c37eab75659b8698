# backend/studio/models/resource.py
"""
Schedulable resources: rooms and staff members.

A resource's calendar is the union of individual sessions and class
occurrences that reference it. Resources outlive any single interval, so no
cascade deletes are configured from here.
"""

from sqlalchemy import Boolean, Column, Integer, String
from sqlalchemy.sql import func
import ulid

from ..database import Base
from .types import UTCDateTime, now_utc


class Room(Base):
    """A physical room that can host one session or class at a time."""

    __tablename__ = "rooms"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    name = Column(String(100), nullable=False, unique=True)
    max_occupancy = Column(Integer, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(UTCDateTime, nullable=False, default=now_utc, server_default=func.now())

    def __repr__(self) -> str:
        return f"<Room {self.id} {self.name!r}>"


class StaffMember(Base):
    """A trainer or other staff member whose time is allocated exclusively."""

    __tablename__ = "staff_members"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    full_name = Column(String(200), nullable=False)
    email = Column(String(255), nullable=True, unique=True)
    role = Column(String(30), nullable=False, default="trainer")
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(UTCDateTime, nullable=False, default=now_utc, server_default=func.now())

    def __repr__(self) -> str:
        return f"<StaffMember {self.id} {self.full_name!r}>"
