# backend/studio/repositories/__init__.py
"""
Repository layer for the studio scheduling core.

Key Components:
- BaseRepository: generic CRUD plus row-lock helper
- RepositoryFactory: creates repository instances for services
- CalendarRepository: room/staff calendars across sessions and class occurrences
- PassRepository: credit ledger reads and guarded decrements
- ClassOccurrenceRepository / ClassRegistrationRepository: capacity and waitlist queries

Usage:
    from studio.repositories import RepositoryFactory

    repository = RepositoryFactory.create_calendar_repository(db)
    intervals = repository.get_active_intervals(ResourceKind.ROOM, room_id, start, end)
"""

from .base_repository import BaseRepository, IRepository
from .factory import RepositoryFactory

__all__ = ["BaseRepository", "IRepository", "RepositoryFactory"]
