# backend/tests/conftest.py
"""
Shared fixtures for the studio scheduling tests.

Each test gets its own file-backed SQLite database so threaded tests can open
independent connections. The engine is built by ``build_engine``, so writers
are serialized by BEGIN IMMEDIATE exactly as in a local deployment.
"""

from datetime import datetime, timedelta
from decimal import Decimal
from typing import Callable, Iterator, Optional

import pytest
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from studio.core.config import BookingPolicy
from studio.core.enums import OccurrenceStatus, PassStatus
from studio.database import build_engine, create_schema
from studio.models import ClassOccurrence, ClassTemplate, Client, Pass, Room, StaffMember

from scheduling_helpers import at


@pytest.fixture
def engine(tmp_path) -> Iterator[Engine]:
    test_engine = build_engine(f"sqlite:///{tmp_path / 'studio-test.db'}", echo=False)
    create_schema(bind=test_engine)
    yield test_engine
    test_engine.dispose()


@pytest.fixture
def session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=engine, expire_on_commit=False)


@pytest.fixture
def db(session_factory: sessionmaker) -> Iterator[Session]:
    session = session_factory()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture
def policy() -> BookingPolicy:
    return BookingPolicy(cancellation_window_hours=24, credit_price=Decimal("1000"))


@pytest.fixture
def make_room(db: Session) -> Callable[..., Room]:
    counter = {"n": 0}

    def _make(name: Optional[str] = None) -> Room:
        counter["n"] += 1
        room = Room(name=name or f"Room {counter['n']}")
        db.add(room)
        db.commit()
        return room

    return _make


@pytest.fixture
def make_staff(db: Session) -> Callable[..., StaffMember]:
    counter = {"n": 0}

    def _make(full_name: Optional[str] = None) -> StaffMember:
        counter["n"] += 1
        staff = StaffMember(full_name=full_name or f"Trainer {counter['n']}")
        db.add(staff)
        db.commit()
        return staff

    return _make


@pytest.fixture
def make_client(db: Session) -> Callable[..., Client]:
    counter = {"n": 0}

    def _make(full_name: Optional[str] = None) -> Client:
        counter["n"] += 1
        client = Client(
            full_name=full_name or f"Client {counter['n']}",
            email=f"client{counter['n']}@example.com",
        )
        db.add(client)
        db.commit()
        return client

    return _make


@pytest.fixture
def make_pass(db: Session) -> Callable[..., Pass]:
    def _make(
        client: Client,
        credits: int = 10,
        *,
        credits_left: Optional[int] = None,
        valid_from: Optional[datetime] = None,
        valid_until: Optional[datetime] = None,
        status: str = PassStatus.ACTIVE.value,
        created_at: Optional[datetime] = None,
    ) -> Pass:
        created = created_at or at(days=-30)
        pass_ = Pass(
            client_id=client.id,
            total_credits=credits,
            credits_left=credits if credits_left is None else credits_left,
            valid_from=valid_from or at(days=-30),
            valid_until=valid_until,
            status=status,
            created_at=created,
            updated_at=created,
        )
        db.add(pass_)
        db.commit()
        return pass_

    return _make


@pytest.fixture
def make_template(db: Session) -> Callable[..., ClassTemplate]:
    def _make(
        name: str = "Vinyasa Flow",
        duration_minutes: int = 60,
        capacity: int = 10,
        credits_required: int = 1,
        base_price: Optional[Decimal] = None,
    ) -> ClassTemplate:
        template = ClassTemplate(
            name=name,
            duration_minutes=duration_minutes,
            capacity=capacity,
            credits_required=credits_required,
            base_price=base_price,
        )
        db.add(template)
        db.commit()
        return template

    return _make


@pytest.fixture
def make_occurrence(db: Session, make_room, make_staff) -> Callable[..., ClassOccurrence]:
    def _make(
        *,
        start_at: Optional[datetime] = None,
        duration_hours: float = 1,
        capacity: int = 10,
        credits_required: int = 1,
        price: Optional[Decimal] = None,
        room: Optional[Room] = None,
        trainer: Optional[StaffMember] = None,
        template: Optional[ClassTemplate] = None,
        status: str = OccurrenceStatus.SCHEDULED.value,
    ) -> ClassOccurrence:
        start = start_at or at(days=3)
        occurrence = ClassOccurrence(
            template_id=template.id if template else None,
            title="Morning Pilates",
            room_id=(room or make_room()).id,
            trainer_id=(trainer or make_staff()).id,
            start_at=start,
            end_at=start + timedelta(hours=duration_hours),
            capacity=capacity,
            credits_required=credits_required,
            price=price,
            status=status,
        )
        db.add(occurrence)
        db.commit()
        return occurrence

    return _make
