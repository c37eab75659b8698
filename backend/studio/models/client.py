# backend/studio/models/client.py
from decimal import Decimal

from sqlalchemy import CheckConstraint, Column, Numeric, String
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import ulid

from ..database import Base
from .types import UTCDateTime, now_utc


class Client(Base):
    """
    A studio client.

    ``unpaid_balance`` is the running amount owed for classes booked while no
    credit pass was available.
    """

    __tablename__ = "clients"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    full_name = Column(String(200), nullable=False)
    email = Column(String(255), nullable=True, unique=True)
    phone = Column(String(50), nullable=True)
    unpaid_balance = Column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    created_at = Column(UTCDateTime, nullable=False, default=now_utc, server_default=func.now())
    updated_at = Column(
        UTCDateTime,
        nullable=False,
        default=now_utc,
        server_default=func.now(),
        onupdate=now_utc,
    )

    passes = relationship("Pass", back_populates="client", lazy="select")

    __table_args__ = (CheckConstraint("unpaid_balance >= 0", name="ck_clients_unpaid_balance"),)

    def __repr__(self) -> str:
        return f"<Client {self.id} {self.full_name!r}>"
