# backend/studio/repositories/client_repository.py
from decimal import Decimal
import logging

from sqlalchemy import case, update
from sqlalchemy.orm import Session

from ..models.client import Client
from ..models.types import now_utc
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class ClientRepository(BaseRepository[Client]):
    """Clients and their running unpaid balance."""

    def __init__(self, db: Session):
        super().__init__(db, Client)

    def add_unpaid(self, client_id: str, amount: Decimal) -> None:
        """Increase the unpaid balance in SQL so concurrent writers never lose an update."""
        self.db.execute(
            update(Client)
            .where(Client.id == client_id)
            .values(unpaid_balance=Client.unpaid_balance + amount, updated_at=now_utc())
            .execution_options(synchronize_session=False)
        )

    def reduce_unpaid(self, client_id: str, amount: Decimal) -> None:
        """Decrease the unpaid balance, never below zero."""
        reduced = Client.unpaid_balance - amount
        self.db.execute(
            update(Client)
            .where(Client.id == client_id)
            .values(
                unpaid_balance=case((reduced < 0, Decimal("0")), else_=reduced),
                updated_at=now_utc(),
            )
            .execution_options(synchronize_session=False)
        )

    def get_unpaid_balance(self, client_id: str) -> Decimal:
        value = (
            self.db.query(Client.unpaid_balance).filter(Client.id == client_id).scalar()
        )
        return Decimal(value or 0)
