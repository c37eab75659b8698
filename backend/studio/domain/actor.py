"""Who is performing a write, as far as the scheduling core cares."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

from ..core.enums import PRIVILEGED_ROLES, ActorRole


@dataclass(frozen=True)
class Actor:
    id: Optional[str]
    role: ActorRole = ActorRole.CLIENT

    @property
    def is_privileged(self) -> bool:
        """Staff and admins may cancel inside the locked window."""
        return ActorRole(self.role).value in PRIVILEGED_ROLES

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "role": ActorRole(self.role).value}

    @classmethod
    def client(cls, client_id: str) -> "Actor":
        return cls(id=client_id, role=ActorRole.CLIENT)

    @classmethod
    def staff(cls, staff_id: str) -> "Actor":
        return cls(id=staff_id, role=ActorRole.STAFF)

    @classmethod
    def admin(cls, admin_id: Optional[str] = None) -> "Actor":
        return cls(id=admin_id, role=ActorRole.ADMIN)


SYSTEM_ACTOR = Actor(id=None, role=ActorRole.SYSTEM)
