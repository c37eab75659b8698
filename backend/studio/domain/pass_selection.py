"""
Pure pass-selection rules for the credit ledger.

These functions take the passes read inside the ledger's lock scope and return
a decision; they hold no state between calls.
"""

from __future__ import annotations

from datetime import datetime
from typing import Iterable, List, Optional, Protocol, Sequence, TypeVar


class PassLike(Protocol):
    id: str
    status: str
    total_credits: int
    credits_left: int
    valid_from: datetime
    valid_until: Optional[datetime]
    created_at: datetime
    updated_at: datetime


P = TypeVar("P", bound=PassLike)

ACTIVE = "active"


def is_pass_available(pass_: PassLike, now: datetime, credits: int = 1) -> bool:
    """Active, holding at least ``credits`` credits, and ``now`` inside the validity window."""
    if pass_.status != ACTIVE:
        return False
    if pass_.credits_left < max(credits, 1):
        return False
    if pass_.valid_from > now:
        return False
    if pass_.valid_until is not None and now > pass_.valid_until:
        return False
    return True


def available_passes(passes: Iterable[P], now: datetime, credits: int = 1) -> List[P]:
    return [p for p in passes if is_pass_available(p, now, credits)]


def _deduction_key(pass_: PassLike) -> tuple:
    # Open-ended passes sort after every dated pass
    expires = pass_.valid_until
    return (expires is None, expires or pass_.created_at, pass_.created_at, pass_.id)


def select_pass(passes: Sequence[P], now: datetime, credits: int = 1) -> Optional[P]:
    """
    Pick the pass a deduction should consume.

    Among available passes: soonest ``valid_until`` first, ties broken by the
    oldest ``created_at``, then by id.
    """
    candidates = available_passes(passes, now, credits)
    if not candidates:
        return None
    return min(candidates, key=_deduction_key)


def has_refund_room(pass_: PassLike) -> bool:
    return pass_.credits_left < pass_.total_credits


def select_refund_target(passes: Sequence[P]) -> Optional[P]:
    """
    Pick the pass that receives a refund when the caller did not name one.

    The most recently updated pass with ``credits_left < total_credits`` wins;
    ties fall to the newest id.
    """
    candidates = [p for p in passes if has_refund_room(p)]
    if not candidates:
        return None
    return max(candidates, key=lambda p: (p.updated_at, p.id))


def total_credits(passes: Iterable[PassLike], now: datetime) -> int:
    return sum(p.credits_left for p in available_passes(passes, now))
