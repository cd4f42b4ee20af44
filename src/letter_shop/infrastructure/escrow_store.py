"""In-memory escrow store.

Holds every offer the shop has advertised:

    condition   -> Escrow        (pending offers, then a capped LRU of settled ones)
    fulfillment -> Escrow        (resource lookup for paid or pending offers)

The store is owned by one SellerEscrowService; nothing here is module-level.
State changes go through the EscrowStateMachine guard, and an escrow leaves
PENDING at most once. Callers that check an escrow and then act on the ledger
must hold ``lock(condition)`` across both steps.
"""

from __future__ import annotations

import asyncio
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

from letter_shop.domain import condition as codec
from letter_shop.domain.enums import EscrowStatus
from letter_shop.domain.exceptions import EscrowNotFoundError, InvalidStateTransitionError
from letter_shop.domain.state_machine import validate_transition
from letter_shop.logging_config import get_logger

if TYPE_CHECKING:
    from collections.abc import Callable

logger = get_logger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Escrow:
    """One advertised offer: a hash-lock pair, a price and the resource it unlocks."""

    condition: bytes
    fulfillment: bytes = field(repr=False)
    resource: str = field(repr=False)
    price_required: int
    created_at: datetime
    expires_at: datetime
    status: EscrowStatus = EscrowStatus.PENDING
    transfer_id: str | None = None
    settled_at: datetime | None = None

    @property
    def condition_text(self) -> str:
        return codec.encode(self.condition)

    @property
    def fulfillment_text(self) -> str:
        return codec.encode(self.fulfillment)

    def is_expired(self, now: datetime) -> bool:
        return self.status is EscrowStatus.PENDING and now >= self.expires_at


_TRANSITION_EVENTS: dict[EscrowStatus, str] = {
    EscrowStatus.FULFILLED: "payment_released",
    EscrowStatus.REJECTED: "offer_withdrawn",
    EscrowStatus.EXPIRED: "offer_expired",
}


class EscrowStore:
    """Condition-keyed escrow table with per-condition locks."""

    def __init__(
        self,
        offer_ttl: timedelta = timedelta(hours=1),
        settled_cache_size: int = 1024,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        if settled_cache_size < 1:
            raise ValueError("settled_cache_size must be positive")
        self._offer_ttl = offer_ttl
        self._settled_cache_size = settled_cache_size
        self._clock = clock
        self._pending: dict[bytes, Escrow] = {}
        self._settled: OrderedDict[bytes, Escrow] = OrderedDict()
        self._by_fulfillment: dict[bytes, Escrow] = {}
        self._locks: dict[bytes, asyncio.Lock] = {}

    def __len__(self) -> int:
        return len(self._pending) + len(self._settled)

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def create(self, price: int, resource: str) -> Escrow:
        """Create a PENDING escrow under a condition not already in use.

        The resource is indexed by fulfillment before the escrow is returned,
        so it is retrievable as soon as the condition can be advertised.
        """
        while True:
            fulfillment, condition = codec.new_condition_pair()
            if condition not in self._pending and condition not in self._settled:
                break

        now = self._clock()
        escrow = Escrow(
            condition=condition,
            fulfillment=fulfillment,
            resource=resource,
            price_required=price,
            created_at=now,
            expires_at=now + self._offer_ttl,
        )
        self._pending[condition] = escrow
        self._by_fulfillment[fulfillment] = escrow

        logger.debug("escrow.created", condition=escrow.condition_text, price=price)
        return escrow

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def get_by_condition(self, condition: bytes) -> Escrow | None:
        escrow = self._pending.get(condition)
        if escrow is not None:
            return escrow
        escrow = self._settled.get(condition)
        if escrow is not None:
            self._settled.move_to_end(condition)
        return escrow

    def get_resource_by_fulfillment(self, fulfillment: bytes) -> str | None:
        escrow = self._by_fulfillment.get(fulfillment)
        if escrow is None:
            return None
        if escrow.condition in self._settled:
            self._settled.move_to_end(escrow.condition)
        return escrow.resource

    def lock(self, condition: bytes) -> asyncio.Lock:
        """Return the lock serializing decisions about ``condition``.

        Locks exist only for known escrows and are dropped when the escrow is
        evicted.

        Raises:
            EscrowNotFoundError: If no escrow holds ``condition``.
        """
        lock = self._locks.get(condition)
        if lock is None:
            self._get_or_raise(condition)
            lock = self._locks[condition] = asyncio.Lock()
        return lock

    def is_locked(self, condition: bytes) -> bool:
        lock = self._locks.get(condition)
        return lock is not None and lock.locked()

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def mark_fulfilled(self, condition: bytes, transfer_id: str | None = None) -> bool:
        """Move an escrow to FULFILLED. Returns False if it was already terminal."""
        escrow = self._get_or_raise(condition)
        if not self._transition(escrow, EscrowStatus.FULFILLED):
            return False
        escrow.transfer_id = transfer_id
        return True

    def mark_rejected(self, condition: bytes) -> bool:
        """Withdraw a pending offer. Returns False if it was already terminal."""
        return self._transition(self._get_or_raise(condition), EscrowStatus.REJECTED)

    def mark_expired(self, condition: bytes) -> bool:
        """Expire a pending offer. Returns False if it was already terminal."""
        return self._transition(self._get_or_raise(condition), EscrowStatus.EXPIRED)

    def purge_expired(self, now: datetime | None = None) -> list[Escrow]:
        """Expire every pending offer whose deadline has passed.

        Offers whose lock is held are skipped; a payment for them is in flight.
        """
        now = now or self._clock()
        expired = [
            e for e in self._pending.values() if e.is_expired(now) and not self.is_locked(e.condition)
        ]
        for escrow in expired:
            self._transition(escrow, EscrowStatus.EXPIRED)
        if expired:
            logger.info("escrow.purged", count=len(expired), pending=len(self._pending))
        return expired

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _get_or_raise(self, condition: bytes) -> Escrow:
        escrow = self.get_by_condition(condition)
        if escrow is None:
            raise EscrowNotFoundError(codec.encode(condition))
        return escrow

    def _transition(self, escrow: Escrow, target: EscrowStatus) -> bool:
        from statemachine.exceptions import TransitionNotAllowed

        if escrow.status.is_terminal:
            logger.debug(
                "escrow.transition_ignored",
                condition=escrow.condition_text,
                status=escrow.status.value,
                attempted=target.value,
            )
            return False

        event_name = _TRANSITION_EVENTS[target]
        try:
            new_status = validate_transition(escrow.status.value, event_name)
        except TransitionNotAllowed as err:
            raise InvalidStateTransitionError(escrow.status.value, target.value) from err

        escrow.status = EscrowStatus(new_status)
        escrow.settled_at = self._clock()
        self._settle(escrow)
        logger.debug("escrow.transitioned", condition=escrow.condition_text, status=new_status)
        return True

    def _settle(self, escrow: Escrow) -> None:
        self._pending.pop(escrow.condition, None)
        self._settled[escrow.condition] = escrow
        if escrow.status is not EscrowStatus.FULFILLED:
            # Unpaid offers no longer unlock anything.
            self._by_fulfillment.pop(escrow.fulfillment, None)

        while len(self._settled) > self._settled_cache_size:
            _, evicted = self._settled.popitem(last=False)
            self._by_fulfillment.pop(evicted.fulfillment, None)
            self._locks.pop(evicted.condition, None)
