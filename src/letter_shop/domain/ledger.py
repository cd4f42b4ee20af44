"""Ledger Client Protocol.

Defines the surface the escrow core needs from a ledger connection. It is a
Protocol (structural subtyping) so concrete ledger plugins don't need to
inherit from a base class; they just need to match the shape.

Instead of registering callbacks, a client delivers transfer-lifecycle events
as typed messages from ``events()``. One consumer owns that stream, so event
handling never races on shared state.

The domain layer has ZERO imports from any concrete ledger implementation.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import AsyncIterator


@dataclass(frozen=True)
class LedgerInfo:
    """Static metadata about the connected ledger.

    Attributes:
        prefix: ILP address prefix of the ledger (e.g. "test.letter-shop.").
        currency_code: Currency the ledger settles in.
        currency_scale: Number of decimal places of one base unit.
    """

    prefix: str
    currency_code: str
    currency_scale: int


@dataclass(frozen=True)
class OutgoingTransfer:
    """A conditional transfer the local account prepares."""

    id: str
    from_account: str
    to: str
    ledger: str
    amount: int
    execution_condition: str
    expires_at: datetime
    ilp: str = ""

    def to_dict(self) -> dict[str, Any]:
        """Serialize with the ledger plugin's field names."""
        return {
            "id": self.id,
            "from": self.from_account,
            "to": self.to,
            "ledger": self.ledger,
            "amount": str(self.amount),
            "executionCondition": self.execution_condition,
            "expiresAt": self.expires_at.isoformat(),
            "ilp": self.ilp,
        }


@dataclass(frozen=True)
class IncomingTransfer:
    """A conditional transfer addressed to the local account. Read-only."""

    id: str
    from_account: str
    to: str
    ledger: str
    amount: int
    execution_condition: str
    expires_at: datetime
    ilp: str = ""


@dataclass(frozen=True)
class RejectionEnvelope:
    """Interledger-style reason attached to a rejected transfer.

    Relays forward the envelope upstream, appending themselves to
    ``forwarded_by``; the receiver starts it empty.
    """

    code: str
    name: str
    message: str
    triggered_by: str
    triggered_at: datetime
    forwarded_by: list[str] = field(default_factory=list)
    additional_info: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code,
            "name": self.name,
            "message": self.message,
            "triggered_by": self.triggered_by,
            "triggered_at": self.triggered_at.isoformat(),
            "forwarded_by": list(self.forwarded_by),
            "additional_info": dict(self.additional_info),
        }


# --- Events ---


@dataclass(frozen=True)
class IncomingPrepare:
    """An inbound conditional transfer is held and awaits fulfillment. Fired once."""

    transfer: IncomingTransfer


@dataclass(frozen=True)
class OutgoingFulfill:
    """A transfer this account sent was fulfilled by the receiver."""

    transfer_id: str
    fulfillment: str


@dataclass(frozen=True)
class OutgoingReject:
    """A transfer this account sent was rejected by the receiver."""

    transfer_id: str
    reason: RejectionEnvelope


LedgerEvent = IncomingPrepare | OutgoingFulfill | OutgoingReject


@runtime_checkable
class LedgerClient(Protocol):
    """Protocol that all ledger plugins must satisfy.

    Concrete implementations:
        - infrastructure/ledger/memory.py  (in-process settlement ledger)
    """

    @property
    def is_connected(self) -> bool: ...

    async def connect(self) -> None:
        """Connect to the ledger.

        Raises:
            LedgerConnectionError: If the ledger or the account is unavailable.
        """
        ...

    async def disconnect(self) -> None:
        """Disconnect. Ends the ``events()`` stream."""
        ...

    def get_info(self) -> LedgerInfo: ...

    def get_account(self) -> str:
        """Return the full ledger address of the connected account."""
        ...

    async def send_transfer(self, transfer: OutgoingTransfer) -> None:
        """Prepare a conditional transfer; funds are held until fulfill or reject.

        Raises:
            LedgerError: If the ledger refuses to prepare the transfer.
        """
        ...

    async def fulfill_condition(self, transfer_id: str, fulfillment: str) -> None:
        """Release a held incoming transfer by presenting its fulfillment.

        Raises:
            LedgerFulfillmentError: If the fulfillment is wrong or too late.
        """
        ...

    async def reject_incoming_transfer(
        self, transfer_id: str, reason: RejectionEnvelope
    ) -> None:
        """Refuse a held incoming transfer, returning the funds to the sender."""
        ...

    def events(self) -> AsyncIterator[LedgerEvent]:
        """Yield lifecycle events in delivery order until disconnect."""
        ...
