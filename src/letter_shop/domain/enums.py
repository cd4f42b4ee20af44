"""Domain enumerations for the letter shop.

These enums define the canonical states and codes used throughout the system.
They are framework-agnostic (no FastAPI, no ledger imports).
"""

import enum


class EscrowStatus(enum.StrEnum):
    """Lifecycle states of an escrow offer.

    State transitions are enforced by the EscrowStateMachine guard.
    See domain/state_machine.py for the transition table.
    """

    PENDING = "PENDING"
    FULFILLED = "FULFILLED"
    REJECTED = "REJECTED"
    EXPIRED = "EXPIRED"

    @property
    def is_terminal(self) -> bool:
        return self is not EscrowStatus.PENDING


class RejectionCode(enum.StrEnum):
    """Interledger final-error codes used when refusing an incoming transfer."""

    INSUFFICIENT_DESTINATION_AMOUNT = "F04"
    WRONG_CONDITION = "F05"


class TransferOutcome(enum.StrEnum):
    """What the seller did with one incoming transfer."""

    FULFILLED = "FULFILLED"
    REJECTED = "REJECTED"
    FULFILLMENT_FAILED = "FULFILLMENT_FAILED"
