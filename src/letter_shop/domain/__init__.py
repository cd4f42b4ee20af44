"""Domain layer — pure protocol logic with zero framework dependencies."""

from letter_shop.domain.enums import (
    EscrowStatus,
    RejectionCode,
    TransferOutcome,
)
from letter_shop.domain.exceptions import (
    AmountInsufficientError,
    InvalidStateTransitionError,
    LedgerConnectionError,
    LedgerError,
    LedgerFulfillmentError,
    LetterShopError,
    PaymentError,
    PaymentRejectedError,
    PaymentTimeoutError,
    TransferRejectedError,
    UnknownConditionError,
)
from letter_shop.domain.ledger import (
    IncomingPrepare,
    IncomingTransfer,
    LedgerClient,
    LedgerEvent,
    LedgerInfo,
    OutgoingFulfill,
    OutgoingReject,
    OutgoingTransfer,
    RejectionEnvelope,
)
from letter_shop.domain.state_machine import (
    EscrowStateMachine,
    validate_transition,
)

__all__ = [
    "EscrowStatus",
    "RejectionCode",
    "TransferOutcome",
    "AmountInsufficientError",
    "InvalidStateTransitionError",
    "LedgerConnectionError",
    "LedgerError",
    "LedgerFulfillmentError",
    "LetterShopError",
    "PaymentError",
    "PaymentRejectedError",
    "PaymentTimeoutError",
    "TransferRejectedError",
    "UnknownConditionError",
    "IncomingPrepare",
    "IncomingTransfer",
    "LedgerClient",
    "LedgerEvent",
    "LedgerInfo",
    "OutgoingFulfill",
    "OutgoingReject",
    "OutgoingTransfer",
    "RejectionEnvelope",
    "EscrowStateMachine",
    "validate_transition",
]
