"""Domain exceptions for the letter shop.

These exceptions are framework-agnostic and represent protocol rule violations.
Rejections are translated into ledger rejection envelopes by the seller;
everything else is caught and translated to HTTP responses by the API layer's
middleware or to exit codes by the CLI.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from letter_shop.domain.enums import RejectionCode

if TYPE_CHECKING:
    from letter_shop.domain.ledger import RejectionEnvelope


class LetterShopError(Exception):
    """Base exception for all domain errors."""

    def __init__(self, message: str, code: str = "LETTER_SHOP_ERROR") -> None:
        self.message = message
        self.code = code
        super().__init__(self.message)


# --- Transfer Rejections (sent back over the ledger) ---


class TransferRejectedError(LetterShopError):
    """Base for reasons the seller refuses an incoming conditional transfer.

    ``code`` and ``name`` are the interledger error code and its title; they
    end up in the rejection envelope relayed back to the buyer.
    """

    def __init__(self, message: str, code: str, name: str) -> None:
        super().__init__(message=message, code=code)
        self.name = name


class AmountInsufficientError(TransferRejectedError):
    """Raised when a transfer carries less than the advertised price.

    Recoverable: the buyer may pay again with the right amount.
    """

    def __init__(self, message: str, required: int, received: int) -> None:
        super().__init__(
            message=message,
            code=RejectionCode.INSUFFICIENT_DESTINATION_AMOUNT.value,
            name="Insufficient Destination Amount",
        )
        self.required = required
        self.received = received


class UnknownConditionError(TransferRejectedError):
    """Raised when a transfer's condition matches no fulfillable escrow.

    Covers forged, malformed, expired and already-consumed conditions.
    The payment is void.
    """

    def __init__(self, condition: str) -> None:
        super().__init__(
            message=f"Unable to fulfill the condition: {condition}",
            code=RejectionCode.WRONG_CONDITION.value,
            name="Wrong Condition",
        )
        self.condition = condition


# --- Ledger Errors ---


class LedgerError(LetterShopError):
    """Raised when the ledger refuses an operation."""

    def __init__(self, message: str, code: str = "LEDGER_ERROR") -> None:
        super().__init__(message=message, code=code)


class LedgerConnectionError(LedgerError):
    """Raised when the ledger cannot be reached. Fatal at startup."""

    def __init__(self, message: str) -> None:
        super().__init__(message=message, code="LEDGER_CONNECTION_FAILURE")


class LedgerFulfillmentError(LedgerError):
    """Raised when the ledger refuses a fulfillment (e.g. past expiry).

    The held funds stay with the sender until the ledger rolls them back.
    """

    def __init__(self, transfer_id: str, reason: str) -> None:
        super().__init__(
            message=f"Ledger refused fulfillment of transfer {transfer_id}: {reason}",
            code="LEDGER_FULFILLMENT_FAILURE",
        )
        self.transfer_id = transfer_id
        self.reason = reason


class LedgerFactoryError(LetterShopError):
    """Raised when the configured ledger factory cannot be loaded."""

    def __init__(self, import_string: str, reason: str) -> None:
        super().__init__(
            message=f"Cannot load ledger factory '{import_string}': {reason}",
            code="LEDGER_FACTORY_ERROR",
        )


# --- Escrow Errors ---


class EscrowNotFoundError(LetterShopError):
    """Raised when no escrow exists for a condition."""

    def __init__(self, condition: str) -> None:
        super().__init__(
            message=f"Escrow not found for condition: {condition}",
            code="ESCROW_NOT_FOUND",
        )
        self.condition = condition


class InvalidStateTransitionError(LetterShopError):
    """Raised when an attempted escrow state transition is not allowed.

    Example: FULFILLED -> EXPIRED (terminal states never move again)
    """

    def __init__(self, current_state: str, attempted: str) -> None:
        super().__init__(
            message=f"Invalid state transition: {current_state} -> {attempted}",
            code="INVALID_STATE_TRANSITION",
        )
        self.current_state = current_state
        self.attempted = attempted


# --- Buyer Errors ---


class InvalidConditionError(LetterShopError):
    """Raised when a condition is not a base64url-encoded 32-byte digest."""

    def __init__(self, condition: str) -> None:
        super().__init__(
            message=f"Invalid condition: {condition!r}",
            code="INVALID_CONDITION",
        )
        self.condition = condition


class InvalidAddressError(LetterShopError):
    """Raised when a destination is not a usable ledger address."""

    def __init__(self, address: str, reason: str) -> None:
        super().__init__(
            message=f"Invalid destination address {address!r}: {reason}",
            code="INVALID_ADDRESS",
        )
        self.address = address


class PaymentError(LetterShopError):
    """Raised when an outgoing payment does not complete."""

    def __init__(self, message: str, transfer_id: str | None = None, code: str = "PAYMENT_ERROR") -> None:
        super().__init__(message=message, code=code)
        self.transfer_id = transfer_id


class PaymentRejectedError(PaymentError):
    """Raised when the receiver rejects the transfer instead of fulfilling it."""

    def __init__(self, transfer_id: str, envelope: RejectionEnvelope) -> None:
        super().__init__(
            message=f"Payment rejected ({envelope.code} {envelope.name}): {envelope.message}",
            transfer_id=transfer_id,
            code="PAYMENT_REJECTED",
        )
        self.envelope = envelope


class PaymentTimeoutError(PaymentError):
    """Raised when no fulfillment arrives before the transfer expires."""

    def __init__(self, transfer_id: str, timeout: float) -> None:
        super().__init__(
            message=f"No fulfillment for transfer {transfer_id} within {timeout:g}s",
            transfer_id=transfer_id,
            code="PAYMENT_TIMEOUT",
        )
        self.timeout = timeout


class ResourceNotFoundError(LetterShopError):
    """Raised when the shop does not recognise a fulfillment."""

    def __init__(self, url: str) -> None:
        super().__init__(message=f"Unrecognised fulfillment: {url}", code="RESOURCE_NOT_FOUND")
        self.url = url
