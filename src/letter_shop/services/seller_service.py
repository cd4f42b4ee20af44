"""Seller Escrow Service — issues offers and settles incoming payments.

Coordinates between:
    - EscrowStore (offers and their hash-lock secrets)
    - the ledger client (incoming transfers, fulfillments, rejections)

Per incoming transfer:

    Received ─┬─ amount < price ──────────────────► Rejected (F04)
              ├─ condition malformed / unknown /
              │  expired / already settled ───────► Rejected (F05)
              └─ fulfill_condition ─┬─ ok ────────► Fulfilled
                                    └─ refused ───► FULFILLMENT_FAILED (offer stays PENDING)

Both the HTTP routes and the ledger event loop call into this service.
"""

from __future__ import annotations

import secrets
import string
from dataclasses import dataclass
from typing import TYPE_CHECKING

from letter_shop.domain import condition as codec
from letter_shop.domain.amounts import format_amount, to_display
from letter_shop.domain.enums import EscrowStatus, TransferOutcome
from letter_shop.domain.exceptions import (
    AmountInsufficientError,
    EscrowNotFoundError,
    LedgerError,
    LetterShopError,
    TransferRejectedError,
    UnknownConditionError,
)
from letter_shop.domain.ledger import IncomingPrepare, RejectionEnvelope
from letter_shop.infrastructure.escrow_store import utcnow
from letter_shop.logging_config import get_logger
from letter_shop.schemas.shop import PayHeader

if TYPE_CHECKING:
    from collections.abc import Callable
    from datetime import datetime
    from decimal import Decimal

    from letter_shop.domain.ledger import IncomingTransfer, LedgerClient, LedgerInfo
    from letter_shop.infrastructure.escrow_store import Escrow, EscrowStore

logger = get_logger(__name__)


@dataclass(frozen=True)
class PaymentRequest:
    """What the shop advertises for one offer. Never carries the fulfillment."""

    amount: int
    account: str
    condition: str
    display_amount: Decimal
    currency_code: str

    @property
    def pay_header(self) -> str:
        return str(PayHeader(amount=self.amount, account=self.account, condition=self.condition))

    @property
    def instructions(self) -> str:
        return (
            f"Please send an Interledger payment of {self.display_amount} {self.currency_code}"
            f" to {self.account} using the condition {self.condition}\n"
            f"> letter-shop-pay {self.account} {self.amount} {self.condition}"
        )


@dataclass(frozen=True)
class TransferDecision:
    """Outcome of handling one incoming transfer."""

    transfer_id: str
    outcome: TransferOutcome
    condition: str
    code: str | None = None
    message: str | None = None


class SellerEscrowService:
    """Sells one resource per escrow for a fixed price."""

    def __init__(
        self,
        ledger: LedgerClient,
        store: EscrowStore,
        price: int,
        alphabet: str = string.ascii_uppercase,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        if price <= 0:
            raise ValueError("price must be positive")
        if not alphabet:
            raise ValueError("alphabet must not be empty")
        self._ledger = ledger
        self._store = store
        self._price = price
        self._alphabet = alphabet
        self._clock = clock
        self._account: str | None = None
        self._info: LedgerInfo | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Connect to the ledger and learn the shop's account.

        Raises:
            LedgerConnectionError: If the ledger cannot be reached.
        """
        logger.info("seller.connecting")
        await self._ledger.connect()
        self._info = self._ledger.get_info()
        self._account = self._ledger.get_account()
        logger.info(
            "seller.connected",
            ledger=self._info.prefix,
            account=self._account,
            currency=self._info.currency_code,
            currency_scale=self._info.currency_scale,
            price=format_amount(self._price, self._info.currency_scale, self._info.currency_code),
        )

    async def stop(self) -> None:
        await self._ledger.disconnect()
        logger.info("seller.disconnected")

    async def run(self) -> None:
        """Consume ledger events until the ledger disconnects.

        Events are handled one at a time, in delivery order.
        """
        async for event in self._ledger.events():
            if not isinstance(event, IncomingPrepare):
                logger.debug("ledger.event_ignored", event=type(event).__name__)
                continue
            try:
                await self.handle_incoming_prepare(event.transfer)
            except LetterShopError as exc:
                logger.exception(
                    "transfer.handling_failed",
                    transfer_id=event.transfer.id,
                    error=exc.message,
                )

    @property
    def account(self) -> str:
        if self._account is None:
            raise RuntimeError("Seller not started. Call start() first.")
        return self._account

    @property
    def ledger_info(self) -> LedgerInfo:
        if self._info is None:
            raise RuntimeError("Seller not started. Call start() first.")
        return self._info

    @property
    def price(self) -> int:
        return self._price

    @property
    def store(self) -> EscrowStore:
        return self._store

    @property
    def is_connected(self) -> bool:
        return self._ledger.is_connected

    # ------------------------------------------------------------------
    # Offers
    # ------------------------------------------------------------------

    def issue_escrow(self, resource: str | None = None) -> PaymentRequest:
        """Create a new escrow and return what to advertise for it."""
        info = self.ledger_info
        if resource is None:
            resource = secrets.choice(self._alphabet)
        escrow = self._store.create(price=self._price, resource=resource)

        logger.info("escrow.issued", condition=escrow.condition_text, price=self._price)
        return PaymentRequest(
            amount=self._price,
            account=self.account,
            condition=escrow.condition_text,
            display_amount=to_display(self._price, info.currency_scale),
            currency_code=info.currency_code,
        )

    def retrieve_resource(self, fulfillment: str) -> str | None:
        """Return the resource unlocked by ``fulfillment``, or None."""
        try:
            preimage = codec.decode(fulfillment)
        except ValueError:
            logger.debug("resource.malformed_fulfillment", fulfillment=fulfillment)
            return None
        resource = self._store.get_resource_by_fulfillment(preimage)
        if resource is None:
            logger.debug("resource.not_found", fulfillment=fulfillment)
        else:
            logger.info("resource.delivered", condition=codec.encode(codec.commit(preimage)))
        return resource

    async def withdraw_offer(self, condition: str) -> bool:
        """Reject a pending offer so it can no longer be paid.

        Waits for any payment already being settled for the offer.
        """
        try:
            condition_bytes = codec.decode(condition)
        except ValueError as exc:
            raise EscrowNotFoundError(condition) from exc
        async with self._store.lock(condition_bytes):
            withdrawn = self._store.mark_rejected(condition_bytes)
        logger.info("escrow.withdrawn", condition=condition, changed=withdrawn)
        return withdrawn

    def sweep_expired(self) -> int:
        """Expire pending offers past their deadline.

        Offers with a payment in flight are left for the next sweep.
        """
        return len(self._store.purge_expired(self._clock()))

    # ------------------------------------------------------------------
    # Incoming transfers
    # ------------------------------------------------------------------

    async def handle_incoming_prepare(self, transfer: IncomingTransfer) -> TransferDecision:
        """Decide on one incoming transfer and act on the ledger.

        Raises:
            LedgerError: If the ledger refuses the rejection itself.
        """
        log = logger.bind(
            transfer_id=transfer.id,
            condition=transfer.execution_condition,
            amount=transfer.amount,
        )
        log.debug("transfer.received", sender=transfer.from_account)
        try:
            self._check_amount(transfer)
            condition = self._decode_condition(transfer.execution_condition)
            if self._store.get_by_condition(condition) is None:
                raise UnknownConditionError(transfer.execution_condition)
            async with self._store.lock(condition):
                escrow = self._find_payable(condition, transfer)
                return await self._release(transfer, escrow)
        except TransferRejectedError as exc:
            envelope = self._envelope(exc)
            log.info("transfer.rejected", code=exc.code, reason=exc.message)
            log.debug("transfer.rejection_envelope", envelope=envelope.to_dict())
            await self._ledger.reject_incoming_transfer(transfer.id, envelope)
            return TransferDecision(
                transfer_id=transfer.id,
                outcome=TransferOutcome.REJECTED,
                condition=transfer.execution_condition,
                code=exc.code,
                message=exc.message,
            )

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _check_amount(self, transfer: IncomingTransfer) -> None:
        if transfer.amount >= self._price:
            return
        info = self.ledger_info
        raise AmountInsufficientError(
            message=(
                f"Please send at least "
                f"{format_amount(self._price, info.currency_scale, info.currency_code)}, "
                f"you sent {format_amount(transfer.amount, info.currency_scale, info.currency_code)}"
            ),
            required=self._price,
            received=transfer.amount,
        )

    @staticmethod
    def _decode_condition(condition: str) -> bytes:
        try:
            return codec.decode_condition(condition)
        except ValueError as exc:
            raise UnknownConditionError(condition) from exc

    def _find_payable(self, condition: bytes, transfer: IncomingTransfer) -> Escrow:
        escrow = self._store.get_by_condition(condition)
        if escrow is None:
            raise UnknownConditionError(transfer.execution_condition)

        if escrow.is_expired(self._clock()):
            self._store.mark_expired(condition)

        if escrow.status is not EscrowStatus.PENDING:
            logger.warning(
                "transfer.condition_settled",
                transfer_id=transfer.id,
                condition=escrow.condition_text,
                status=escrow.status.value,
                settled_by=escrow.transfer_id,
            )
            raise UnknownConditionError(transfer.execution_condition)
        return escrow

    async def _release(self, transfer: IncomingTransfer, escrow: Escrow) -> TransferDecision:
        log = logger.bind(transfer_id=transfer.id, condition=escrow.condition_text)
        log.info("transfer.accepted", amount=transfer.amount)
        try:
            await self._ledger.fulfill_condition(transfer.id, escrow.fulfillment_text)
        except LedgerError as exc:
            log.error("transfer.fulfillment_failed", error=exc.message)
            return TransferDecision(
                transfer_id=transfer.id,
                outcome=TransferOutcome.FULFILLMENT_FAILED,
                condition=escrow.condition_text,
                code=exc.code,
                message=exc.message,
            )

        if not self._store.mark_fulfilled(escrow.condition, transfer_id=transfer.id):
            log.critical("escrow.settled_elsewhere", status=escrow.status.value)
        else:
            log.info("payment.complete")
        return TransferDecision(
            transfer_id=transfer.id,
            outcome=TransferOutcome.FULFILLED,
            condition=escrow.condition_text,
        )

    def _envelope(self, exc: TransferRejectedError) -> RejectionEnvelope:
        return RejectionEnvelope(
            code=exc.code,
            name=exc.name,
            message=exc.message,
            triggered_by=self.account,
            triggered_at=self._clock(),
        )
