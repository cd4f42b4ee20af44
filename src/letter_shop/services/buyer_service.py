"""Buyer Payment Service — pays for an offer and collects the fulfillment.

Single-shot flow:
    1. Connect to the ledger, learn own account and ledger metadata.
    2. Prepare a conditional transfer to the shop (expires after a fixed window).
    3. Wait for the matching OutgoingFulfill, bounded by that window.
    4. Check the fulfillment opens the condition, disconnect, hand it back.

A rejection ends the wait early with PaymentRejectedError; silence until
the transfer expires ends it with PaymentTimeoutError.

The HTTP helpers fetch an offer (``GET /`` → 402 + Pay header) and the
purchased resource (``GET /<fulfillment>``) with httpx.
"""

from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass
from datetime import timedelta
from typing import TYPE_CHECKING

import httpx

from letter_shop.domain import condition as codec
from letter_shop.domain.exceptions import (
    InvalidAddressError,
    InvalidConditionError,
    LedgerError,
    LetterShopError,
    PaymentError,
    PaymentRejectedError,
    PaymentTimeoutError,
    ResourceNotFoundError,
)
from letter_shop.domain.ilp_packet import serialize_ilp_payment
from letter_shop.domain.ledger import OutgoingFulfill, OutgoingReject, OutgoingTransfer
from letter_shop.infrastructure.escrow_store import utcnow
from letter_shop.logging_config import get_logger
from letter_shop.schemas.shop import PayHeader

if TYPE_CHECKING:
    from collections.abc import Callable
    from datetime import datetime

    from letter_shop.domain.ledger import LedgerClient

logger = get_logger(__name__)

DEFAULT_EXPIRY_WINDOW = timedelta(seconds=1000)


@dataclass(frozen=True)
class PaymentResult:
    """A settled payment and the secret it revealed."""

    transfer_id: str
    condition: str
    fulfillment: str


class BuyerPaymentService:
    """Pays a destination account against a condition."""

    def __init__(
        self,
        ledger: LedgerClient,
        expiry_window: timedelta = DEFAULT_EXPIRY_WINDOW,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        if expiry_window <= timedelta(0):
            raise ValueError("expiry_window must be positive")
        self._ledger = ledger
        self._expiry_window = expiry_window
        self._clock = clock

    async def pay(
        self,
        destination: str,
        amount: int,
        condition: str,
        timeout: float | None = None,
    ) -> PaymentResult:
        """Send a conditional transfer and wait for its fulfillment.

        Args:
            destination: Ledger address of the seller.
            amount: Amount in ledger base units.
            condition: base64url condition advertised by the seller.
            timeout: Seconds to wait for the fulfillment; never longer than
                the transfer's expiry window.

        Raises:
            InvalidConditionError: If ``condition`` is not a 32-byte digest.
            InvalidAddressError: If ``destination`` cannot be encoded in the ILP payload.
            LedgerConnectionError: If the ledger cannot be reached.
            PaymentError: If the ledger refuses the transfer.
            PaymentRejectedError: If the seller rejects the transfer.
            PaymentTimeoutError: If no fulfillment arrives in time.
        """
        try:
            condition_bytes = codec.decode_condition(condition)
        except ValueError as exc:
            raise InvalidConditionError(condition) from exc
        if amount <= 0:
            raise ValueError(f"amount must be positive: {amount}")
        try:
            ilp = codec.encode(serialize_ilp_payment(amount, destination))
        except ValueError as exc:
            raise InvalidAddressError(destination, str(exc)) from exc

        window = self._expiry_window.total_seconds()
        wait = window if timeout is None else min(timeout, window)

        logger.info("payment.connecting", destination=destination, amount=amount)
        await self._ledger.connect()
        try:
            info = self._ledger.get_info()
            account = self._ledger.get_account()
            logger.debug(
                "payment.connected",
                ledger=info.prefix,
                account=account,
                currency=info.currency_code,
                currency_scale=info.currency_scale,
            )

            transfer = OutgoingTransfer(
                id=str(uuid.uuid4()),
                from_account=account,
                to=destination,
                ledger=info.prefix,
                amount=amount,
                execution_condition=condition,
                expires_at=self._clock() + self._expiry_window,
                ilp=ilp,
            )
            logger.debug("payment.transfer_built", transfer=transfer.to_dict())
            try:
                await self._ledger.send_transfer(transfer)
            except LedgerError as exc:
                logger.error("payment.send_failed", transfer_id=transfer.id, error=exc.message)
                raise PaymentError(
                    f"Ledger refused transfer: {exc.message}", transfer_id=transfer.id
                ) from exc

            logger.info(
                "payment.prepared",
                transfer_id=transfer.id,
                condition=condition,
                expires_at=transfer.expires_at.isoformat(),
            )
            fulfillment = await self._wait_for_fulfillment(transfer.id, wait)
        finally:
            await self._ledger.disconnect()

        try:
            preimage = codec.decode(fulfillment)
        except ValueError as exc:
            raise PaymentError("Received malformed fulfillment", transfer_id=transfer.id) from exc
        if not codec.verify(preimage, condition_bytes):
            raise PaymentError(
                "Fulfillment does not match condition", transfer_id=transfer.id
            )

        logger.info("payment.fulfilled", transfer_id=transfer.id, fulfillment=fulfillment)
        return PaymentResult(
            transfer_id=transfer.id,
            condition=condition,
            fulfillment=fulfillment,
        )

    async def _wait_for_fulfillment(self, transfer_id: str, timeout: float) -> str:
        try:
            async with asyncio.timeout(timeout):
                async for event in self._ledger.events():
                    if isinstance(event, OutgoingFulfill) and event.transfer_id == transfer_id:
                        return event.fulfillment
                    if isinstance(event, OutgoingReject) and event.transfer_id == transfer_id:
                        logger.warning(
                            "payment.rejected",
                            transfer_id=transfer_id,
                            code=event.reason.code,
                            reason=event.reason.message,
                        )
                        raise PaymentRejectedError(transfer_id, event.reason)
                    logger.debug("payment.event_ignored", event=type(event).__name__)
        except TimeoutError:
            logger.warning("payment.timed_out", transfer_id=transfer_id, timeout=timeout)
            raise PaymentTimeoutError(transfer_id, timeout) from None
        raise PaymentError("Ledger disconnected before the transfer settled", transfer_id=transfer_id)


# ---------------------------------------------------------------------------
# HTTP helpers
# ---------------------------------------------------------------------------


def retrieval_url(shop_url: str, fulfillment: str) -> str:
    return f"{shop_url.rstrip('/')}/{fulfillment}"


async def fetch_offer(shop_url: str, client: httpx.AsyncClient) -> PayHeader:
    """Request a new offer and parse its Pay header.

    Raises:
        LetterShopError: If the shop does not answer 402 with a Pay header.
    """
    response = await client.get(f"{shop_url.rstrip('/')}/")
    if response.status_code != 402 or "Pay" not in response.headers:
        raise LetterShopError(
            f"Expected 402 with a Pay header, got {response.status_code}",
            code="UNEXPECTED_RESPONSE",
        )
    try:
        offer = PayHeader.parse(response.headers["Pay"])
    except ValueError as exc:
        raise LetterShopError(str(exc), code="UNEXPECTED_RESPONSE") from exc
    logger.info("offer.received", amount=offer.amount, account=offer.account, condition=offer.condition)
    return offer


async def retrieve_resource(shop_url: str, fulfillment: str, client: httpx.AsyncClient) -> str:
    """Fetch the purchased resource. Returns the response body.

    Raises:
        ResourceNotFoundError: If the shop answers 404.
        httpx.HTTPStatusError: On any other error status.
    """
    url = retrieval_url(shop_url, fulfillment)
    response = await client.get(url)
    if response.status_code == 404:
        raise ResourceNotFoundError(url)
    response.raise_for_status()
    return response.text
