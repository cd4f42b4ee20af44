"""Tests for BuyerPaymentService and the buyer's HTTP helpers."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import httpx
import pytest

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
from letter_shop.domain.ilp_packet import deserialize_ilp_payment
from letter_shop.domain.ledger import OutgoingFulfill, OutgoingReject, RejectionEnvelope
from letter_shop.services.buyer_service import (
    BuyerPaymentService,
    fetch_offer,
    retrieval_url,
    retrieve_resource,
)

from ..conftest import CUSTOMER, PREFIX, SHOP, FakeLedgerClient

SHOP_URL = "http://shop.test"


class ScriptedLedger(FakeLedgerClient):
    """Fake ledger that answers each sent transfer with a scripted event."""

    def __init__(self, respond=None) -> None:
        super().__init__(account=CUSTOMER)
        self.respond = respond
        self.send_error: Exception | None = None
        self.disconnects = 0

    async def send_transfer(self, transfer) -> None:
        if self.send_error is not None:
            raise self.send_error
        await super().send_transfer(transfer)
        if self.respond is not None:
            for event in self.respond(transfer):
                self.push(event)

    async def disconnect(self) -> None:
        self.disconnects += 1
        await super().disconnect()


def _envelope(code: str = "F05") -> RejectionEnvelope:
    return RejectionEnvelope(
        code=code,
        name="Wrong Condition",
        message="Unable to fulfill the condition",
        triggered_by=SHOP,
        triggered_at=datetime.now(timezone.utc),
    )


@pytest.fixture
def pair() -> tuple[str, str]:
    fulfillment, condition = codec.new_condition_pair()
    return codec.encode(fulfillment), codec.encode(condition)


class TestPay:
    @pytest.mark.asyncio
    async def test_returns_fulfillment(self, pair, clock) -> None:
        fulfillment, condition = pair
        ledger = ScriptedLedger(lambda t: [OutgoingFulfill(transfer_id=t.id, fulfillment=fulfillment)])
        buyer = BuyerPaymentService(ledger, expiry_window=timedelta(seconds=1000), clock=clock)

        result = await buyer.pay(SHOP, 10, condition)

        assert result.fulfillment == fulfillment
        assert result.condition == condition
        assert result.transfer_id == ledger.sent[0].id
        assert ledger.disconnects == 1

    @pytest.mark.asyncio
    async def test_transfer_fields(self, pair, clock) -> None:
        fulfillment, condition = pair
        ledger = ScriptedLedger(lambda t: [OutgoingFulfill(transfer_id=t.id, fulfillment=fulfillment)])
        buyer = BuyerPaymentService(ledger, expiry_window=timedelta(seconds=1000), clock=clock)

        await buyer.pay(SHOP, 10, condition)

        transfer = ledger.sent[0]
        assert transfer.from_account == CUSTOMER
        assert transfer.to == SHOP
        assert transfer.ledger == PREFIX
        assert transfer.amount == 10
        assert transfer.execution_condition == condition
        assert transfer.expires_at == clock.now + timedelta(seconds=1000)
        packet = deserialize_ilp_payment(codec.decode(transfer.ilp))
        assert (packet.amount, packet.account, packet.data) == (10, SHOP, b"")

    @pytest.mark.asyncio
    async def test_ignores_events_for_other_transfers(self, pair) -> None:
        fulfillment, condition = pair
        ledger = ScriptedLedger(
            lambda t: [
                OutgoingReject(transfer_id="someone-else", reason=_envelope()),
                OutgoingFulfill(transfer_id=t.id, fulfillment=fulfillment),
            ]
        )
        result = await BuyerPaymentService(ledger).pay(SHOP, 10, condition)
        assert result.fulfillment == fulfillment

    @pytest.mark.asyncio
    async def test_rejection(self, pair) -> None:
        _, condition = pair
        ledger = ScriptedLedger(lambda t: [OutgoingReject(transfer_id=t.id, reason=_envelope("F04"))])

        with pytest.raises(PaymentRejectedError) as exc_info:
            await BuyerPaymentService(ledger).pay(SHOP, 10, condition)

        assert exc_info.value.envelope.code == "F04"
        assert exc_info.value.transfer_id == ledger.sent[0].id
        assert ledger.disconnects == 1

    @pytest.mark.asyncio
    async def test_timeout(self, pair) -> None:
        _, condition = pair
        ledger = ScriptedLedger()

        with pytest.raises(PaymentTimeoutError):
            await BuyerPaymentService(ledger).pay(SHOP, 10, condition, timeout=0.05)
        assert ledger.disconnects == 1

    @pytest.mark.asyncio
    async def test_wait_never_exceeds_expiry_window(self, pair) -> None:
        _, condition = pair
        buyer = BuyerPaymentService(ScriptedLedger(), expiry_window=timedelta(milliseconds=50))

        with pytest.raises(PaymentTimeoutError) as exc_info:
            await buyer.pay(SHOP, 10, condition, timeout=60)
        assert exc_info.value.timeout == pytest.approx(0.05)

    @pytest.mark.asyncio
    async def test_wrong_fulfillment(self, pair) -> None:
        _, condition = pair
        bogus = codec.encode(codec.generate_secret())
        ledger = ScriptedLedger(lambda t: [OutgoingFulfill(transfer_id=t.id, fulfillment=bogus)])

        with pytest.raises(PaymentError, match="does not match"):
            await BuyerPaymentService(ledger).pay(SHOP, 10, condition)

    @pytest.mark.asyncio
    async def test_ledger_closes_before_settlement(self, pair) -> None:
        _, condition = pair
        ledger = ScriptedLedger(lambda t: [None])

        with pytest.raises(PaymentError, match="disconnected"):
            await BuyerPaymentService(ledger).pay(SHOP, 10, condition, timeout=1)

    @pytest.mark.asyncio
    async def test_ledger_refuses_transfer(self, pair) -> None:
        _, condition = pair
        ledger = ScriptedLedger()
        ledger.send_error = LedgerError("Insufficient balance")

        with pytest.raises(PaymentError, match="Insufficient balance"):
            await BuyerPaymentService(ledger).pay(SHOP, 10, condition)
        assert ledger.disconnects == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize("condition", ["", "short", codec.encode(b"x" * 31), "not/base64url"])
    async def test_invalid_condition(self, condition: str) -> None:
        ledger = ScriptedLedger()

        with pytest.raises(InvalidConditionError):
            await BuyerPaymentService(ledger).pay(SHOP, 10, condition)
        assert not ledger.connected
        assert ledger.sent == []

    @pytest.mark.asyncio
    async def test_non_ascii_destination(self, pair) -> None:
        ledger = ScriptedLedger()

        with pytest.raises(InvalidAddressError):
            await BuyerPaymentService(ledger).pay("test.letter-shop.sh\u00f6p", 10, pair[1])
        assert not ledger.connected
        assert ledger.sent == []

    @pytest.mark.asyncio
    async def test_non_positive_amount(self, pair) -> None:
        with pytest.raises(ValueError):
            await BuyerPaymentService(ScriptedLedger()).pay(SHOP, 0, pair[1])


class TestHttpHelpers:
    def test_retrieval_url(self) -> None:
        assert retrieval_url("http://shop.test/", "abc") == "http://shop.test/abc"

    @pytest.mark.asyncio
    async def test_fetch_offer(self) -> None:
        condition = codec.encode(codec.commit(b"secret"))

        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/"
            return httpx.Response(402, headers={"Pay": f"10 {SHOP} {condition}"}, text="pay me")

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            offer = await fetch_offer(SHOP_URL, client)

        assert (offer.amount, offer.account, offer.condition) == (10, SHOP, condition)

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "response",
        [
            httpx.Response(200, text="free"),
            httpx.Response(402, text="no header"),
            httpx.Response(402, headers={"Pay": "10 only-two"}),
        ],
    )
    async def test_fetch_offer_unexpected_response(self, response: httpx.Response) -> None:
        transport = httpx.MockTransport(lambda request: response)
        async with httpx.AsyncClient(transport=transport) as client:
            with pytest.raises(LetterShopError) as exc_info:
                await fetch_offer(SHOP_URL, client)
        assert exc_info.value.code == "UNEXPECTED_RESPONSE"

    @pytest.mark.asyncio
    async def test_retrieve_resource(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/good":
                return httpx.Response(200, text="Your letter: Q")
            return httpx.Response(404, text="Unrecognised fulfillment.")

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            assert await retrieve_resource(SHOP_URL, "good", client) == "Your letter: Q"
            with pytest.raises(ResourceNotFoundError):
                await retrieve_resource(SHOP_URL, "bad", client)
