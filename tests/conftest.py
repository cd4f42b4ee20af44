"""Shared test fixtures for the letter shop test suite.

Provides:
    - FakeClock: a settable clock for expiry tests
    - FakeLedgerClient: a LedgerClient that records every call
    - Factories for incoming transfers and started seller services
    - Isolation of the process-wide in-memory ledger and cached settings
"""

from __future__ import annotations

import asyncio
import uuid
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio

from letter_shop.config import Settings, get_settings
from letter_shop.domain.exceptions import LedgerConnectionError
from letter_shop.domain.ledger import (
    IncomingPrepare,
    IncomingTransfer,
    LedgerInfo,
    OutgoingTransfer,
    RejectionEnvelope,
)
from letter_shop.infrastructure.escrow_store import EscrowStore
from letter_shop.infrastructure.ledger.memory import InMemoryLedger, close_ledger
from letter_shop.services.seller_service import SellerEscrowService

PREFIX = "test.letter-shop."
SHOP = PREFIX + "shop"
CUSTOMER = PREFIX + "customer"
PRICE = 10


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


class FakeLedgerClient:
    """LedgerClient double that records fulfillments, rejections and sends."""

    def __init__(self, account: str = SHOP) -> None:
        self.account = account
        self.info = LedgerInfo(prefix=PREFIX, currency_code="XRP", currency_scale=6)
        self.connected = False
        self.connect_error: Exception | None = None
        self.fulfill_error: Exception | None = None
        self.fulfill_gate: asyncio.Event | None = None
        self.fulfill_started = asyncio.Event()
        self.fulfilled: list[tuple[str, str]] = []
        self.rejected: list[tuple[str, RejectionEnvelope]] = []
        self.sent: list[OutgoingTransfer] = []
        self._queue: asyncio.Queue = asyncio.Queue()

    @property
    def is_connected(self) -> bool:
        return self.connected

    async def connect(self) -> None:
        if self.connect_error is not None:
            raise self.connect_error
        self.connected = True

    async def disconnect(self) -> None:
        self.connected = False
        self._queue.put_nowait(None)

    def get_info(self) -> LedgerInfo:
        if not self.connected:
            raise LedgerConnectionError("not connected")
        return self.info

    def get_account(self) -> str:
        if not self.connected:
            raise LedgerConnectionError("not connected")
        return self.account

    async def send_transfer(self, transfer: OutgoingTransfer) -> None:
        self.sent.append(transfer)

    async def fulfill_condition(self, transfer_id: str, fulfillment: str) -> None:
        self.fulfill_started.set()
        # Yield first so concurrent handlers really interleave.
        if self.fulfill_gate is not None:
            await self.fulfill_gate.wait()
        else:
            await asyncio.sleep(0)
        if self.fulfill_error is not None:
            raise self.fulfill_error
        self.fulfilled.append((transfer_id, fulfillment))

    async def reject_incoming_transfer(self, transfer_id: str, reason: RejectionEnvelope) -> None:
        self.rejected.append((transfer_id, reason))

    async def events(self):
        while True:
            event = await self._queue.get()
            if event is None:
                return
            yield event

    def push(self, event: object) -> None:
        self._queue.put_nowait(event)

    def push_transfer(self, transfer: IncomingTransfer) -> None:
        self.push(IncomingPrepare(transfer=transfer))


def make_transfer(
    condition: str,
    amount: int = PRICE,
    transfer_id: str | None = None,
    expires_at: datetime | None = None,
) -> IncomingTransfer:
    return IncomingTransfer(
        id=transfer_id or str(uuid.uuid4()),
        from_account=CUSTOMER,
        to=SHOP,
        ledger=PREFIX,
        amount=amount,
        execution_condition=condition,
        expires_at=expires_at or datetime.now(timezone.utc) + timedelta(seconds=1000),
    )


# ---------------------------------------------------------------------------
# Isolation
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _isolate_process_state():
    """Reset the shared in-memory ledger and the cached settings around each test."""
    close_ledger()
    get_settings.cache_clear()
    yield
    close_ledger()
    get_settings.cache_clear()


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fake_ledger() -> FakeLedgerClient:
    return FakeLedgerClient()


@pytest.fixture
def store(clock: FakeClock) -> EscrowStore:
    return EscrowStore(offer_ttl=timedelta(hours=1), settled_cache_size=16, clock=clock)


@pytest_asyncio.fixture
async def seller(fake_ledger: FakeLedgerClient, store: EscrowStore, clock: FakeClock) -> SellerEscrowService:
    """A started seller on the fake ledger, pricing letters at 10 base units."""
    service = SellerEscrowService(fake_ledger, store, price=PRICE, clock=clock)
    await service.start()
    return service


@pytest.fixture
def memory_ledger() -> InMemoryLedger:
    """An in-memory ledger with a funded customer and an empty shop."""
    ledger = InMemoryLedger(prefix=PREFIX)
    ledger.open_account("shop")
    ledger.open_account("customer", balance=1_000)
    return ledger


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        app_env="development",
        app_log_level="WARNING",
        ledger_prefix=PREFIX,
        letter_price=PRICE,
    )
