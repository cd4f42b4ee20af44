"""In-process settlement ledger.

A single-hop ledger that holds funds for conditional transfers:

    send_transfer       -> sender debited, funds held, receiver gets IncomingPrepare
    fulfill_condition   -> preimage and expiry checked, receiver credited,
                           sender gets OutgoingFulfill
    reject_incoming     -> hold refunded, sender gets OutgoingReject
    expire_transfers    -> holds past expiry refunded silently; runs before
                           every ledger operation and balance query

Each account talks to the ledger through its own InMemoryLedgerClient, which
satisfies the LedgerClient protocol. The process-wide ledger used by the
default factory is managed with init_ledger() / get_ledger() / close_ledger().

Usage:
    ledger = InMemoryLedger()
    ledger.open_account("shop")
    client = ledger.client("shop")
    await client.connect()
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from letter_shop.domain import condition as codec
from letter_shop.domain.exceptions import (
    LedgerConnectionError,
    LedgerError,
    LedgerFulfillmentError,
)
from letter_shop.domain.ledger import (
    IncomingPrepare,
    IncomingTransfer,
    LedgerInfo,
    OutgoingFulfill,
    OutgoingReject,
)
from letter_shop.logging_config import get_logger

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable

    from letter_shop.config import Settings
    from letter_shop.domain.ledger import LedgerEvent, OutgoingTransfer, RejectionEnvelope

logger = get_logger(__name__)

_PREPARED = "prepared"
_EXECUTED = "executed"
_REJECTED = "rejected"
_EXPIRED = "expired"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class _Hold:
    transfer: IncomingTransfer
    state: str = _PREPARED


class InMemoryLedger:
    """Balances and held transfers for a set of accounts on one ledger."""

    def __init__(
        self,
        prefix: str = "test.letter-shop.",
        currency_code: str = "XRP",
        currency_scale: int = 6,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.info = LedgerInfo(
            prefix=prefix,
            currency_code=currency_code,
            currency_scale=currency_scale,
        )
        self._clock = clock
        self._balances: dict[str, int] = {}
        self._clients: dict[str, InMemoryLedgerClient] = {}
        self._holds: dict[str, _Hold] = {}

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    def address(self, account: str) -> str:
        """Return the full ledger address for a local account name."""
        if account.startswith(self.info.prefix):
            return account
        return self.info.prefix + account

    def open_account(self, account: str, balance: int = 0) -> str:
        address = self.address(account)
        if address in self._balances:
            raise LedgerError(f"Account already exists: {address}")
        self._balances[address] = balance
        logger.debug("ledger.account_opened", account=address, balance=balance)
        return address

    def has_account(self, account: str) -> bool:
        return self.address(account) in self._balances

    def balance(self, account: str) -> int:
        address = self.address(account)
        self.expire_transfers()
        if address not in self._balances:
            raise LedgerError(f"Unknown account: {address}")
        return self._balances[address]

    def client(self, account: str) -> InMemoryLedgerClient:
        """Return the (single) client bound to ``account``."""
        address = self.address(account)
        client = self._clients.get(address)
        if client is None:
            client = self._clients[address] = InMemoryLedgerClient(self, address)
        return client

    def transfer_state(self, transfer_id: str) -> str | None:
        self.expire_transfers()
        hold = self._holds.get(transfer_id)
        return hold.state if hold else None

    # ------------------------------------------------------------------
    # Transfer lifecycle
    # ------------------------------------------------------------------

    def prepare(self, transfer: OutgoingTransfer) -> None:
        self.expire_transfers()
        sender = self.address(transfer.from_account)
        receiver = self.address(transfer.to)

        if transfer.id in self._holds:
            raise LedgerError(f"Duplicate transfer id: {transfer.id}")
        if transfer.ledger != self.info.prefix:
            raise LedgerError(f"Transfer is for another ledger: {transfer.ledger}")
        if receiver not in self._balances:
            raise LedgerError(f"Unknown destination account: {receiver}")
        if transfer.amount <= 0:
            raise LedgerError(f"Transfer amount must be positive: {transfer.amount}")
        if transfer.expires_at <= self._clock():
            raise LedgerError(f"Transfer already expired at {transfer.expires_at.isoformat()}")
        try:
            codec.decode_condition(transfer.execution_condition)
        except ValueError as exc:
            raise LedgerError(f"Malformed execution condition: {exc}") from exc
        if self._balances.get(sender, 0) < transfer.amount:
            raise LedgerError(f"Insufficient balance in {sender} for {transfer.amount}")

        self._balances[sender] -= transfer.amount
        incoming = IncomingTransfer(
            id=transfer.id,
            from_account=sender,
            to=receiver,
            ledger=transfer.ledger,
            amount=transfer.amount,
            execution_condition=transfer.execution_condition,
            expires_at=transfer.expires_at,
            ilp=transfer.ilp,
        )
        self._holds[transfer.id] = _Hold(transfer=incoming)
        logger.debug(
            "ledger.transfer_prepared",
            transfer_id=transfer.id,
            sender=sender,
            receiver=receiver,
            amount=transfer.amount,
        )
        self.client(receiver).deliver(IncomingPrepare(transfer=incoming))

    def fulfill(self, receiver: str, transfer_id: str, fulfillment: str) -> None:
        self.expire_transfers()
        hold = self._holds.get(transfer_id)
        if hold is None or hold.transfer.to != receiver:
            raise LedgerFulfillmentError(transfer_id, "no such incoming transfer")
        if hold.state != _PREPARED:
            raise LedgerFulfillmentError(transfer_id, f"transfer is already {hold.state}")
        try:
            preimage = codec.decode(fulfillment)
            condition = codec.decode_condition(hold.transfer.execution_condition)
        except ValueError as exc:
            raise LedgerFulfillmentError(transfer_id, f"malformed fulfillment: {exc}") from exc
        if not codec.verify(preimage, condition):
            raise LedgerFulfillmentError(transfer_id, "fulfillment does not match condition")

        hold.state = _EXECUTED
        self._balances[receiver] += hold.transfer.amount
        logger.debug("ledger.transfer_executed", transfer_id=transfer_id, amount=hold.transfer.amount)
        self.client(hold.transfer.from_account).deliver(
            OutgoingFulfill(transfer_id=transfer_id, fulfillment=fulfillment)
        )

    def reject(self, receiver: str, transfer_id: str, reason: RejectionEnvelope) -> None:
        self.expire_transfers()
        hold = self._holds.get(transfer_id)
        if hold is None or hold.transfer.to != receiver:
            raise LedgerError(f"No such incoming transfer: {transfer_id}")
        if hold.state != _PREPARED:
            raise LedgerError(f"Transfer {transfer_id} is already {hold.state}")

        hold.state = _REJECTED
        self._balances[hold.transfer.from_account] += hold.transfer.amount
        logger.debug("ledger.transfer_rejected", transfer_id=transfer_id, code=reason.code)
        self.client(hold.transfer.from_account).deliver(
            OutgoingReject(transfer_id=transfer_id, reason=reason)
        )

    def expire_transfers(self, now: datetime | None = None) -> list[str]:
        """Refund every prepared transfer past its expiry. Returns their ids."""
        now = now or self._clock()
        expired = []
        for transfer_id, hold in self._holds.items():
            if hold.state == _PREPARED and now >= hold.transfer.expires_at:
                hold.state = _EXPIRED
                self._balances[hold.transfer.from_account] += hold.transfer.amount
                expired.append(transfer_id)
        if expired:
            logger.debug("ledger.transfers_expired", count=len(expired))
        return expired


class InMemoryLedgerClient:
    """LedgerClient bound to one account of an InMemoryLedger."""

    def __init__(self, ledger: InMemoryLedger, address: str) -> None:
        self._ledger = ledger
        self._address = address
        self._connected = False
        self._queue: asyncio.Queue[LedgerEvent | None] = asyncio.Queue()

    @property
    def is_connected(self) -> bool:
        return self._connected

    async def connect(self) -> None:
        if not self._ledger.has_account(self._address):
            raise LedgerConnectionError(f"No such account on ledger: {self._address}")
        if self._connected:
            return
        self._drop_stale_close_marker()
        self._connected = True
        logger.debug("ledger.connected", account=self._address)

    async def disconnect(self) -> None:
        if not self._connected:
            return
        self._connected = False
        self._queue.put_nowait(None)
        logger.debug("ledger.disconnected", account=self._address)

    def get_info(self) -> LedgerInfo:
        self._require_connected()
        return self._ledger.info

    def get_account(self) -> str:
        self._require_connected()
        return self._address

    async def send_transfer(self, transfer: OutgoingTransfer) -> None:
        self._require_connected()
        if self._ledger.address(transfer.from_account) != self._address:
            raise LedgerError(f"Cannot send from {transfer.from_account} as {self._address}")
        self._ledger.prepare(transfer)

    async def fulfill_condition(self, transfer_id: str, fulfillment: str) -> None:
        self._require_connected()
        self._ledger.fulfill(self._address, transfer_id, fulfillment)

    async def reject_incoming_transfer(
        self, transfer_id: str, reason: RejectionEnvelope
    ) -> None:
        self._require_connected()
        self._ledger.reject(self._address, transfer_id, reason)

    async def events(self) -> AsyncIterator[LedgerEvent]:
        while True:
            event = await self._queue.get()
            if event is None:
                return
            yield event

    def deliver(self, event: LedgerEvent) -> None:
        """Queue an event for this account. Called by the ledger."""
        self._queue.put_nowait(event)

    def _require_connected(self) -> None:
        if not self._connected:
            raise LedgerConnectionError(f"Not connected: {self._address}")

    def _drop_stale_close_marker(self) -> None:
        pending = []
        while not self._queue.empty():
            event = self._queue.get_nowait()
            if event is not None:
                pending.append(event)
        for event in pending:
            self._queue.put_nowait(event)


# ---------------------------------------------------------------------------
# Process-wide ledger used by the default factory
# ---------------------------------------------------------------------------

_ledger: InMemoryLedger | None = None


def init_ledger(settings: Settings) -> InMemoryLedger:
    """Create the process-wide ledger from settings and open the configured accounts."""
    global _ledger
    _ledger = InMemoryLedger(
        prefix=settings.ledger_prefix,
        currency_code=settings.ledger_currency_code,
        currency_scale=settings.ledger_currency_scale,
    )
    for account in (settings.shop_account, settings.buyer_account):
        if not _ledger.has_account(account):
            _ledger.open_account(account, balance=settings.ledger_initial_balance)
    logger.info("ledger.initialized", prefix=settings.ledger_prefix, backend="memory")
    return _ledger


def get_ledger() -> InMemoryLedger:
    """Return the process-wide ledger. Must call init_ledger() first."""
    if _ledger is None:
        raise RuntimeError("Ledger not initialized. Call init_ledger() first.")
    return _ledger


def close_ledger() -> None:
    global _ledger
    _ledger = None


def create_client(account: str, settings: Settings) -> InMemoryLedgerClient:
    """Default ledger factory: a client on the process-wide in-memory ledger."""
    ledger = _ledger if _ledger is not None else init_ledger(settings)
    if not ledger.has_account(account):
        ledger.open_account(account, balance=settings.ledger_initial_balance)
    return ledger.client(account)
