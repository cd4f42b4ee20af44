#!/usr/bin/env python3
"""Letter Shop — End-to-End Simulation.

Runs the shop (FastAPI under uvicorn) and a buying customer in one process,
both connected to the in-memory ledger:

    Scenario 1: Happy Path
        - Customer requests a letter -> 402 + Pay header
        - Customer pays the advertised amount with the advertised condition
        - Shop fulfills, customer collects the letter with the fulfillment

    Scenario 2: Underpayment
        - Customer pays less than the price -> rejected with F04, refunded

    Scenario 3: Forged Condition
        - Customer pays with a condition the shop never issued -> rejected with F05

    Scenario 4: Replay
        - Customer pays a second time against an already-fulfilled condition
          -> rejected with F05, only the first payment settles

Usage:
    python simulation.py
    python simulation.py --scenario 2
    python simulation.py --port 18080
"""

from __future__ import annotations

import argparse
import asyncio
from dataclasses import dataclass

import httpx
import uvicorn

# ---------------------------------------------------------------------------
# Configure structured logging BEFORE importing app modules
# ---------------------------------------------------------------------------
from letter_shop.logging_config import get_logger, setup_logging

setup_logging(log_level="INFO", json_logs=False)
logger = get_logger("simulation")

from letter_shop.config import Settings  # noqa: E402
from letter_shop.domain import condition as codec  # noqa: E402
from letter_shop.domain.exceptions import PaymentRejectedError, ResourceNotFoundError  # noqa: E402
from letter_shop.infrastructure.ledger.factory import build_ledger_client  # noqa: E402
from letter_shop.infrastructure.ledger.memory import close_ledger, get_ledger, init_ledger  # noqa: E402
from letter_shop.main import create_app  # noqa: E402
from letter_shop.schemas.shop import PayHeader  # noqa: E402
from letter_shop.services.buyer_service import (  # noqa: E402
    BuyerPaymentService,
    fetch_offer,
    retrieve_resource,
)


# ---------------------------------------------------------------------------
# Shop lifecycle helpers
# ---------------------------------------------------------------------------
class ShopServer:
    """Runs the shop app with uvicorn inside the current event loop."""

    def __init__(self, settings: Settings) -> None:
        config = uvicorn.Config(
            create_app(settings),
            host="127.0.0.1",
            port=settings.app_port,
            log_level="warning",
            lifespan="on",
        )
        self._server = uvicorn.Server(config)
        self._task: asyncio.Task | None = None

    async def __aenter__(self) -> ShopServer:
        self._task = asyncio.create_task(self._server.serve())
        while not self._server.started:
            if self._task.done():
                await self._task
                raise RuntimeError("Shop server exited during startup")
            await asyncio.sleep(0.05)
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        self._server.should_exit = True
        if self._task is not None:
            await self._task


# ---------------------------------------------------------------------------
# Customer Agent
# ---------------------------------------------------------------------------
@dataclass
class Customer:
    """Simulated customer that buys letters from the shop."""

    settings: Settings
    http: httpx.AsyncClient

    @property
    def shop_url(self) -> str:
        return self.settings.shop_public_url

    def _buyer(self) -> BuyerPaymentService:
        ledger = build_ledger_client(self.settings.buyer_account, self.settings)
        return BuyerPaymentService(ledger, expiry_window=self.settings.transfer_expiry)

    async def request_letter(self) -> PayHeader:
        offer = await fetch_offer(self.shop_url, self.http)
        logger.info("🔵 CUSTOMER: Offer received", pay=str(offer))
        return offer

    async def pay(self, offer: PayHeader, amount: int | None = None, condition: str | None = None) -> str:
        """Pay for an offer. Returns the fulfillment."""
        result = await self._buyer().pay(
            offer.account,
            offer.amount if amount is None else amount,
            offer.condition if condition is None else condition,
            timeout=5.0,
        )
        logger.info("🔵 CUSTOMER: Payment fulfilled", transfer_id=result.transfer_id)
        return result.fulfillment

    async def collect(self, fulfillment: str) -> str:
        body = await retrieve_resource(self.shop_url, fulfillment, self.http)
        logger.info("🔵 CUSTOMER: Letter collected", body=body)
        return body


# ---------------------------------------------------------------------------
# Print helpers
# ---------------------------------------------------------------------------
def banner(text: str) -> None:
    """Print a prominent banner."""
    width = 70
    print("\n" + "=" * width)
    print(f"  {text}")
    print("=" * width + "\n")


def print_balances(settings: Settings) -> None:
    ledger = get_ledger()
    print(f"  Shop balance:     {ledger.balance(settings.shop_account)}")
    print(f"  Customer balance: {ledger.balance(settings.buyer_account)}")


# ===========================================================================
# Scenarios
# ===========================================================================
async def scenario_1_happy_path(customer: Customer) -> None:
    banner("SCENARIO 1: Happy Path — pay, then collect the letter")
    offer = await customer.request_letter()
    fulfillment = await customer.pay(offer)
    body = await customer.collect(fulfillment)
    print(f"\n  ✅ {body}")

    try:
        await customer.collect(codec.encode(codec.generate_secret()))
    except ResourceNotFoundError:
        print("  ✅ A made-up fulfillment collects nothing")
    print_balances(customer.settings)


async def scenario_2_underpayment(customer: Customer) -> None:
    banner("SCENARIO 2: Underpayment — rejected with F04")
    offer = await customer.request_letter()
    try:
        await customer.pay(offer, amount=offer.amount // 2 or 1)
    except PaymentRejectedError as exc:
        print(f"\n  ❌ {exc.envelope.code} {exc.envelope.name}: {exc.envelope.message}")
    print_balances(customer.settings)


async def scenario_3_forged_condition(customer: Customer) -> None:
    banner("SCENARIO 3: Forged Condition — rejected with F05")
    offer = await customer.request_letter()
    forged = codec.encode(codec.commit(codec.generate_secret()))
    try:
        await customer.pay(offer, condition=forged)
    except PaymentRejectedError as exc:
        print(f"\n  ❌ {exc.envelope.code} {exc.envelope.name}: {exc.envelope.message}")
    print_balances(customer.settings)


async def scenario_4_replay(customer: Customer) -> None:
    banner("SCENARIO 4: Replay — a condition settles only once")
    offer = await customer.request_letter()
    await customer.pay(offer)
    print("\n  ✅ First payment fulfilled")
    try:
        await customer.pay(offer)
    except PaymentRejectedError as exc:
        print(f"  ❌ Second payment: {exc.envelope.code} {exc.envelope.name}")
    print_balances(customer.settings)


SCENARIOS = {
    1: scenario_1_happy_path,
    2: scenario_2_underpayment,
    3: scenario_3_forged_condition,
    4: scenario_4_replay,
}


# ===========================================================================
# Main
# ===========================================================================
async def run(scenarios: list[int], port: int) -> None:
    settings = Settings(
        app_port=port,
        app_log_level="INFO",
        shop_public_url=f"http://127.0.0.1:{port}",
    )
    init_ledger(settings)

    print("\n" + "🚀" * 35)
    print("  LETTER SHOP — SIMULATION")
    print(f"  Shop: {settings.shop_public_url}")
    print(f"  Price: {settings.letter_price} base units ({settings.ledger_currency_code})")
    print("🚀" * 35 + "\n")

    try:
        async with ShopServer(settings), httpx.AsyncClient(timeout=10.0) as http:
            customer = Customer(settings=settings, http=http)
            for num in scenarios:
                await SCENARIOS[num](customer)
    finally:
        close_ledger()

    print("\n" + "=" * 70)
    print("  ✅ ALL SCENARIOS COMPLETED")
    print("=" * 70 + "\n")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Letter Shop Simulation")
    parser.add_argument(
        "--scenario",
        type=int,
        default=0,
        choices=[0, *SCENARIOS],
        help="Run a specific scenario (1-4). Default: run all.",
    )
    parser.add_argument("--port", type=int, default=18000, help="Port for the shop server.")
    args = parser.parse_args()

    selected = list(SCENARIOS) if args.scenario == 0 else [args.scenario]
    asyncio.run(run(selected, args.port))
