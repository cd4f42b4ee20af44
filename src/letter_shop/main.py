"""FastAPI application entry point for the letter shop.

Lifecycle:
    1. Startup: Initialize logging, build the ledger client, connect the
       seller, start the ledger event loop and the expiry sweep.
    2. Running: Serve offers (402 + Pay header) and paid letters.
    3. Shutdown: Disconnect from the ledger and stop background tasks.

A ledger connection failure at startup is fatal.

Run with:
    letter-shop-serve
    uvicorn letter_shop.main:app --host 0.0.0.0 --port 18000
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager, suppress
from typing import TYPE_CHECKING

from fastapi import FastAPI

from letter_shop import __version__
from letter_shop.config import Settings, get_settings
from letter_shop.domain.exceptions import LedgerConnectionError
from letter_shop.infrastructure.escrow_store import EscrowStore
from letter_shop.infrastructure.ledger.factory import build_ledger_client
from letter_shop.logging_config import get_logger, setup_logging
from letter_shop.services.seller_service import SellerEscrowService

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator


async def sweep_periodically(seller: SellerEscrowService, interval: float) -> None:
    """Expire stale offers every ``interval`` seconds until cancelled."""
    while True:
        await asyncio.sleep(interval)
        seller.sweep_expired()


def _report_task_exit(task: asyncio.Task) -> None:
    """Log background tasks that stop before shutdown."""
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        get_logger(__name__).critical("app.task_failed", task=task.get_name(), error=str(exc))


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Manage application startup and shutdown lifecycle."""
    settings: Settings = app.state.settings

    setup_logging(
        log_level=settings.app_log_level,
        json_logs=not settings.is_development,
    )
    logger = get_logger(__name__)
    logger.info("app.starting", env=settings.app_env, debug=settings.app_debug)

    ledger = build_ledger_client(settings.shop_account, settings)
    store = EscrowStore(
        offer_ttl=settings.escrow_offer_ttl,
        settled_cache_size=settings.escrow_settled_cache_size,
    )
    seller = SellerEscrowService(
        ledger,
        store,
        price=settings.letter_price,
        alphabet=settings.letter_alphabet,
    )
    try:
        await seller.start()
    except LedgerConnectionError as exc:
        logger.critical("app.ledger_unavailable", error=exc.message)
        raise

    app.state.seller = seller
    tasks = [
        asyncio.create_task(seller.run(), name="ledger-events"),
        asyncio.create_task(
            sweep_periodically(seller, settings.escrow_sweep_interval_seconds),
            name="escrow-sweep",
        ),
    ]
    for task in tasks:
        task.add_done_callback(_report_task_exit)
    logger.info(
        "app.started",
        host=settings.app_host,
        port=settings.app_port,
        url=settings.shop_public_url,
    )

    yield

    logger.info("app.shutting_down")
    await seller.stop()
    for task in tasks:
        task.cancel()
    for task in tasks:
        with suppress(asyncio.CancelledError):
            await task
    app.state.seller = None
    logger.info("app.stopped")


def create_app(settings: Settings | None = None) -> FastAPI:
    """Application factory — creates and configures the FastAPI app."""
    settings = settings or get_settings()

    app = FastAPI(
        title="Letter Shop",
        description="Pay-on-delivery letters over hash-locked ledger transfers.",
        version=__version__,
        lifespan=lifespan,
        debug=settings.app_debug,
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
    )
    app.state.settings = settings
    app.state.seller = None

    from letter_shop.api.middleware import setup_middleware

    setup_middleware(app)

    from letter_shop.api.routes.health import router as health_router
    from letter_shop.api.routes.shop import router as shop_router

    # Fixed paths first; the shop router ends with a catch-all /{fulfillment}.
    app.include_router(health_router)
    app.include_router(shop_router)

    return app


# The app instance used by Uvicorn
app = create_app()
