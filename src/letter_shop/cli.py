"""Command-line entry points.

    letter-shop-pay DESTINATION AMOUNT CONDITION [--shop-url URL] [--fetch] [--timeout S]
    letter-shop-serve [--host HOST] [--port PORT]

``letter-shop-pay`` takes the three fields of the shop's Pay header, pays,
and prints the URL that delivers the letter. Exit codes: 0 paid, 1 payment
failed, 2 invalid input.
"""

from __future__ import annotations

import argparse
import asyncio
import sys

import httpx

from letter_shop.config import Settings, get_settings
from letter_shop.domain.amounts import parse_amount
from letter_shop.domain.exceptions import (
    InvalidAddressError,
    InvalidConditionError,
    LedgerError,
    LedgerFactoryError,
    LetterShopError,
    PaymentError,
)
from letter_shop.infrastructure.ledger.factory import build_ledger_client
from letter_shop.logging_config import get_logger, setup_logging
from letter_shop.services.buyer_service import (
    BuyerPaymentService,
    retrieval_url,
    retrieve_resource,
)

logger = get_logger("letter_shop.cli")

EXIT_OK = 0
EXIT_PAYMENT_FAILED = 1
EXIT_INVALID_INPUT = 2


def _amount(value: str) -> int:
    try:
        amount = parse_amount(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(str(exc)) from exc
    if amount == 0:
        raise argparse.ArgumentTypeError("amount must be positive")
    return amount


def build_pay_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="letter-shop-pay",
        description="Pay the letter shop and print where to collect the letter.",
    )
    parser.add_argument("destination_address", help="Ledger address from the Pay header")
    parser.add_argument("destination_amount", type=_amount, help="Amount in ledger base units")
    parser.add_argument("condition", help="base64url condition from the Pay header")
    parser.add_argument(
        "--shop-url",
        default=None,
        help="Shop base URL (default: SHOP_PUBLIC_URL setting)",
    )
    parser.add_argument(
        "--fetch",
        action="store_true",
        help="Retrieve the letter after paying",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Seconds to wait for the fulfillment (capped at the transfer expiry)",
    )
    return parser


async def run_payment(args: argparse.Namespace, settings: Settings) -> int:
    """Pay, print the retrieval URL and optionally fetch the letter."""
    shop_url = args.shop_url or settings.shop_public_url
    try:
        ledger = build_ledger_client(settings.buyer_account, settings)
    except LedgerFactoryError as exc:
        print(f"error: {exc.message}", file=sys.stderr)
        return EXIT_INVALID_INPUT
    buyer = BuyerPaymentService(ledger, expiry_window=settings.transfer_expiry)

    try:
        result = await buyer.pay(
            args.destination_address,
            args.destination_amount,
            args.condition,
            timeout=args.timeout,
        )
    except (InvalidConditionError, InvalidAddressError) as exc:
        print(f"error: {exc.message}", file=sys.stderr)
        return EXIT_INVALID_INPUT
    except (PaymentError, LedgerError) as exc:
        logger.error("payment.failed", error=exc.message, code=exc.code)
        print(f"Payment failed: {exc.message}", file=sys.stderr)
        return EXIT_PAYMENT_FAILED

    url = retrieval_url(shop_url, result.fulfillment)
    print(f"Payment complete. Collect your letter at {url}")

    if args.fetch:
        async with httpx.AsyncClient(timeout=10.0) as client:
            try:
                body = await retrieve_resource(shop_url, result.fulfillment, client)
            except (LetterShopError, httpx.HTTPError) as exc:
                logger.error("resource.fetch_failed", url=url, error=str(exc))
                print(f"Could not fetch letter: {exc}", file=sys.stderr)
                return EXIT_PAYMENT_FAILED
        print(body)
    return EXIT_OK


def pay(argv: list[str] | None = None) -> int:
    """Entry point for ``letter-shop-pay``."""
    parser = build_pay_parser()
    args = parser.parse_args(argv)
    settings = get_settings()
    setup_logging(log_level=settings.app_log_level, json_logs=not settings.is_development)

    logger.info("payment_client.starting")
    logger.debug(
        "payment_client.arguments",
        destination=args.destination_address,
        amount=args.destination_amount,
        condition=args.condition,
    )
    return asyncio.run(run_payment(args, settings))


def serve(argv: list[str] | None = None) -> None:
    """Entry point for ``letter-shop-serve``."""
    import uvicorn

    settings = get_settings()
    parser = argparse.ArgumentParser(prog="letter-shop-serve", description="Run the letter shop.")
    parser.add_argument("--host", default=settings.app_host)
    parser.add_argument("--port", type=int, default=settings.app_port)
    args = parser.parse_args(argv)

    uvicorn.run(
        "letter_shop.main:app",
        host=args.host,
        port=args.port,
        log_level=settings.app_log_level.lower(),
    )


def main() -> None:
    sys.exit(pay())


if __name__ == "__main__":
    main()
