"""Tests for the letter-shop-pay command."""

from __future__ import annotations

import asyncio
from contextlib import suppress

import pytest

from letter_shop.cli import (
    EXIT_INVALID_INPUT,
    EXIT_OK,
    EXIT_PAYMENT_FAILED,
    build_pay_parser,
    pay,
    run_payment,
)
from letter_shop.config import Settings
from letter_shop.domain import condition as codec
from letter_shop.infrastructure.escrow_store import EscrowStore
from letter_shop.infrastructure.ledger.factory import build_ledger_client
from letter_shop.services.seller_service import SellerEscrowService

from .conftest import PREFIX, PRICE

SHOP_ADDRESS = PREFIX + "shop"


def _condition() -> str:
    return codec.encode(codec.commit(codec.generate_secret()))


class TestParser:
    def test_parses_pay_header_fields(self) -> None:
        condition = _condition()
        args = build_pay_parser().parse_args([SHOP_ADDRESS, "10", condition, "--timeout", "5"])
        assert (args.destination_address, args.destination_amount, args.condition) == (
            SHOP_ADDRESS,
            10,
            condition,
        )
        assert args.timeout == 5.0
        assert args.fetch is False

    @pytest.mark.parametrize("amount", ["abc", "-5", "0", "1.5"])
    def test_invalid_amount_exits_2(self, amount: str) -> None:
        with pytest.raises(SystemExit) as exc_info:
            pay([SHOP_ADDRESS, amount, _condition()])
        assert exc_info.value.code == 2

    def test_missing_arguments_exit_2(self) -> None:
        with pytest.raises(SystemExit) as exc_info:
            pay([SHOP_ADDRESS])
        assert exc_info.value.code == 2


class TestRunPayment:
    @pytest.mark.asyncio
    async def test_invalid_condition(self, settings: Settings, capsys) -> None:
        args = build_pay_parser().parse_args([SHOP_ADDRESS, "10", "not-a-condition"])
        assert await run_payment(args, settings) == EXIT_INVALID_INPUT
        assert "error:" in capsys.readouterr().err

    @pytest.mark.asyncio
    async def test_non_ascii_destination(self, settings: Settings, capsys) -> None:
        args = build_pay_parser().parse_args([PREFIX + "sh\u00f6p", "10", _condition()])
        assert await run_payment(args, settings) == EXIT_INVALID_INPUT
        assert "Invalid destination address" in capsys.readouterr().err

    @pytest.mark.asyncio
    async def test_unloadable_ledger_factory(self, settings: Settings, capsys) -> None:
        settings = settings.model_copy(update={"ledger_factory": "letter_shop.no_such_module:create_client"})
        args = build_pay_parser().parse_args([SHOP_ADDRESS, "10", _condition()])
        assert await run_payment(args, settings) == EXIT_INVALID_INPUT
        assert "Cannot load ledger factory" in capsys.readouterr().err

    @pytest.mark.asyncio
    async def test_unknown_destination(self, settings: Settings, capsys) -> None:
        args = build_pay_parser().parse_args([PREFIX + "nobody", "10", _condition()])
        assert await run_payment(args, settings) == EXIT_PAYMENT_FAILED
        assert "Payment failed" in capsys.readouterr().err

    @pytest.mark.asyncio
    async def test_no_fulfillment_times_out(self, settings: Settings) -> None:
        args = build_pay_parser().parse_args([SHOP_ADDRESS, "10", _condition(), "--timeout", "0.05"])
        assert await run_payment(args, settings) == EXIT_PAYMENT_FAILED

    @pytest.mark.asyncio
    async def test_paid_offer_prints_retrieval_url(self, settings: Settings, capsys) -> None:
        seller = SellerEscrowService(
            build_ledger_client(settings.shop_account, settings), EscrowStore(), price=PRICE
        )
        await seller.start()
        task = asyncio.create_task(seller.run())
        try:
            offer = seller.issue_escrow(resource="Q")
            args = build_pay_parser().parse_args(
                [offer.account, str(offer.amount), offer.condition, "--timeout", "2"]
            )
            assert await run_payment(args, settings) == EXIT_OK
        finally:
            await seller.stop()
            task.cancel()
            with suppress(asyncio.CancelledError):
                await task

        out = capsys.readouterr().out
        prefix = f"Payment complete. Collect your letter at {settings.shop_public_url.rstrip('/')}/"
        assert out.startswith(prefix)
        fulfillment = out.strip().removeprefix(prefix)
        assert seller.retrieve_resource(fulfillment) == "Q"
