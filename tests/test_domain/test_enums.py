"""Tests for domain enumerations."""

from __future__ import annotations

from letter_shop.domain.enums import EscrowStatus, RejectionCode, TransferOutcome
from letter_shop.domain.exceptions import AmountInsufficientError, UnknownConditionError


class TestEscrowStatus:
    def test_all_statuses_exist(self) -> None:
        assert {s.value for s in EscrowStatus} == {"PENDING", "FULFILLED", "REJECTED", "EXPIRED"}

    def test_status_is_str_enum(self) -> None:
        assert isinstance(EscrowStatus.PENDING, str)
        assert EscrowStatus.PENDING == "PENDING"

    def test_only_pending_is_open(self) -> None:
        assert not EscrowStatus.PENDING.is_terminal
        assert EscrowStatus.FULFILLED.is_terminal
        assert EscrowStatus.REJECTED.is_terminal
        assert EscrowStatus.EXPIRED.is_terminal


class TestCodes:
    def test_rejection_codes(self) -> None:
        assert RejectionCode.INSUFFICIENT_DESTINATION_AMOUNT == "F04"
        assert RejectionCode.WRONG_CONDITION == "F05"

    def test_outcomes(self) -> None:
        assert len(TransferOutcome) == 3


class TestRejectionErrorsUseCodes:
    def test_insufficient_amount(self) -> None:
        exc = AmountInsufficientError("short", required=10, received=5)
        assert exc.code == RejectionCode.INSUFFICIENT_DESTINATION_AMOUNT

    def test_unknown_condition(self) -> None:
        assert UnknownConditionError("abc").code == RejectionCode.WRONG_CONDITION
