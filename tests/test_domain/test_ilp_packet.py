"""Tests for the ILP payment packet codec."""

from __future__ import annotations

import pytest

from letter_shop.domain.ilp_packet import (
    IlpPayment,
    deserialize_ilp_payment,
    serialize_ilp_payment,
)


class TestSerialize:
    def test_known_encoding(self) -> None:
        packet = serialize_ilp_payment(10, "g.a")
        assert packet.hex() == "010e" + "000000000000000a" + "03" + "672e61" + "00" + "00"

    def test_long_account_uses_multi_byte_length(self) -> None:
        account = "g." + "x" * 200
        packet = serialize_ilp_payment(1, account)
        # contents: 8 amount + (2 + 202) account + 1 data + 1 extensions = 214
        assert packet[0] == 0x01
        assert packet[1] == 0x81
        assert packet[2] == 214
        assert deserialize_ilp_payment(packet).account == account

    def test_amount_out_of_range(self) -> None:
        with pytest.raises(ValueError, match="UInt64"):
            serialize_ilp_payment(2**64, "g.a")

    def test_non_ascii_account_rejected(self) -> None:
        with pytest.raises(ValueError, match="ASCII"):
            serialize_ilp_payment(1, "g.sh\u00f6p")


class TestDeserialize:
    def test_parses_fields(self) -> None:
        packet = serialize_ilp_payment(123, "test.letter-shop.shop", b"memo")
        assert deserialize_ilp_payment(packet) == IlpPayment(
            amount=123, account="test.letter-shop.shop", data=b"memo"
        )

    def test_wrong_type(self) -> None:
        packet = bytearray(serialize_ilp_payment(1, "g.a"))
        packet[0] = 2
        with pytest.raises(ValueError, match="incorrect type"):
            deserialize_ilp_payment(bytes(packet))

    def test_truncated(self) -> None:
        with pytest.raises(ValueError, match="Truncated"):
            deserialize_ilp_payment(serialize_ilp_payment(1, "g.a")[:-3])

    def test_trailing_bytes(self) -> None:
        with pytest.raises(ValueError, match="Trailing"):
            deserialize_ilp_payment(serialize_ilp_payment(1, "g.a") + b"\x00")
