"""ILP payment packet codec (packet type 1, OER encoding).

Wire layout:
    envelope   = type:UInt8 || contents:VarOctetString
    contents   = amount:UInt64 || account:VarOctetString(ascii)
                 || data:VarOctetString || extensions:UInt8(0)

VarOctetString lengths below 128 take one byte; longer lengths are written
as 0x80|n followed by the n-byte big-endian length.
"""

from __future__ import annotations

from dataclasses import dataclass, field

TYPE_ILP_PAYMENT = 1
_MAX_UINT64 = 2**64 - 1


@dataclass(frozen=True)
class IlpPayment:
    amount: int
    account: str
    data: bytes = field(default=b"")


@dataclass
class _Writer:
    buf: bytearray

    def write_u8(self, v: int) -> None:
        self.buf.extend(int(v).to_bytes(1, "big", signed=False))

    def write_u64(self, v: int) -> None:
        self.buf.extend(int(v).to_bytes(8, "big", signed=False))

    def write_length_prefix(self, length: int) -> None:
        if length < 0x80:
            self.write_u8(length)
            return
        size = (length.bit_length() + 7) // 8
        self.write_u8(0x80 | size)
        self.buf.extend(length.to_bytes(size, "big"))

    def write_var_octet_string(self, b: bytes) -> None:
        self.write_length_prefix(len(b))
        self.buf.extend(b)


class _Reader:
    def __init__(self, data: bytes) -> None:
        self._data = data
        self._pos = 0

    def _take(self, n: int) -> bytes:
        if self._pos + n > len(self._data):
            raise ValueError("Truncated ILP packet")
        chunk = self._data[self._pos:self._pos + n]
        self._pos += n
        return chunk

    def read_u8(self) -> int:
        return self._take(1)[0]

    def read_u64(self) -> int:
        return int.from_bytes(self._take(8), "big")

    def read_length_prefix(self) -> int:
        first = self.read_u8()
        if first & 0x80 == 0:
            return first
        size = first & 0x7F
        if size == 0:
            raise ValueError("Invalid length prefix")
        return int.from_bytes(self._take(size), "big")

    def read_var_octet_string(self) -> bytes:
        return self._take(self.read_length_prefix())

    def at_end(self) -> bool:
        return self._pos == len(self._data)


def serialize_ilp_payment(amount: int, account: str, data: bytes = b"") -> bytes:
    """Serialize an ILP payment packet."""
    if not 0 <= amount <= _MAX_UINT64:
        raise ValueError(f"Amount out of UInt64 range: {amount}")

    try:
        address = account.encode("ascii")
    except UnicodeEncodeError as exc:
        raise ValueError(f"Account must be ASCII: {account!r}") from exc

    contents = _Writer(bytearray())
    contents.write_u64(amount)
    contents.write_var_octet_string(address)
    contents.write_var_octet_string(data)
    contents.write_u8(0)

    envelope = _Writer(bytearray())
    envelope.write_u8(TYPE_ILP_PAYMENT)
    envelope.write_var_octet_string(bytes(contents.buf))
    return bytes(envelope.buf)


def deserialize_ilp_payment(packet: bytes) -> IlpPayment:
    """Parse an ILP payment packet.

    Raises:
        ValueError: On a wrong packet type, truncation or trailing bytes.
    """
    envelope = _Reader(packet)
    packet_type = envelope.read_u8()
    if packet_type != TYPE_ILP_PAYMENT:
        raise ValueError(f"Packet has incorrect type: {packet_type}")
    contents_bytes = envelope.read_var_octet_string()
    if not envelope.at_end():
        raise ValueError("Trailing bytes after ILP packet")

    contents = _Reader(contents_bytes)
    amount = contents.read_u64()
    account = contents.read_var_octet_string().decode("ascii")
    data = contents.read_var_octet_string()
    contents.read_u8()  # extensions
    return IlpPayment(amount=amount, account=account, data=data)
