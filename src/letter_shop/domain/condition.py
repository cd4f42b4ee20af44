"""Hash-lock primitives: fulfillments, conditions and their text form.

A fulfillment is a 32-byte secret drawn from the OS CSPRNG; its condition
is the SHA-256 digest. Both cross text boundaries (HTTP headers, URLs,
transfer fields, CLI arguments) as unpadded base64url.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import re
import secrets

PREIMAGE_LENGTH = 32
CONDITION_LENGTH = 32

_BASE64URL_RE = re.compile(r"^[A-Za-z0-9_-]*$")


def generate_secret() -> bytes:
    """Return a fresh random preimage."""
    return secrets.token_bytes(PREIMAGE_LENGTH)


def commit(preimage: bytes) -> bytes:
    """Return the condition (SHA-256 digest) for a preimage."""
    return hashlib.sha256(preimage).digest()


def verify(fulfillment: bytes, condition: bytes) -> bool:
    """Check that ``fulfillment`` opens ``condition``."""
    return hmac.compare_digest(commit(fulfillment), condition)


def new_condition_pair() -> tuple[bytes, bytes]:
    """Return a ``(fulfillment, condition)`` pair."""
    fulfillment = generate_secret()
    return fulfillment, commit(fulfillment)


def encode(data: bytes) -> str:
    """Encode bytes as base64url without padding."""
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def decode(text: str) -> bytes:
    """Decode unpadded base64url text.

    Raises:
        ValueError: If ``text`` uses characters outside the URL-safe alphabet
            or has a length no base64 encoding can produce.
    """
    if not _BASE64URL_RE.match(text):
        raise ValueError(f"Not base64url text: {text!r}")
    if len(text) % 4 == 1:
        raise ValueError(f"Invalid base64url length: {len(text)}")
    padded = text + "=" * (-len(text) % 4)
    try:
        return base64.urlsafe_b64decode(padded)
    except binascii.Error as exc:
        raise ValueError(str(exc)) from exc


def decode_condition(text: str) -> bytes:
    """Decode a condition and check it is a full-length digest."""
    condition = decode(text)
    if len(condition) != CONDITION_LENGTH:
        raise ValueError(
            f"Condition must be {CONDITION_LENGTH} bytes, got {len(condition)}"
        )
    return condition
