"""Pydantic schemas for the letter shop HTTP surface.

The ``Pay`` header is the contract between the shop and any payment client:

    Pay: <amount> <account> <condition>

amount is in ledger base units, account is the full ledger address to pay,
condition is the base64url execution condition to attach to the transfer.
"""

from __future__ import annotations

from pydantic import BaseModel, Field, field_validator

from letter_shop.domain import condition as codec


class PayHeader(BaseModel):
    """Parsed form of the ``Pay`` response header."""

    amount: int = Field(..., gt=0, description="Price in ledger base units")
    account: str = Field(..., min_length=1, description="Ledger address to pay")
    condition: str = Field(..., description="base64url execution condition")

    @field_validator("account")
    @classmethod
    def _no_whitespace(cls, value: str) -> str:
        if any(ch.isspace() for ch in value):
            raise ValueError("account must not contain whitespace")
        return value

    @field_validator("condition")
    @classmethod
    def _valid_condition(cls, value: str) -> str:
        codec.decode_condition(value)
        return value

    @classmethod
    def parse(cls, header: str) -> PayHeader:
        """Parse a raw header value.

        Raises:
            ValueError: If the header does not have three well-formed parts.
        """
        parts = header.split()
        if len(parts) != 3:
            raise ValueError(f"Malformed Pay header: {header!r}")
        amount, account, condition = parts
        return cls(amount=int(amount), account=account, condition=condition)

    def __str__(self) -> str:
        return f"{self.amount} {self.account} {self.condition}"


class HealthResponse(BaseModel):
    """Response body of GET /health."""

    status: str
    version: str
    ledger: str
    account: str | None = None
    pending_escrows: int = 0
