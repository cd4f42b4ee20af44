"""Pydantic schemas for the shop's HTTP surface."""

from letter_shop.schemas.shop import HealthResponse, PayHeader

__all__ = ["HealthResponse", "PayHeader"]
