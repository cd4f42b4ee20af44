"""FastAPI dependency injection providers.

The seller service lives on ``app.state``; it is created by
the application lifespan in main.py.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import Request

if TYPE_CHECKING:
    from letter_shop.services.seller_service import SellerEscrowService


def get_seller(request: Request) -> SellerEscrowService:
    """Provide the running SellerEscrowService."""
    seller = getattr(request.app.state, "seller", None)
    if seller is None:
        raise RuntimeError("Seller not running. Is the application lifespan active?")
    return seller
