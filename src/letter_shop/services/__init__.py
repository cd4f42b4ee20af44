"""Application services — the two halves of the pay-on-delivery protocol."""

from letter_shop.services.buyer_service import BuyerPaymentService, PaymentResult
from letter_shop.services.seller_service import (
    PaymentRequest,
    SellerEscrowService,
    TransferDecision,
)

__all__ = [
    "BuyerPaymentService",
    "PaymentRequest",
    "PaymentResult",
    "SellerEscrowService",
    "TransferDecision",
]
