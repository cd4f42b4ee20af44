"""Letter shop routes.

Routes:
    GET /               issue a new escrow, answer 402 Payment Required
    GET /favicon.ico    always 404 (browsers probe for it)
    GET /{fulfillment}  deliver the letter unlocked by a fulfillment
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import PlainTextResponse, Response

from letter_shop.api.deps import get_seller
from letter_shop.logging_config import get_logger
from letter_shop.services.seller_service import SellerEscrowService

router = APIRouter(tags=["Shop"])
logger = get_logger(__name__)


@router.get(
    "/",
    status_code=402,
    response_class=PlainTextResponse,
    summary="Request a letter",
)
async def request_letter(
    request: Request,
    seller: SellerEscrowService = Depends(get_seller),
) -> PlainTextResponse:
    """Issue a new escrow and tell the client how to pay for it."""
    offer = seller.issue_escrow()
    logger.info("shop.waiting_for_payment", condition=offer.condition, url=str(request.url))
    return PlainTextResponse(
        offer.instructions,
        status_code=402,
        headers={"Pay": offer.pay_header},
    )


@router.get("/favicon.ico", include_in_schema=False)
async def favicon() -> Response:
    return Response(status_code=404)


@router.get(
    "/{fulfillment}",
    response_class=PlainTextResponse,
    summary="Retrieve a paid letter",
    responses={404: {"description": "Unrecognised fulfillment"}},
)
async def retrieve_letter(
    fulfillment: str,
    seller: SellerEscrowService = Depends(get_seller),
) -> PlainTextResponse:
    """Return the letter bound to ``fulfillment``."""
    letter = seller.retrieve_resource(fulfillment)
    if letter is None:
        return PlainTextResponse("Unrecognised fulfillment.", status_code=404)
    return PlainTextResponse(f"Your letter: {letter}")
