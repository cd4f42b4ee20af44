"""Health check endpoint.

Reports ledger connectivity and how many offers are awaiting payment.
"""

from __future__ import annotations

from fastapi import APIRouter, Request

from letter_shop import __version__
from letter_shop.logging_config import get_logger
from letter_shop.schemas.shop import HealthResponse

router = APIRouter(tags=["Health"])
logger = get_logger(__name__)


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
)
async def health_check(request: Request) -> HealthResponse:
    seller = getattr(request.app.state, "seller", None)
    if seller is None or not seller.is_connected:
        logger.warning("health.ledger_disconnected")
        return HealthResponse(status="degraded", version=__version__, ledger="disconnected")

    return HealthResponse(
        status="ok",
        version=__version__,
        ledger="connected",
        account=seller.account,
        pending_escrows=seller.store.pending_count,
    )
