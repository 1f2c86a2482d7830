from fastapi import APIRouter

from marketship.api.v1.endpoints import (
    # Pre-checkout estimates
    shipping,
    # Label booking, tracking and RTO settlement
    orders,
)


api_router = APIRouter(prefix="/api/v1")

api_router.include_router(shipping.router, prefix="/shipping", tags=["Shipping"])
api_router.include_router(orders.router, prefix="/orders", tags=["Orders"])
