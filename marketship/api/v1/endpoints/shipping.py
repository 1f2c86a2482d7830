"""
Shipping API endpoints.

Pre-checkout pricing:
- Vendor zone estimate (cached per vendor, origin and weight slab)
- Checkout quote for a retailer's cart
- Estimate cache maintenance
"""
import logging
from decimal import Decimal
from typing import Optional, Dict, Any
from pydantic import Field

from fastapi import APIRouter, HTTPException, status, Query

from marketship.api.deps import DB
from marketship.schemas.base import BaseCreateSchema, BaseResponseSchema, Money
from marketship.services.carriers.types import Address
from marketship.services.estimate_cache import EstimateCache
from marketship.services.estimate_service import EstimateService

logger = logging.getLogger(__name__)

router = APIRouter()


# ==================== SCHEMAS ====================

class PackageDimensions(BaseCreateSchema):
    weight_kg: float = Field(..., gt=0, description="Dead weight in kg")
    length_cm: float = Field(10, gt=0)
    width_cm: float = Field(10, gt=0)
    height_cm: float = Field(10, gt=0)


class EstimateRequest(PackageDimensions):
    """Vendor estimate request."""
    vendor_id: str
    origin_pincode: str = Field(..., min_length=6, max_length=6)
    vendor_email: Optional[str] = None
    refresh: bool = Field(False, description="Ignore the cached estimate")


class SlabInfo(BaseResponseSchema):
    dead_weight: float
    volumetric_weight: float
    chargeable_weight: float
    slab: float


class EstimateResponse(BaseResponseSchema):
    available: bool
    cached: bool
    slab: SlabInfo
    min_price: Optional[Money] = None
    max_price: Optional[Money] = None
    zones: Dict[str, Dict[str, Any]] = {}


class AddressInput(BaseCreateSchema):
    pincode: str = Field(..., min_length=6, max_length=6)
    name: str = ""
    phone: str = ""
    line1: str = ""
    line2: str = ""
    city: str = ""
    state: str = ""
    email: str = ""


class CheckoutQuoteRequest(PackageDimensions):
    """Cart-level quote request."""
    origin: AddressInput
    destination: AddressInput
    declared_value: Decimal = Field(Decimal("0"), ge=0)
    payment_mode: str = Field("PREPAID", pattern="^(PREPAID|COD)$")
    retailer_email: Optional[str] = None


class CheckoutQuoteResponse(BaseResponseSchema):
    carrier: str
    courier_name: str
    price: Money
    zone: str = ""
    estimated_days: Optional[int] = None


class CacheClearResponse(BaseResponseSchema):
    deleted: int


# ==================== ENDPOINTS ====================

@router.post(
    "/estimate",
    response_model=EstimateResponse,
    summary="Vendor shipping estimate",
    description="Price range for a package across delivery zones, cached for 24 hours."
)
async def vendor_estimate(request: EstimateRequest, db: DB):
    service = EstimateService(db)
    estimate = await service.estimate_for_vendor(
        vendor_id=request.vendor_id,
        origin_pincode=request.origin_pincode,
        weight_kg=request.weight_kg,
        length_cm=request.length_cm,
        width_cm=request.width_cm,
        height_cm=request.height_cm,
        vendor_identity=request.vendor_email or request.vendor_id,
        refresh=request.refresh,
    )

    return EstimateResponse(
        available=estimate.min_price is not None,
        cached=estimate.cached,
        slab=SlabInfo(**estimate.slab.to_dict()),
        min_price=estimate.min_price,
        max_price=estimate.max_price,
        zones=estimate.zones,
    )


@router.post(
    "/checkout-quote",
    response_model=CheckoutQuoteResponse,
    summary="Checkout shipping quote",
    description="Retailer price for a cart from the first carrier that services the route."
)
async def checkout_quote(request: CheckoutQuoteRequest, db: DB):
    service = EstimateService(db)
    quote = await service.checkout_quote(
        origin=Address(**request.origin.model_dump()),
        destination=Address(**request.destination.model_dump()),
        weight_kg=request.weight_kg,
        length_cm=request.length_cm,
        width_cm=request.width_cm,
        height_cm=request.height_cm,
        declared_value=request.declared_value,
        payment_mode=request.payment_mode,
        retailer_identity=request.retailer_email,
    )

    if quote is None:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="No carrier services this route"
        )

    return CheckoutQuoteResponse(
        carrier=quote.carrier,
        courier_name=quote.courier_name,
        price=quote.retailer_price,
        zone=quote.zone,
        estimated_days=quote.estimated_days,
    )


@router.delete(
    "/estimate-cache",
    response_model=CacheClearResponse,
    summary="Clear cached estimates",
)
async def clear_estimate_cache(
    db: DB,
    vendor_id: Optional[str] = Query(None, description="Only clear this vendor's estimates"),
):
    deleted = await EstimateCache(db).clear(vendor_id)
    await db.commit()
    return CacheClearResponse(deleted=deleted)
