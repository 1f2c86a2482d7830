"""
Base classes for API request and response models.

Money leaves the API as a string with two decimals, never as a float.
"""
from decimal import Decimal, ROUND_HALF_UP
from typing import Annotated

from pydantic import BaseModel, ConfigDict, PlainSerializer


def _money_str(value: Decimal) -> str:
    return str(Decimal(value).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


Money = Annotated[Decimal, PlainSerializer(_money_str, return_type=str, when_used="json")]


class BaseResponseSchema(BaseModel):
    """
    Base class for response models.

    Usage:
        class SettlementResponse(BaseResponseSchema):
            status: str
            buyer_refund: Money
    """
    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
    )


class BaseCreateSchema(BaseModel):
    """Base class for request bodies. Unknown fields are ignored."""
    model_config = ConfigDict(
        extra='ignore',
    )
