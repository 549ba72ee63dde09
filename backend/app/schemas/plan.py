"""
Pydantic schemas for plan catalog endpoints.

WHAT: Request/response schemas for the plan catalog API.

WHY: Schemas define API contracts for plan operations:
1. Validate incoming request data (price, perks, tier name)
2. Document API for OpenAPI/Swagger
3. Control which fields are exposed in responses

HOW: Uses Pydantic v2 with Field validators and ORM mode for SQLAlchemy.
"""

from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.models.user import PlanTier


def _clean_perks(value: Optional[List[str]]) -> Optional[List[str]]:
    if value is None:
        return None
    cleaned = [perk.strip() for perk in value if perk and perk.strip()]
    if not cleaned:
        raise ValueError("At least one perk is required")
    return cleaned


class PlanCreate(BaseModel):
    """
    Plan creation request schema.

    WHY: Paid plans are created on Paystack first, so name and price must
    be valid before any provider call is made.
    """

    plan_name: PlanTier = Field(..., description="Tier: free, monthly or yearly")
    display_name: str = Field(..., min_length=1, max_length=100)
    description: str = Field(default="", max_length=2000)
    price: Decimal = Field(..., ge=0, max_digits=12, decimal_places=2)
    currency: str = Field(default="NGN", min_length=3, max_length=3)
    perks: List[str] = Field(..., description="Selling points shown on the pricing page")
    is_active: bool = True
    is_popular: bool = False
    sort_order: int = Field(default=0, ge=0)

    @field_validator("perks")
    @classmethod
    def strip_perks(cls, value: List[str]) -> List[str]:
        return _clean_perks(value)

    @field_validator("currency")
    @classmethod
    def upper_currency(cls, value: str) -> str:
        return value.upper()

    class Config:
        json_schema_extra = {
            "example": {
                "plan_name": "monthly",
                "display_name": "Monthly",
                "description": "Full access, billed monthly",
                "price": "2500.00",
                "perks": ["Unlimited match history", "Priority support"],
                "sort_order": 1,
            }
        }


class PlanUpdate(BaseModel):
    """
    Plan update request schema.

    WHAT: All fields optional; only provided fields are changed.
    """

    display_name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=2000)
    price: Optional[Decimal] = Field(default=None, ge=0, max_digits=12, decimal_places=2)
    perks: Optional[List[str]] = None
    is_active: Optional[bool] = None
    is_popular: Optional[bool] = None
    sort_order: Optional[int] = Field(default=None, ge=0)

    @field_validator("perks")
    @classmethod
    def strip_perks(cls, value: Optional[List[str]]) -> Optional[List[str]]:
        return _clean_perks(value)


class PlanResponse(BaseModel):
    """Plan response schema."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    plan_name: PlanTier
    display_name: str
    description: str
    price: Decimal
    currency: str
    perks: List[str]
    is_active: bool
    is_popular: bool
    sort_order: int
    paystack_plan_code: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class PlanListResponse(BaseModel):
    """Plan list response."""

    items: List[PlanResponse]
    total: int


class PlanStatsResponse(BaseModel):
    """
    Plan catalog overview.

    WHY: Shows how many catalog entries are live, their price spread, and
    how many regular users sit on each tier.
    """

    total_plans: int
    active_plans: int
    inactive_plans: int
    popular_plans: int
    average_price: Decimal
    min_price: Decimal
    max_price: Decimal
    subscribers_by_plan: Dict[str, int]
