"""
Checkout DTOs.

Business fields are validated by the checkout service (not here) so that
every offending cart item can be reported in a single error response.
"""
from __future__ import annotations

from decimal import Decimal
from typing import Annotated, Literal, Optional, Union
from pydantic import BaseModel, Field

from application.dto import DTOBase, OrderDTO
from domain.order.entity import (
    CustomerInfo,
    GamepassDetails,
    GamepassInfo,
    InstantDetails,
    JokiDetails,
    ScheduledDeliveryDetails,
    TierPackageDetails,
)


class GamepassInfoDTO(BaseModel):
    gamepass_id: int
    name: str
    price: Decimal = Field(ge=0)
    product_id: int
    seller_id: int

    def to_domain(self) -> GamepassInfo:
        return GamepassInfo(**self.model_dump())


class JokiDetailsDTO(BaseModel):
    kind: Literal["joki"] = "joki"
    description: Optional[str] = None
    game_type: Optional[str] = None
    target_level: Optional[str] = None
    estimated_time: Optional[str] = None
    notes: Optional[str] = None

    def to_domain(self) -> JokiDetails:
        return JokiDetails(**self.model_dump())


class InstantDetailsDTO(BaseModel):
    kind: Literal["instant"] = "instant"
    notes: Optional[str] = None

    def to_domain(self) -> InstantDetails:
        return InstantDetails(**self.model_dump())


class ScheduledDeliveryDetailsDTO(BaseModel):
    kind: Literal["scheduled_delivery"] = "scheduled_delivery"
    gamepass: Optional[GamepassInfoDTO] = None

    def to_domain(self) -> ScheduledDeliveryDetails:
        if self.gamepass is None:
            raise ValueError("scheduled delivery requires gamepass data")
        return ScheduledDeliveryDetails(gamepass=self.gamepass.to_domain())


class GamepassDetailsDTO(BaseModel):
    kind: Literal["gamepass"] = "gamepass"
    game_name: Optional[str] = None
    item_name: Optional[str] = None

    def to_domain(self) -> GamepassDetails:
        return GamepassDetails(**self.model_dump())


class TierPackageDetailsDTO(BaseModel):
    kind: Literal["tier_package"] = "tier_package"
    package_id: Optional[str] = None

    def to_domain(self) -> TierPackageDetails:
        if not self.package_id:
            raise ValueError("tier package requires package_id")
        return TierPackageDetails(package_id=self.package_id)


ServiceDetailsDTO = Annotated[
    Union[
        JokiDetailsDTO,
        InstantDetailsDTO,
        ScheduledDeliveryDetailsDTO,
        GamepassDetailsDTO,
        TierPackageDetailsDTO,
    ],
    Field(discriminator="kind"),
]


class CheckoutItem(BaseModel):
    service_type: Literal["robux", "gamepass", "joki", "tier_package"]
    service_category: Optional[Literal["instant", "scheduled_delivery"]] = None
    service_id: Optional[str] = None
    service_name: Optional[str] = None
    quantity: int = 1
    unit_price: Decimal = Decimal("0")
    account_username: Optional[str] = None
    account_password: Optional[str] = None
    details: Optional[ServiceDetailsDTO] = None


class CustomerInfoDTO(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    user_id: Optional[int] = None

    def to_domain(self) -> CustomerInfo:
        return CustomerInfo(name=self.name or "", email=self.email or "", phone=self.phone, user_id=self.user_id)


class CheckoutRequest(BaseModel):
    items: list[CheckoutItem] = Field(default_factory=list)
    customer: CustomerInfoDTO = Field(default_factory=CustomerInfoDTO)
    discount_percentage: Optional[Decimal] = Field(default=None, ge=0, le=100)
    discount_amount: Optional[Decimal] = Field(default=None, ge=0)
    payment_fee: Decimal = Field(default=Decimal("0"), ge=0)
    payment_method_id: Optional[str] = None
    customer_notes: str = ""


class CheckoutResult(DTOBase):
    correlation_id: str
    provider: str
    orders: list[OrderDTO]
    session_ref: Optional[str] = None
    redirect_url: Optional[str] = None
    provider_reference: Optional[str] = None
    total_amount: Decimal
    discount_amount: Decimal
    final_amount: Decimal
    payment_fee: Decimal
    gross_amount: Decimal
