"""Order schemas."""
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field, model_validator

from app.models.order import DeliveryOption, EscrowStatus, OrderStatus


class OrderCreate(BaseModel):
    buyer_id: int
    seller_id: int
    price: Decimal = Field(gt=Decimal("0"), max_digits=18, decimal_places=2)
    currency: str = Field(default="USD", pattern="^[A-Z]{3}$")
    delivery_option: DeliveryOption = DeliveryOption.VAULT
    confirmation_deadline: datetime | None = None

    @model_validator(mode="after")
    def _distinct_parties(self) -> "OrderCreate":
        if self.buyer_id == self.seller_id:
            raise ValueError("buyer_id and seller_id must differ")
        return self


class OrderRead(BaseModel):
    id: int
    buyer_id: int
    seller_id: int
    price: Decimal
    currency: str
    status: OrderStatus
    escrow_status: EscrowStatus
    buyer_confirmed_at: datetime | None = None
    seller_confirmed_at: datetime | None = None
    confirmation_deadline: datetime | None = None
    shipped_at: datetime | None = None
    delivered_at: datetime | None = None
    admin_escalated_at: datetime | None = None
    escalation_reason: str | None = None
    delivery_option: DeliveryOption
    shipping_requested_at: datetime | None = None
    shipping_requested_by: int | None = None
    buyer_approved_shipping: bool
    seller_approved_shipping: bool
    buyer_shipping_approved_at: datetime | None = None
    seller_shipping_approved_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


class DeliverySignal(BaseModel):
    """Inbound fulfillment event; ``delivered_at`` defaults to now."""

    delivered_at: datetime | None = None
