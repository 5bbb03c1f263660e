import enum
from datetime import datetime
from pydantic import AliasChoices, BaseModel, EmailStr, Field
from typing import List, Optional

from models.order import OrderStatus, PaymentMethod
from schemas.product import StockDeduction


class CartItemIn(BaseModel):
    # Carts posted by the storefront use `id` for the product reference
    product_id: int = Field(validation_alias=AliasChoices("product_id", "id"))
    name: str
    price: float = Field(ge=0)
    quantity: int = Field(gt=0)
    image: Optional[str] = None
    selected_variant: Optional[str] = Field(default=None, validation_alias=AliasChoices("selected_variant", "selectedVariant"))


class OrderCreate(BaseModel):
    name: str
    email: EmailStr
    phone: str
    address: str
    city: str
    postal_code: Optional[str] = None
    notes: Optional[str] = None
    payment_method: PaymentMethod = PaymentMethod.COD
    items: List[CartItemIn]


class OrderItemOut(BaseModel):
    id: int
    product_id: Optional[int] = None
    product_name: str
    product_image: Optional[str] = None
    variant: Optional[str] = None
    quantity: int
    price: float
    subtotal: float

    class Config:
        from_attributes = True


class OrderOut(BaseModel):
    id: int
    order_number: str
    customer_name: str
    customer_email: EmailStr
    customer_phone: str
    shipping_address: str
    city: str
    postal_code: Optional[str] = None
    order_notes: Optional[str] = None
    subtotal: float
    shipping_cost: float
    total: float
    status: OrderStatus
    payment_method: PaymentMethod
    created_at: datetime
    items: List[OrderItemOut]

    class Config:
        from_attributes = True


class PlacementOutcome(str, enum.Enum):
    COMPLETED = "completed"
    PARTIALLY_COMPLETED = "partially_completed"
    REJECTED_FOR_STOCK = "rejected_for_stock"
    REJECTED = "rejected"
    PERSIST_FAILED = "persist_failed"
    TIMED_OUT = "timed_out"


class OrderPlacementResult(BaseModel):
    success: bool
    outcome: PlacementOutcome
    order_number: Optional[str] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    failed_deductions: List[StockDeduction] = []
    order: Optional[OrderOut] = None


class OrderPlacementOut(BaseModel):
    success: bool
    order_number: str


class StatusUpdateIn(BaseModel):
    status: OrderStatus


class StatusUpdateResult(BaseModel):
    success: bool
    order_id: int
    status: Optional[OrderStatus] = None
    error: Optional[str] = None
    error_code: Optional[str] = None


class OrderSummary(BaseModel):
    total_revenue: float
    order_count: int
    average_order_value: float
    unique_customers: int
    cancelled_count: int
    top_city: Optional[str] = None
    top_city_revenue: float = 0
    top_city_share: int = 0
