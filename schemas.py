"""
Database Schemas for the Storefront

Each Pydantic model represents a MongoDB collection. The collection name is the lowercase
of the class name (e.g., Product -> "product", PromoCode -> "promocode").
Documents are stored with camelCase keys; models accept either spelling.
"""
from __future__ import annotations
from pydantic import BaseModel, ConfigDict, Field, EmailStr, model_validator
from pydantic.alias_generators import to_camel
from typing import Any, Dict, List, Literal, Optional
from datetime import datetime


ORDER_STATUSES = ("pending", "processing", "shipped", "delivered", "cancelled")
PAYMENT_METHODS = ("cashOnDelivery", "instaPay")
DEFAULT_COLOR = "Default"


class StoreModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# Catalog

class InventoryVariant(StoreModel):
    size: str
    color: str = DEFAULT_COLOR
    quantity: int = Field(0, ge=0)


class Inventory(StoreModel):
    total: int = 0
    variants: List[InventoryVariant] = Field(default_factory=list)

    @model_validator(mode="after")
    def recompute_total(self):
        # total is derived, whatever the caller sent
        self.total = sum(v.quantity for v in self.variants)
        return self


class Product(StoreModel):
    title: str = Field(..., description="Product title")
    description: Optional[str] = Field(None, description="Product description")
    price: float = Field(..., ge=0, description="Unit price")
    selected_sizes: List[str] = Field(default_factory=list)
    selected_images: List[str] = Field(default_factory=list)
    categories: List[str] = Field(default_factory=list)
    inventory: Optional[Inventory] = None
    deleted: bool = False


# Promotions

class PromoCode(StoreModel):
    code: str = Field(..., description="Unique, matched case-insensitively")
    type: Literal["percentage", "fixed"] = "percentage"
    value: float = Field(0, ge=0)
    min_purchase: float = Field(0, ge=0)
    max_uses: Optional[int] = Field(None, ge=0)
    used_count: int = Field(0, ge=0)
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    is_active: bool = True
    referral_code: Optional[str] = None


class Ambassador(StoreModel):
    name: str
    email: EmailStr
    user_id: Optional[str] = None
    referral_code: str
    referral_link: str
    coupon_code: Optional[str] = Field(None, description="Assigned by the admin service")
    status: Literal["pending", "approved", "rejected"] = "pending"
    commission_rate: float = Field(50, ge=0, le=100)
    referrals: int = 0
    orders: int = 0
    conversions: int = 0
    sales: float = 0
    earnings: float = 0
    payments_pending: float = 0
    payments_paid: float = 0
    product_video_link: Optional[str] = None
    application_details: Dict[str, Any] = Field(default_factory=dict)


class DiscountPolicy(StoreModel):
    """A redeemable code resolved to the discount it grants."""
    type: Literal["percentage", "fixed"] = "percentage"
    value: float = 0
    min_purchase: float = 0
    code: str
    referral_code: Optional[str] = None
    is_ambassador: bool = False
    ambassador_id: Optional[str] = None
    commission_rate: Optional[float] = None


# Orders

class Customer(StoreModel):
    name: str = Field(..., min_length=1)
    email: EmailStr
    phone: str = Field(..., min_length=1)
    address: str = ""


class OrderItem(StoreModel):
    product_id: str
    name: str
    price: float = Field(..., ge=0)
    quantity: int = Field(1, ge=1)
    size: str
    color: Optional[str] = None
    image: Optional[str] = None
    inventory_updated: bool = False


class AmbassadorSnapshot(StoreModel):
    """Copied into the order at creation; never re-read from the ambassador."""
    ambassador_id: str
    referral_code: Optional[str] = None
    coupon_code: Optional[str] = None
    commission_rate: float = 50
    commission: float = 0
    commission_base: float = 0
    payment_status: Literal["pending", "paid"] = "pending"
    payment_date: Optional[datetime] = None
    ledger_applied: bool = False


class RedemptionOutbox(StoreModel):
    code: str
    status: Literal["pending", "delivered", "failed"] = "pending"
    attempts: int = 0
    last_error: Optional[str] = None
    delivered_at: Optional[datetime] = None


class Order(StoreModel):
    customer: Customer
    products: List[OrderItem] = Field(..., min_length=1)
    total_amount: float = Field(..., ge=0)
    subtotal: float = Field(0, ge=0)
    shipping_cost: float = Field(0, ge=0)
    discount_amount: float = Field(0, ge=0)
    status: Literal["pending", "processing", "shipped", "delivered", "cancelled"] = "pending"
    notes: Optional[str] = None
    payment_method: Literal["cashOnDelivery", "instaPay"] = "cashOnDelivery"
    transaction_screenshot: Optional[str] = None
    payment_verified: Optional[bool] = None
    coupon_code: Optional[str] = None
    ambassador: Optional[AmbassadorSnapshot] = None
    redemption: Optional[RedemptionOutbox] = None
    inventory_processed: bool = False
    order_date: Optional[datetime] = None

    @model_validator(mode="after")
    def check_payment(self):
        if self.payment_method == "instaPay" and not self.transaction_screenshot:
            raise ValueError("Transaction screenshot is required for InstaPay payments")
        return self


# Newsletter

class Newsletter(StoreModel):
    email: EmailStr
    source: str = "website_footer"
    subscribed: bool = True
    subscribed_at: Optional[datetime] = None
    unsubscribed_at: Optional[datetime] = None


# Request bodies

class CustomerIn(StoreModel):
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = ""


class OrderItemIn(StoreModel):
    product_id: str
    name: str
    price: float
    quantity: int = 1
    size: str
    color: Optional[str] = None
    image: Optional[str] = None


class OrderIn(StoreModel):
    customer: Optional[CustomerIn] = None
    products: List[OrderItemIn] = Field(default_factory=list)
    total_amount: Optional[float] = None
    subtotal: Optional[float] = None
    shipping_cost: Optional[float] = None
    discount_amount: Optional[float] = None
    payment_method: Optional[str] = None
    transaction_screenshot: Optional[str] = None
    coupon_code: Optional[str] = None
    referral_code: Optional[str] = None
    notes: Optional[str] = None
    status: Optional[str] = None


class OrderUpdateIn(StoreModel):
    status: Optional[str] = None
    inventory_processed: Optional[bool] = None


class OrderItemUpdateIn(StoreModel):
    product_id: str
    size: str
    color: Optional[str] = None
    updates: Dict[str, Any]


class InventoryOrderIn(StoreModel):
    order_id: Optional[str] = None


class InventoryIn(StoreModel):
    inventory: Optional[Inventory] = None


class ReduceInventoryIn(StoreModel):
    size: str
    color: str
    quantity: int = Field(..., ge=0)


class StockItemIn(StoreModel):
    product_id: str
    size: str
    color: Optional[str] = None
    quantity: int = Field(1, ge=1)


class StockValidateIn(StoreModel):
    items: List[StockItemIn] = Field(default_factory=list)


class CodeIn(StoreModel):
    code: Optional[str] = None


class RedeemIn(StoreModel):
    code: Optional[str] = None
    order_id: Optional[str] = None
    order_amount: Optional[float] = None
    total: Optional[float] = None
    subtotal: Optional[float] = None
    shipping_cost: Optional[float] = None
    discount_amount: Optional[float] = None
    customer_email: Optional[str] = None


class AmbassadorRequestIn(StoreModel):
    name: Optional[str] = None
    email: Optional[str] = None
    user_id: Optional[str] = None
    form_data: Dict[str, Any] = Field(default_factory=dict)


class VideoLinkIn(StoreModel):
    email: Optional[str] = None
    product_video_link: Optional[str] = None


class SubscribeIn(StoreModel):
    email: Optional[str] = None
    source: Optional[str] = None
