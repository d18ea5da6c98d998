import logging
from typing import Any, Dict, List, Optional

from pydantic import ValidationError as SchemaError
from pymongo import ReturnDocument
from pymongo.database import Database

from commission import round_money
from database import create_document, now_utc, object_id
from errors import NotFoundError, ValidationError
from schemas import ORDER_STATUSES, AmbassadorSnapshot, Order, OrderIn, RedemptionOutbox

logger = logging.getLogger(__name__)

IMMUTABLE_ITEM_KEYS = {"productId", "size", "color"}


def _schema_messages(e: SchemaError) -> List[str]:
    return [f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" if err["loc"] else err["msg"]
            for err in e.errors()]


def check_order_input(payload: OrderIn) -> None:
    customer = payload.customer
    if not customer or not customer.name or not customer.email or not customer.phone:
        raise ValidationError("Missing required customer information")
    if not payload.products:
        raise ValidationError("No products in order")
    if payload.payment_method == "instaPay" and not payload.transaction_screenshot:
        raise ValidationError("Transaction screenshot is required for InstaPay payments")


def create_order(db: Database, payload: OrderIn, subtotal: float, discount_amount: float = 0,
                 ambassador: Optional[AmbassadorSnapshot] = None,
                 redemption_code: Optional[str] = None) -> dict:
    """Validate and persist an order; returns the stored document."""
    check_order_input(payload)

    shipping = payload.shipping_cost or 0
    total = payload.total_amount
    if total is None:
        total = round_money(max(0.0, subtotal - discount_amount) + shipping)
    method = payload.payment_method or "cashOnDelivery"

    try:
        order = Order(
            customer={
                "name": payload.customer.name.strip(),
                "email": payload.customer.email.strip(),
                "phone": payload.customer.phone.strip(),
                "address": payload.customer.address or "",
            },
            products=[item.model_dump() for item in payload.products],
            total_amount=total,
            subtotal=subtotal,
            shipping_cost=shipping,
            discount_amount=discount_amount,
            status=payload.status or "pending",
            notes=payload.notes,
            payment_method=method,
            transaction_screenshot=payload.transaction_screenshot,
            payment_verified=False if method == "instaPay" else None,
            coupon_code=payload.coupon_code,
            ambassador=ambassador,
            redemption=RedemptionOutbox(code=redemption_code) if redemption_code else None,
            order_date=now_utc(),
        )
    except SchemaError as e:
        raise ValidationError("Invalid order data", details=_schema_messages(e))

    order_id = create_document("order", order, database=db)
    logger.info(f"Order {order_id} created with {len(order.products)} item(s), total {total:.2f}")
    return db["order"].find_one({"_id": object_id(order_id)})


def list_orders(db: Database) -> List[dict]:
    return list(db["order"].find({}).sort("createdAt", -1))


def get_order(db: Database, order_id: Optional[str]) -> dict:
    if not order_id:
        raise ValidationError("Order ID is required")
    oid = object_id(order_id)
    order = db["order"].find_one({"_id": oid}) if oid else None
    if not order:
        raise NotFoundError("Order not found")
    return order


def update_order(db: Database, order_id: Optional[str], status: Optional[str] = None,
                 inventory_processed: Optional[bool] = None) -> dict:
    if not order_id:
        raise ValidationError("Order ID is required")
    if status is not None and status not in ORDER_STATUSES:
        raise ValidationError(f"Invalid status '{status}'", details=[f"status must be one of {', '.join(ORDER_STATUSES)}"])

    update: Dict[str, Any] = {"updatedAt": now_utc()}
    if status is not None:
        update["status"] = status
    if inventory_processed is not None:
        update["inventoryProcessed"] = inventory_processed

    oid = object_id(order_id)
    updated = db["order"].find_one_and_update(
        {"_id": oid}, {"$set": update}, return_document=ReturnDocument.AFTER
    ) if oid else None
    if not updated:
        raise NotFoundError("Order not found")
    logger.info(f"Order {order_id} updated: {sorted(k for k in update if k != 'updatedAt')}")
    return updated


def find_item_index(order: dict, product_id: str, size: str, color: Optional[str] = None) -> int:
    for index, item in enumerate(order.get("products", [])):
        if item.get("productId") == product_id and item.get("size") == size \
                and (color is None or item.get("color") == color):
            return index
    return -1


def update_order_item(db: Database, order_id: str, product_id: str, size: str, updates: Dict[str, Any],
                      color: Optional[str] = None) -> dict:
    if not product_id or not size or not updates:
        raise ValidationError("Product ID, size and updates are required")
    locked = IMMUTABLE_ITEM_KEYS.intersection(updates)
    if locked:
        raise ValidationError(f"Cannot change {', '.join(sorted(locked))} of an order item")

    order = get_order(db, order_id)
    index = find_item_index(order, product_id, size, color)
    if index < 0:
        raise NotFoundError("Order item not found")

    patch = {f"products.{index}.{key}": value for key, value in updates.items()}
    patch["updatedAt"] = now_utc()
    updated = db["order"].find_one_and_update(
        {"_id": order["_id"]}, {"$set": patch}, return_document=ReturnDocument.AFTER
    )
    return updated["products"][index]
