"""
Per-variant stock and the post-order reconciliation that deducts it.

An order's stock is deducted at most once: the order is claimed by flipping
inventoryProcessed false->true in a single conditional update, and each line
item is claimed the same way through its inventoryUpdated flag. Stock never
goes below zero; an oversold variant is left at 0.
"""
import copy
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from pymongo import ReturnDocument
from pymongo.database import Database
from pymongo.errors import PyMongoError

from config import settings
from database import now_utc, object_id
from errors import NotFoundError, PersistenceError, StorefrontError, ValidationError
from schemas import DEFAULT_COLOR, Inventory, StockItemIn

logger = logging.getLogger(__name__)

SUCCESS = "success"
SKIPPED = "skipped"
ERROR = "error"


@dataclass
class VariantChange:
    before: int
    after: int
    deducted: int
    total: int


@dataclass
class ReconcileResult:
    order_id: str
    success: bool = True
    already_processed: bool = False
    message: str = ""
    updates: List[Dict[str, Any]] = field(default_factory=list)
    order: Optional[dict] = None

    def to_dict(self) -> dict:
        body = {"success": self.success, "message": self.message, "order": self.order}
        if not self.already_processed:
            body["updates"] = self.updates
        return body


def empty_inventory() -> dict:
    return {"total": 0, "variants": []}


def find_variant(inventory: dict, size: str, color: str) -> int:
    for index, variant in enumerate(inventory.get("variants", [])):
        if variant.get("size") == size and variant.get("color") == color:
            return index
    return -1


def deduct_variant(db: Database, product_id: str, size: str, color: str, quantity: int,
                   retries: Optional[int] = None) -> VariantChange:
    """Take quantity off one variant, clamping at zero, and recompute the total.

    The write only lands if the inventory block is still what was read;
    otherwise it is re-read and retried.
    """
    retries = retries or settings.INVENTORY_WRITE_RETRIES
    oid = object_id(product_id)

    for attempt in range(1, retries + 1):
        product = db["product"].find_one({"_id": oid}, {"inventory": 1}) if oid else None
        if not product:
            raise NotFoundError("Product not found")

        previous = product.get("inventory")
        inventory = copy.deepcopy(previous) if previous else empty_inventory()
        index = find_variant(inventory, size, color)
        if index < 0:
            raise NotFoundError(f"Variant not found: {size}/{color}")

        variant = inventory["variants"][index]
        current = int(variant.get("quantity") or 0)
        variant["quantity"] = max(0, current - quantity)
        inventory["total"] = sum(int(v.get("quantity") or 0) for v in inventory["variants"])

        result = db["product"].update_one(
            {"_id": oid, "inventory": previous},
            {"$set": {"inventory": inventory, "updatedAt": now_utc()}},
        )
        if result.matched_count:
            if quantity > current:
                logger.warning(f"Oversold {product_id} {size}/{color}: wanted {quantity}, had {current}")
            return VariantChange(
                before=current,
                after=variant["quantity"],
                deducted=current - variant["quantity"],
                total=inventory["total"],
            )
        logger.debug(f"Inventory of {product_id} changed during write, attempt {attempt}/{retries}")

    raise PersistenceError(f"Inventory of product {product_id} kept changing; gave up after {retries} attempts")


def _claim_item(db: Database, order_id, index: int) -> bool:
    result = db["order"].update_one(
        {"_id": order_id, f"products.{index}.inventoryUpdated": {"$ne": True}},
        {"$set": {f"products.{index}.inventoryUpdated": True}},
    )
    return result.modified_count == 1


def _release_item(db: Database, order_id, index: int) -> None:
    db["order"].update_one({"_id": order_id}, {"$set": {f"products.{index}.inventoryUpdated": False}})


def reconcile_order(db: Database, order_id: Optional[str]) -> ReconcileResult:
    """Deduct stock for every line item of one order, once.

    Item failures (missing product or variant) are reported in the result and
    never fail the order as a whole.
    """
    if not order_id:
        raise ValidationError("Order ID is required")
    oid = object_id(order_id)
    if not oid or not db["order"].find_one({"_id": oid}, {"_id": 1}):
        raise NotFoundError("Order not found")

    order = db["order"].find_one_and_update(
        {"_id": oid, "inventoryProcessed": {"$ne": True}},
        {"$set": {"inventoryProcessed": True, "updatedAt": now_utc()}},
        return_document=ReturnDocument.AFTER,
    )
    if order is None:
        logger.info(f"Order {order_id} already processed")
        return ReconcileResult(
            order_id=str(oid),
            already_processed=True,
            message="Inventory already processed for this order",
            order=db["order"].find_one({"_id": oid}),
        )

    logger.info(f"Processing inventory for order {order_id} with {len(order['products'])} item(s)")
    updates = []
    for index, item in enumerate(order["products"]):
        product_id = item.get("productId")
        if item.get("inventoryUpdated") or not _claim_item(db, oid, index):
            updates.append({"productId": product_id, "status": SKIPPED, "message": "Already updated"})
            continue

        color = item.get("color") or DEFAULT_COLOR
        try:
            change = deduct_variant(db, product_id, item.get("size"), color, int(item.get("quantity") or 0))
        except (StorefrontError, PyMongoError) as e:
            _release_item(db, oid, index)
            message = e.message if isinstance(e, StorefrontError) else str(e)
            logger.error(f"Inventory update failed for {product_id} in order {order_id}: {message}")
            updates.append({"productId": product_id, "status": ERROR, "message": message})
            continue

        updates.append({
            "productId": product_id,
            "status": SUCCESS,
            "from": change.before,
            "to": change.after,
            "deducted": change.deducted,
        })

    logger.info(f"Inventory update completed for order {order_id}")
    return ReconcileResult(
        order_id=str(oid),
        message="Inventory updated successfully",
        updates=updates,
        order=db["order"].find_one({"_id": oid}),
    )


def sync_all_orders(db: Database) -> dict:
    """Reconcile every order not yet processed, oldest first."""
    pending = list(db["order"].find({"inventoryProcessed": {"$ne": True}}, {"_id": 1}).sort("createdAt", 1))
    if not pending:
        return {"success": True, "message": "No unprocessed orders found", "processed": 0, "results": []}

    results = []
    for doc in pending:
        order_id = str(doc["_id"])
        try:
            outcome = reconcile_order(db, order_id)
            results.append({
                "orderId": order_id,
                "success": outcome.success,
                "message": outcome.message,
                "updates": len(outcome.updates),
                "errors": sum(1 for u in outcome.updates if u["status"] == ERROR),
            })
        except (StorefrontError, PyMongoError) as e:
            logger.error(f"Error processing order {order_id}: {e}")
            results.append({"orderId": order_id, "success": False, "message": "Failed to process"})

    return {
        "success": True,
        "message": "Inventory synchronization completed",
        "processed": len(results),
        "results": results,
    }


# Product inventory

def get_product(db: Database, product_id: str) -> dict:
    oid = object_id(product_id)
    product = db["product"].find_one({"_id": oid}) if oid else None
    if not product:
        raise NotFoundError("Product not found")
    return product


def list_products(db: Database, q: Optional[str] = None) -> List[dict]:
    products = list(db["product"].find({"deleted": {"$ne": True}}).sort("createdAt", -1))
    if q:
        q_lower = q.lower()
        products = [p for p in products
                    if q_lower in (p.get("title") or "").lower() or q_lower in (p.get("description") or "").lower()]
    return products


def get_inventory(db: Database, product_id: str) -> dict:
    return get_product(db, product_id).get("inventory") or empty_inventory()


def replace_inventory(db: Database, product_id: str, inventory: Optional[Inventory]) -> dict:
    if inventory is None:
        raise ValidationError("Inventory data required")
    oid = object_id(product_id)
    updated = db["product"].find_one_and_update(
        {"_id": oid},
        {"$set": {"inventory": inventory.model_dump(by_alias=True), "updatedAt": now_utc()}},
        return_document=ReturnDocument.AFTER,
    ) if oid else None
    if not updated:
        raise NotFoundError("Product not found")
    return updated["inventory"]


def reduce_variant(db: Database, product_id: str, size: str, color: str, quantity: int) -> dict:
    change = deduct_variant(db, product_id, size, color, quantity)
    return {
        "success": True,
        "message": "Inventory reduced successfully",
        "quantityReduced": change.deducted,
        "inventory": {
            "total": change.total,
            "variant": {"size": size, "color": color, "quantity": change.after},
        },
    }


def validate_stock(db: Database, items: List[StockItemIn]) -> dict:
    """Read-only availability check before checkout. Nothing is held back.

    A line without a color is checked against the size's stock across all colors.
    Products that no longer exist do not block the check.
    """
    if not items:
        raise ValidationError("Items are required")

    checked = []
    for item in items:
        oid = object_id(item.product_id)
        product = db["product"].find_one({"_id": oid}, {"title": 1, "inventory": 1}) if oid else None
        line = {"productId": item.product_id, "size": item.size, "color": item.color, "requested": item.quantity}
        if not product:
            logger.info(f"Stock check skipped unknown product {item.product_id}")
            checked.append({**line, "available": None, "inStock": True})
            continue

        inventory = product.get("inventory") or empty_inventory()
        if item.color:
            index = find_variant(inventory, item.size, item.color)
            available = inventory["variants"][index].get("quantity", 0) if index >= 0 else 0
        else:
            available = sum(v.get("quantity", 0) for v in inventory.get("variants", []) if v.get("size") == item.size)
        checked.append({**line, "title": product.get("title"), "available": available,
                        "inStock": available >= item.quantity})

    short = [line for line in checked if not line["inStock"]]
    if short:
        names = ", ".join(f"{line.get('title') or line['productId']} ({line['size']}"
                          f"{'/' + line['color'] if line['color'] else ''})" for line in short)
        return {"valid": False, "message": f"Insufficient stock for {names}", "items": checked}
    return {"valid": True, "message": "All items are available", "items": checked}
