"""
Best-effort calls to the admin service.

The admin service keeps its own copy of ambassador statistics and the
waitlist. Nothing here raises on a remote failure except the explicit
/coupon/redeem proxy: callers get a DeliveryResult and carry on, the local
write having already happened.
"""
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import httpx
from fastapi import Request
from pymongo.database import Database

from config import settings
from database import now_utc
from errors import UpstreamError, ValidationError
from schemas import RedeemIn

logger = logging.getLogger(__name__)

REDEEM_PATH = "/api/coupon/redeem"
SOURCE = "e-commerce"


@dataclass
class DeliveryResult:
    success: bool
    status_code: Optional[int] = None
    data: Any = None
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {"success": self.success, "status": self.status_code, "error": self.error}


class AdminClient:
    """Thin httpx wrapper around the admin service with an explicit timeout."""

    def __init__(self, base_url: Optional[str] = None, api_key: Optional[str] = None,
                 timeout: Optional[float] = None, transport: Optional[httpx.BaseTransport] = None):
        headers = {"Accept": "application/json", "Origin": settings.SITE_URL}
        api_key = settings.ADMIN_API_KEY if api_key is None else api_key
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self.client = httpx.Client(
            base_url=base_url or settings.ADMIN_API_URL,
            headers=headers,
            timeout=timeout if timeout is not None else settings.ADMIN_API_TIMEOUT,
            transport=transport,
        )

    def post(self, path: str, payload: Dict[str, Any]) -> DeliveryResult:
        try:
            response = self.client.post(path, json=payload)
        except httpx.TimeoutException:
            logger.warning(f"Admin API {path} timed out")
            return DeliveryResult(success=False, error="Admin API timed out")
        except httpx.HTTPError as e:
            logger.warning(f"Admin API {path} unreachable: {e}")
            return DeliveryResult(success=False, error=f"Failed to connect to admin API: {e}")

        if response.is_success:
            try:
                data = response.json()
            except ValueError:
                data = response.text
            logger.debug(f"Admin API {path} answered {response.status_code}")
            return DeliveryResult(success=True, status_code=response.status_code, data=data)

        logger.warning(f"Admin API {path} returned {response.status_code}: {response.text[:200]}")
        return DeliveryResult(
            success=False,
            status_code=response.status_code,
            error=f"Admin API returned {response.status_code}: {response.text[:200]}",
        )

    def close(self) -> None:
        self.client.close()


def get_admin_client(request: Request) -> AdminClient:
    """The app-wide client, opened once in the application lifespan."""
    return request.app.state.admin_client


def build_redemption_payload(code: str, order_id: str, total: float, subtotal: float, shipping_cost: float,
                             discount_amount: float, customer_email: str) -> dict:
    return {
        "code": code,
        "orderId": order_id,
        "total": total,
        "subtotal": subtotal,
        "shippingCost": shipping_cost,
        "discountAmount": discount_amount,
        "customerEmail": customer_email,
        "timestamp": now_utc().isoformat(),
        "source": SOURCE,
    }


def payload_from_order(order: dict) -> dict:
    return build_redemption_payload(
        code=order["redemption"]["code"],
        order_id=str(order["_id"]),
        total=order.get("totalAmount", 0),
        subtotal=order.get("subtotal", 0),
        shipping_cost=order.get("shippingCost", 0),
        discount_amount=order.get("discountAmount", 0),
        customer_email=order["customer"]["email"],
    )


def deliver_redemption(db: Database, admin: AdminClient, order: dict) -> DeliveryResult:
    """Send the order's redemption outbox entry and record the outcome on the order."""
    result = admin.post(REDEEM_PATH, payload_from_order(order))
    update: Dict[str, Any] = {
        "redemption.status": "delivered" if result.success else "failed",
        "redemption.lastError": result.error,
        "updatedAt": now_utc(),
    }
    if result.success:
        update["redemption.deliveredAt"] = now_utc()
        logger.info(f"Redemption for order {order['_id']} delivered")
    else:
        logger.warning(f"Redemption for order {order['_id']} not delivered: {result.error}")
    db["order"].update_one({"_id": order["_id"]}, {"$set": update, "$inc": {"redemption.attempts": 1}})
    return result


def retry_pending_redemptions(db: Database, admin: AdminClient) -> List[dict]:
    pending = db["order"].find({
        "redemption.status": {"$in": ["pending", "failed"]},
        "redemption.attempts": {"$lt": settings.REDEMPTION_MAX_ATTEMPTS},
    }).sort("createdAt", 1)

    results = []
    for order in pending:
        outcome = deliver_redemption(db, admin, order)
        results.append({"orderId": str(order["_id"]), **outcome.to_dict()})
    return results


def redeem(admin: AdminClient, body: RedeemIn) -> dict:
    """Forward a redemption straight to the admin service."""
    total = body.order_amount or body.total or 0
    shipping = body.shipping_cost or 0
    subtotal = body.subtotal if body.subtotal is not None else total - shipping

    if not body.code or not body.order_id or not total or not body.customer_email:
        raise ValidationError("Missing required fields: code, orderId, orderAmount/total, customerEmail")

    payload = build_redemption_payload(
        code=body.code,
        order_id=body.order_id,
        total=total,
        subtotal=subtotal,
        shipping_cost=shipping,
        discount_amount=body.discount_amount or 0,
        customer_email=body.customer_email,
    )
    result = admin.post(REDEEM_PATH, payload)
    if not result.success:
        raise UpstreamError(
            "Failed to update ambassador stats",
            details=[result.error] if result.error else None,
            upstream_status=result.status_code,
        )

    logger.info(f"Coupon {body.code} redeemed for order {body.order_id}")
    return {"success": True, "message": "Coupon redeemed and ambassador stats updated", "data": result.data}
