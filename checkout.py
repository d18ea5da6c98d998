"""
Placing an order: code validation, discount, commission, the order insert,
the ambassador ledger and the redemption notice to the admin service.

Each step is its own single-document write. The order insert is the commit
point; nothing after it can make the checkout fail.
"""
import logging
from typing import Optional

from pymongo.database import Database
from pymongo.errors import PyMongoError

import ambassadors
import notifier
import promotions
from commission import calculate_commission, line_items_subtotal
from errors import NotFoundError, ValidationError
from orders import check_order_input, create_order
from schemas import AmbassadorSnapshot, DiscountPolicy, OrderIn

logger = logging.getLogger(__name__)


def resolve_referrer(db: Database, policy: Optional[DiscountPolicy], referral_code: Optional[str]) -> Optional[dict]:
    """Ambassador behind an ambassador coupon, a promo's referral code, or the order's own referral code."""
    if policy and policy.is_ambassador:
        return ambassadors.find_approved(db, ambassador_id=policy.ambassador_id)
    if policy and policy.referral_code:
        referrer = ambassadors.find_approved(db, referral_code=policy.referral_code)
        if referrer:
            return referrer
    if referral_code:
        return ambassadors.find_approved(db, referral_code=referral_code)
    return None


def place_order(db: Database, admin: notifier.AdminClient, payload: OrderIn) -> dict:
    check_order_input(payload)

    policy = promotions.validate_code(db, payload.coupon_code) if payload.coupon_code else None
    subtotal = payload.subtotal if payload.subtotal is not None else line_items_subtotal(payload.products)

    discount = payload.discount_amount or 0
    if policy:
        # Minimum purchase applies whatever discount the client sends
        granted = promotions.discount_for(policy, subtotal)
        if payload.discount_amount is None:
            discount = granted
        elif payload.discount_amount > granted:
            raise ValidationError(f"Discount of {payload.discount_amount:.2f} exceeds the {granted:.2f} "
                                  f"granted by code {policy.code}")

    referrer = resolve_referrer(db, policy, payload.referral_code)
    snapshot = None
    if referrer:
        commission = calculate_commission(subtotal, discount, rate=referrer.get("commissionRate"))
        snapshot = AmbassadorSnapshot(
            ambassador_id=str(referrer["_id"]),
            referral_code=referrer.get("referralCode"),
            coupon_code=referrer.get("couponCode"),
            commission_rate=commission.rate,
            commission=commission.amount,
            commission_base=commission.base,
        )

    order = create_order(
        db,
        payload,
        subtotal=subtotal,
        discount_amount=discount,
        ambassador=snapshot,
        redemption_code=policy.code if policy else None,
    )
    order_id = str(order["_id"])
    response = {"success": True, "message": "Order placed successfully.", "order": order}

    if snapshot:
        try:
            ambassadors.apply_order(db, snapshot.ambassador_id, snapshot.commission, snapshot.commission_base,
                                    order_id=order_id)
        except (NotFoundError, PyMongoError) as e:
            logger.error(f"Ledger update failed for order {order_id}: {e}")
            response["warnings"] = [f"Ambassador statistics not updated: {e}"]

    if policy and not policy.is_ambassador:
        try:
            promotions.record_promo_use(db, policy.code)
        except PyMongoError as e:
            logger.error(f"Could not record use of promo code {policy.code}: {e}")

    if policy:
        try:
            result = notifier.deliver_redemption(db, admin, order)
        except PyMongoError as e:
            # The outbox entry stays pending and is picked up by the retry sweep
            logger.error(f"Could not record redemption outcome for order {order_id}: {e}")
            result = notifier.DeliveryResult(success=False, error=str(e))
        response["redemption"] = result.to_dict()
        if not result.success:
            response.setdefault("warnings", []).append(f"Redemption not yet delivered: {result.error}")

    response["order"] = db["order"].find_one({"_id": order["_id"]})
    return response
