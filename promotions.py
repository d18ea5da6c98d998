"""
Promo and ambassador coupon codes.

Two namespaces are checked in order: the promocode collection, then the
coupon codes of approved ambassadors.
"""
import logging
import re
from datetime import datetime
from decimal import Decimal
from typing import Optional

from pymongo.database import Database

from commission import round_money
from config import settings
from database import as_utc, now_utc
from errors import NotFoundError, ValidationError
from schemas import DiscountPolicy

logger = logging.getLogger(__name__)

NOT_YET_ACTIVE = "not_yet_active"
EXPIRED = "expired"
USAGE_LIMIT_REACHED = "usage_limit_reached"

REJECTION_MESSAGES = {
    NOT_YET_ACTIVE: "This promo code is not active yet",
    EXPIRED: "This promo code has expired",
    USAGE_LIMIT_REACHED: "This promo code has reached its usage limit",
}

DISCOUNT_FIELDS = ("discountPercentage", "discountValue", "discount")


class CodeNotFound(NotFoundError):
    def __init__(self, code: str):
        super().__init__("Invalid or expired promo code")
        self.code = code


class CodeRejected(ValidationError):
    def __init__(self, reason: str):
        super().__init__(REJECTION_MESSAGES[reason])
        self.reason = reason


def code_filter(field: str, code: str) -> dict:
    return {field: {"$regex": f"^{re.escape(code.strip())}$", "$options": "i"}}


def check_promo_window(promo: dict, now: datetime) -> Optional[str]:
    """Return the rejection reason for a promo document, or None when usable."""
    start = as_utc(promo.get("startDate"))
    end = as_utc(promo.get("endDate"))
    if start and start > now:
        return NOT_YET_ACTIVE
    if end and end < now:
        return EXPIRED
    max_uses = promo.get("maxUses")
    if max_uses and (promo.get("usedCount") or 0) >= max_uses:
        return USAGE_LIMIT_REACHED
    return None


def read_ambassador_discount(doc: dict) -> float:
    """Compatibility shim for ambassador records written by the admin service.

    The admin service has no fixed field for the coupon's discount, so known
    names are tried first, then any numeric field that looks like one.
    """
    for field in DISCOUNT_FIELDS:
        value = doc.get(field)
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return float(value)

    for key, value in doc.items():
        lowered = key.lower()
        if isinstance(value, (int, float)) and not isinstance(value, bool) and (
                "discount" in lowered or "percent" in lowered):
            logger.warning(f"Ambassador {doc.get('_id')} discount read from unexpected field '{key}'")
            return float(value)

    logger.warning(
        f"Ambassador {doc.get('_id')} has no discount field; "
        f"using default {settings.DEFAULT_AMBASSADOR_DISCOUNT}%"
    )
    return float(settings.DEFAULT_AMBASSADOR_DISCOUNT)


def validate_code(db: Database, code: Optional[str], now: Optional[datetime] = None) -> DiscountPolicy:
    """Resolve a user supplied code to the discount it grants.

    Raises ValidationError for an empty code, CodeRejected when a promo code
    exists but cannot be used right now, CodeNotFound when neither namespace
    knows the code.
    """
    if not code or not code.strip():
        raise ValidationError("Promo code is required")
    now = now or now_utc()

    promo = db["promocode"].find_one({**code_filter("code", code), "isActive": True})
    if promo:
        reason = check_promo_window(promo, now)
        if reason:
            logger.info(f"Promo code {promo['code']} rejected: {reason}")
            raise CodeRejected(reason)
        return DiscountPolicy(
            type=promo.get("type") or "percentage",
            value=promo.get("value") or 0,
            min_purchase=promo.get("minPurchase") or 0,
            code=promo["code"],
            referral_code=promo.get("referralCode") or None,
            is_ambassador=False,
        )

    ambassador = db["ambassador"].find_one({**code_filter("couponCode", code), "status": "approved"})
    if ambassador:
        discount = read_ambassador_discount(ambassador)
        logger.info(f"Ambassador coupon {ambassador['couponCode']} applied with {discount}% discount")
        return DiscountPolicy(
            type=ambassador.get("discountType") or "percentage",
            value=discount,
            min_purchase=0,
            code=ambassador["couponCode"],
            referral_code=ambassador.get("referralCode") or None,
            is_ambassador=True,
            ambassador_id=str(ambassador["_id"]),
            commission_rate=(settings.DEFAULT_COMMISSION_RATE if ambassador.get("commissionRate") is None
                             else ambassador["commissionRate"]),
        )

    raise CodeNotFound(code)


def discount_for(policy: DiscountPolicy, subtotal: float) -> float:
    """Discount amount the policy grants on a merchandise subtotal."""
    if subtotal < policy.min_purchase:
        raise ValidationError(f"Minimum purchase of {policy.min_purchase:.2f} required for code {policy.code}")
    if policy.type == "fixed":
        return round_money(min(policy.value, subtotal))
    return round_money(Decimal(str(subtotal)) * Decimal(str(policy.value)) / 100)


def record_promo_use(db: Database, code: str) -> None:
    db["promocode"].update_one(code_filter("code", code), {"$inc": {"usedCount": 1}})
