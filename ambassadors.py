"""
Ambassador (referrer) program: applications, referral links and the ledger
of cumulative order statistics.
"""
import logging
import random
import re
import string
import time
from typing import Any, Dict, Optional

from pydantic import ValidationError as SchemaError
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError, PyMongoError

from commission import round_money
from config import settings
from database import create_document, now_utc, object_id, serialize
from errors import ConflictError, ForbiddenError, NotFoundError, ValidationError
from notifier import AdminClient
from schemas import Ambassador

logger = logging.getLogger(__name__)

BASE36 = string.ascii_lowercase + string.digits
RECENT_ORDERS_LIMIT = 10


def _base36(n: int) -> str:
    digits = string.digits + string.ascii_lowercase
    out = ""
    while n:
        n, r = divmod(n, 36)
        out = digits[r] + out
    return out or "0"


def generate_referral_code(name: Optional[str]) -> str:
    clean = re.sub(r"[^a-z0-9]", "", (name or "").lower())
    if not clean:
        suffix = "".join(random.choices(BASE36, k=6))
        return f"fallback_{_base36(int(time.time() * 1000))}_{suffix}"
    return clean[:6] + "".join(random.choices(BASE36, k=4))


def referral_link(referral_code: str) -> str:
    return f"{settings.SITE_URL}?ref={referral_code}"


def save_ambassador(db: Database, ambassador_id, fields: Dict[str, Any]) -> None:
    """$set fields on an ambassador, keeping referralCode/referralLink consistent."""
    update = dict(fields)
    if "referralCode" in update:
        if not (update["referralCode"] or "").strip():
            update["referralCode"] = generate_referral_code(None)
        update["referralLink"] = referral_link(update["referralCode"])
    update["updatedAt"] = now_utc()
    db["ambassador"].update_one({"_id": ambassador_id}, {"$set": update})


def find_approved(db: Database, ambassador_id: Optional[str] = None,
                  referral_code: Optional[str] = None) -> Optional[dict]:
    query: Dict[str, Any] = {"status": "approved"}
    if ambassador_id:
        oid = object_id(ambassador_id)
        if oid is None:
            return None
        query["_id"] = oid
    elif referral_code:
        query["referralCode"] = referral_code
    else:
        return None
    return db["ambassador"].find_one(query)


# Ledger

def apply_order(db: Database, ambassador_id: str, commission: float, commission_base: float,
                order_id: Optional[str] = None) -> bool:
    """Add one order's economics to the ambassador's counters.

    With an order id the order's ambassador.ledgerApplied flag is flipped first,
    so the same order is only ever counted once. Returns False when it already was.
    """
    oid = object_id(ambassador_id)
    if oid is None:
        raise NotFoundError("Ambassador not found")

    if order_id is not None:
        claimed = db["order"].update_one(
            {"_id": object_id(order_id), "ambassador.ledgerApplied": {"$ne": True}},
            {"$set": {"ambassador.ledgerApplied": True}},
        )
        if claimed.modified_count == 0:
            logger.info(f"Ledger already applied for order {order_id}")
            return False

    try:
        result = db["ambassador"].update_one(
            {"_id": oid},
            {
                "$inc": {
                    "orders": 1,
                    "sales": round_money(commission_base),
                    "earnings": round_money(commission),
                    "paymentsPending": round_money(commission),
                },
                "$set": {"updatedAt": now_utc()},
            },
        )
        if result.matched_count == 0:
            raise NotFoundError("Ambassador not found")
    except (NotFoundError, PyMongoError):
        if order_id is not None:
            # Give the claim back so the order can still be credited later
            db["order"].update_one(
                {"_id": object_id(order_id), "ambassador.ledgerApplied": True},
                {"$set": {"ambassador.ledgerApplied": False}},
            )
        raise
    logger.info(f"Ambassador {ambassador_id} credited {commission:.2f} on base {commission_base:.2f}")
    return True


# Applications

def submit_application(db: Database, name: Optional[str], email: Optional[str], user_id: Optional[str] = None,
                       details: Optional[dict] = None) -> dict:
    if not name or not email:
        raise ValidationError("Name and email are required")

    existing = db["ambassador"].find_one({"email": email})
    if existing:
        raise ConflictError("You already have an ambassador request", details=[{"status": existing.get("status")}])

    code = generate_referral_code(name)
    try:
        ambassador = Ambassador(
            name=name,
            email=email,
            user_id=user_id or email,
            referral_code=code,
            referral_link=referral_link(code),
            application_details=details or {},
        )
    except SchemaError as e:
        raise ValidationError("Invalid application", details=[err["msg"] for err in e.errors()])

    doc = ambassador.model_dump(by_alias=True)
    # Coupon codes are unique and sparse; leave the field out until one is assigned
    doc.pop("couponCode", None)
    try:
        new_id = create_document("ambassador", doc, database=db)
    except DuplicateKeyError:
        raise ConflictError("You already have an ambassador request")
    logger.info(f"Ambassador application {new_id} submitted for {email}")
    return {"id": new_id, "referralCode": code, "referralLink": ambassador.referral_link, "status": "pending"}


def get_application(db: Database, email: Optional[str]) -> dict:
    if not email:
        raise ValidationError("Email parameter is required")
    ambassador = db["ambassador"].find_one({"email": email})
    if not ambassador:
        raise NotFoundError("Application not found")

    application = {
        "status": ambassador.get("status"),
        "name": ambassador.get("name"),
        "email": ambassador.get("email"),
        "referralCode": ambassador.get("referralCode"),
        "referralLink": ambassador.get("referralLink"),
        "createdAt": ambassador.get("createdAt"),
    }
    if ambassador.get("status") == "approved":
        application["couponCode"] = ambassador.get("couponCode")
    return serialize(application)


def get_dashboard(db: Database, email: Optional[str]) -> dict:
    if not email:
        raise ValidationError("Email parameter is required")
    ambassador = db["ambassador"].find_one({"email": email})
    if not ambassador:
        raise NotFoundError("Ambassador not found")
    if ambassador.get("status") != "approved":
        raise ForbiddenError("Ambassador not approved yet")

    recent = db["order"].find({"ambassador.ambassadorId": str(ambassador["_id"])}) \
        .sort("createdAt", -1).limit(RECENT_ORDERS_LIMIT)
    # No customer data leaves this endpoint
    orders = [
        {
            "orderId": str(o["_id"]),
            "date": o.get("createdAt"),
            "amount": o.get("totalAmount"),
            "commission": o["ambassador"].get("commission"),
            "status": o["ambassador"].get("paymentStatus"),
        }
        for o in recent
    ]
    stats = {k: ambassador.get(k, 0) for k in (
        "referrals", "orders", "conversions", "sales", "earnings", "paymentsPending", "paymentsPaid")}
    return serialize({
        "referralLink": ambassador.get("referralLink"),
        "couponCode": ambassador.get("couponCode"),
        "status": ambassador.get("status"),
        "commissionRate": ambassador.get("commissionRate", settings.DEFAULT_COMMISSION_RATE),
        **stats,
        "recentOrders": orders,
    })


def update_video_link(db: Database, admin: AdminClient, email: Optional[str], link: Optional[str]) -> dict:
    """Store the link locally, then mirror it to the admin service if it answers."""
    if not email or not link:
        raise ValidationError("Email and product video link are required")
    ambassador = db["ambassador"].find_one({"email": email})
    if not ambassador:
        raise NotFoundError("Ambassador not found")

    save_ambassador(db, ambassador["_id"], {"productVideoLink": link})
    result = admin.post("/api/ambassadors/update-video-link", {"email": email, "productVideoLink": link})
    body = {"success": True, "message": "Video link updated successfully", "adminSynced": result.success}
    if not result.success:
        body["warning"] = result.error
    return body
