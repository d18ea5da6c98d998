"""Newsletter subscriptions and the launch waitlist."""
import logging
from typing import Optional

from email_validator import EmailNotValidError, validate_email
from pymongo.database import Database

from database import create_document, now_utc
from errors import NotFoundError, ValidationError
from notifier import AdminClient
from schemas import Newsletter

logger = logging.getLogger(__name__)

CREATED = "created"
RESUBSCRIBED = "resubscribed"
ALREADY_SUBSCRIBED = "already_subscribed"


def normalize_email(email: Optional[str]) -> str:
    if not email:
        raise ValidationError("Valid email is required")
    try:
        validate_email(email.strip(), check_deliverability=False)
    except EmailNotValidError:
        raise ValidationError("Valid email is required")
    return email.strip().lower()


def subscribe(db: Database, email: Optional[str], source: Optional[str] = None) -> str:
    email = normalize_email(email)
    existing = db["newsletter"].find_one({"email": email})
    if existing:
        if existing.get("subscribed"):
            return ALREADY_SUBSCRIBED
        db["newsletter"].update_one(
            {"_id": existing["_id"]},
            {"$set": {"subscribed": True, "subscribedAt": now_utc(), "updatedAt": now_utc()}},
        )
        logger.info(f"Newsletter re-subscription for {email}")
        return RESUBSCRIBED

    create_document("newsletter", Newsletter(email=email, source=source or "website_footer", subscribed_at=now_utc()),
                    database=db)
    logger.info(f"Newsletter subscription for {email}")
    return CREATED


def unsubscribe(db: Database, email: Optional[str]) -> None:
    email = normalize_email(email)
    result = db["newsletter"].update_one(
        {"email": email},
        {"$set": {"subscribed": False, "unsubscribedAt": now_utc(), "updatedAt": now_utc()}},
    )
    if result.matched_count == 0:
        raise NotFoundError("Subscription not found")


def join_waitlist(db: Database, admin: AdminClient, email: Optional[str], source: Optional[str] = None) -> dict:
    """Save locally, then forward to the admin service's waitlist if it answers."""
    email = normalize_email(email)
    db["waitlist"].update_one(
        {"email": email},
        {"$setOnInsert": {"email": email, "source": source or "e-commerce", "createdAt": now_utc()}},
        upsert=True,
    )
    result = admin.post("/api/waitlist", {"email": email, "source": source or "e-commerce"})
    body = {"success": True, "message": "Added to waitlist", "adminSynced": result.success}
    if not result.success:
        body["warning"] = result.error
    return body
