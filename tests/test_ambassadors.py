import re

import pytest
from bson import ObjectId

from ambassadors import (
    generate_referral_code, get_application, get_dashboard, referral_link,
    save_ambassador, submit_application, update_video_link,
)
from conftest import line, make_order
from errors import ConflictError, ForbiddenError, NotFoundError, ValidationError


class TestReferralCodes:

    def test_code_from_name(self):
        code = generate_referral_code("Nour El-Din!")
        assert re.fullmatch(r"nourel[a-z0-9]{4}", code)

    def test_fallback_for_empty_name(self):
        assert generate_referral_code("!!!").startswith("fallback_")

    def test_link_derived_from_code(self):
        assert referral_link("abc123") == "https://elevee.netlify.app?ref=abc123"

    def test_link_recomputed_on_save(self, db, approved_ambassador):
        oid = ObjectId(approved_ambassador)
        save_ambassador(db, oid, {"referralCode": "newcode1"})
        doc = db["ambassador"].find_one({"_id": oid})
        assert doc["referralLink"].endswith("?ref=newcode1")

    def test_blank_code_replaced_on_save(self, db, approved_ambassador):
        oid = ObjectId(approved_ambassador)
        save_ambassador(db, oid, {"referralCode": "  "})
        doc = db["ambassador"].find_one({"_id": oid})
        assert doc["referralCode"].startswith("fallback_")
        assert doc["referralLink"].endswith(doc["referralCode"])


class TestApplications:

    def test_submit_creates_pending(self, db):
        created = submit_application(db, "Sara", "sara@example.com", details={"instagram": "@sara"})
        doc = db["ambassador"].find_one({"email": "sara@example.com"})
        assert doc["status"] == "pending"
        assert doc["commissionRate"] == 50
        assert doc["referralLink"] == referral_link(doc["referralCode"])
        assert "couponCode" not in doc
        assert created["status"] == "pending"

    def test_duplicate_email_conflicts(self, db):
        submit_application(db, "Sara", "sara@example.com")
        with pytest.raises(ConflictError) as exc:
            submit_application(db, "Sara", "sara@example.com")
        assert exc.value.status_code == 409

    def test_name_and_email_required(self, db):
        with pytest.raises(ValidationError):
            submit_application(db, "", "sara@example.com")

    def test_status_hides_coupon_until_approved(self, db, approved_ambassador):
        submit_application(db, "Sara", "sara@example.com")
        db["ambassador"].update_one({"email": "sara@example.com"}, {"$set": {"couponCode": "SARA10"}})
        assert "couponCode" not in get_application(db, "sara@example.com")
        assert get_application(db, "nour@example.com")["couponCode"] == "NOUR15"

    def test_status_unknown_email(self, db):
        with pytest.raises(NotFoundError):
            get_application(db, "ghost@example.com")


class TestDashboard:

    def test_recent_orders_without_customer_data(self, db, approved_ambassador):
        make_order(db, [line("p1")], ambassador={"ambassadorId": approved_ambassador, "commission": 45,
                                                 "paymentStatus": "pending"})
        make_order(db, [line("p1")], ambassador=None)
        data = get_dashboard(db, "nour@example.com")
        assert len(data["recentOrders"]) == 1
        assert data["recentOrders"][0]["commission"] == 45
        assert "customer" not in data["recentOrders"][0]
        assert data["couponCode"] == "NOUR15"

    def test_pending_ambassador_forbidden(self, db):
        submit_application(db, "Sara", "sara@example.com")
        with pytest.raises(ForbiddenError):
            get_dashboard(db, "sara@example.com")


class TestVideoLink:

    def test_local_write_wins_when_admin_is_down(self, db, admin, admin_stub, approved_ambassador):
        admin_stub.status = 500
        body = update_video_link(db, admin, "nour@example.com", "https://video/1")
        assert body["success"] is True
        assert body["adminSynced"] is False
        assert db["ambassador"].find_one({"email": "nour@example.com"})["productVideoLink"] == "https://video/1"

    def test_synced(self, db, admin, admin_stub, approved_ambassador):
        body = update_video_link(db, admin, "nour@example.com", "https://video/2")
        assert body["adminSynced"] is True
        assert admin_stub.calls[0].url.path == "/api/ambassadors/update-video-link"


def test_indexes_enforce_unique_email(db):
    from pymongo.errors import DuplicateKeyError
    from database import ensure_indexes

    ensure_indexes(db)
    submit_application(db, "Sara", "sara@example.com")
    with pytest.raises(DuplicateKeyError):
        db["ambassador"].insert_one({"email": "sara@example.com", "referralCode": "other123"})
    # ambassadors without a coupon code do not collide on the sparse index
    submit_application(db, "Omar", "omar@example.com")
    assert db["ambassador"].count_documents({}) == 2
