from types import SimpleNamespace

from bson import ObjectId
from fastapi.testclient import TestClient

from conftest import NOW, days, line, make_order
from main import app
from notifier import AdminClient, get_admin_client


def order_body(**overrides):
    body = {
        "customer": {"name": "Jane", "email": "jane@example.com", "phone": "0100", "address": "Cairo"},
        "products": [{"productId": "p1", "name": "Hoodie", "price": 100, "quantity": 2, "size": "M"}],
        "totalAmount": 250,
        "subtotal": 200,
        "shippingCost": 50,
    }
    body.update(overrides)
    return body


class TestOrdersApi:

    def test_create(self, client):
        response = client.post("/orders", json=order_body())
        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["order"]["status"] == "pending"
        assert isinstance(body["order"]["_id"], str)

    def test_instapay_without_screenshot(self, client):
        response = client.post("/orders", json=order_body(paymentMethod="instaPay"))
        assert response.status_code == 400
        assert response.json() == {"success": False,
                                   "error": "Transaction screenshot is required for InstaPay payments"}

    def test_cash_on_delivery_same_payload(self, client):
        response = client.post("/orders", json=order_body(paymentMethod="cashOnDelivery"))
        assert response.status_code == 200

    def test_missing_customer(self, client):
        response = client.post("/orders", json=order_body(customer={"name": "Jane"}))
        assert response.status_code == 400
        assert response.json()["error"] == "Missing required customer information"

    def test_empty_cart(self, client):
        response = client.post("/orders", json=order_body(products=[]))
        assert response.status_code == 400

    def test_malformed_item(self, client):
        response = client.post("/orders", json=order_body(products=[{"name": "no id"}]))
        assert response.status_code == 400
        assert response.json()["details"]

    def test_expired_coupon(self, client, db):
        db["promocode"].insert_one({"code": "OLD", "value": 10, "isActive": True, "endDate": NOW - days(400)})
        response = client.post("/orders", json=order_body(couponCode="OLD"))
        assert response.status_code == 400
        assert "expired" in response.json()["error"]

    def test_list_newest_first(self, client, db):
        old = make_order(db, [line("p")], created_at=NOW - days(1))
        new = make_order(db, [line("p")], created_at=NOW)
        assert [o["_id"] for o in client.get("/orders").json()] == [new, old]

    def test_update(self, client, db):
        order_id = make_order(db, [line("p")])
        response = client.post(f"/orders/{order_id}/update", json={"status": "processing"})
        assert response.status_code == 200
        assert response.json()["order"]["status"] == "processing"

    def test_update_unknown(self, client):
        response = client.post(f"/orders/{ObjectId()}/update", json={"status": "processing"})
        assert response.status_code == 404

    def test_item_update_missing_keys(self, client, db):
        order_id = make_order(db, [line("p")])
        response = client.post(f"/orders/{order_id}/items/update", json={"productId": "p"})
        assert response.status_code == 400

    def test_item_update_not_found(self, client, db):
        order_id = make_order(db, [line("p")])
        response = client.post(f"/orders/{order_id}/items/update",
                               json={"productId": "p", "size": "XXL", "updates": {"quantity": 2}})
        assert response.status_code == 404


class TestInventoryApi:

    def test_update_from_order(self, client, db, product):
        order_id = make_order(db, [line(product, "M", 1, color="Black"), line(str(ObjectId()), "M", 1)])
        response = client.post("/inventory/update-from-order", json={"orderId": order_id})
        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert [u["status"] for u in body["updates"]] == ["success", "error"]
        assert body["order"]["inventoryProcessed"] is True

    def test_update_from_order_missing_id(self, client):
        assert client.post("/inventory/update-from-order", json={}).status_code == 400

    def test_update_from_order_unknown(self, client):
        response = client.post("/inventory/update-from-order", json={"orderId": str(ObjectId())})
        assert response.status_code == 404

    def test_sync_all(self, client, db, product):
        make_order(db, [line(product, "L", 1)])
        body = client.post("/inventory/sync-all-orders").json()
        assert body["processed"] == 1

    def test_get_and_put_inventory(self, client, product):
        assert client.get(f"/products/{product}/inventory").json()["inventory"]["total"] == 14
        response = client.put(f"/products/{product}/inventory",
                              json={"inventory": {"variants": [{"size": "S", "color": "Red", "quantity": 2}]}})
        assert response.json()["inventory"]["total"] == 2

    def test_put_without_inventory(self, client, product):
        assert client.put(f"/products/{product}/inventory", json={}).status_code == 400

    def test_reduce_inventory(self, client, product):
        response = client.post(f"/products/{product}/reduce-inventory",
                               json={"size": "M", "color": "Black", "quantity": 10})
        assert response.status_code == 200
        assert response.json()["inventory"]["variant"]["quantity"] == 0

    def test_reduce_unknown_product(self, client):
        response = client.post(f"/products/{ObjectId()}/reduce-inventory",
                               json={"size": "M", "color": "Black", "quantity": 1})
        assert response.status_code == 404

    def test_catalog(self, client, product):
        assert client.get("/products", params={"q": "hoodie"}).json()[0]["_id"] == product
        assert client.get(f"/products/{product}").json()["title"] == "Logo Hoodie"
        assert client.get(f"/products/{ObjectId()}").status_code == 404

    def test_stock_validate(self, client, product):
        response = client.post("/stock/validate", json={"items": [
            {"productId": product, "size": "M", "color": "Black", "quantity": 2}]})
        assert response.status_code == 200
        assert response.json()["valid"] is True
        assert client.post("/stock/validate", json={"items": []}).status_code == 400


class TestCodesApi:

    def test_promocode_validate(self, client, db):
        db["promocode"].insert_one({"code": "SAVE10", "type": "percentage", "value": 10, "isActive": True})
        body = client.post("/promocodes/validate", json={"code": "save10"}).json()
        assert body["valid"] is True
        assert body["discount"]["code"] == "SAVE10"
        assert body["discount"]["isAmbassador"] is False

    def test_coupon_validate_ambassador(self, client, approved_ambassador):
        body = client.get("/coupon/validate", params={"code": "Nour15"}).json()
        assert body["valid"] is True
        assert body["discount"]["ambassadorId"] == approved_ambassador

    def test_validate_unknown(self, client):
        response = client.post("/promocodes/validate", json={"code": "NOPE"})
        assert response.status_code == 404
        assert response.json() == {"valid": False, "error": "Invalid or expired promo code"}

    def test_validate_usage_limit(self, client, db):
        db["promocode"].insert_one({"code": "MAX", "value": 5, "isActive": True, "maxUses": 1, "usedCount": 1})
        response = client.get("/coupon/validate", params={"code": "max"})
        assert response.status_code == 400
        assert "usage limit" in response.json()["error"]

    def test_validate_missing_code(self, client):
        assert client.post("/promocodes/validate", json={}).status_code == 400

    def test_redeem_upstream_failure(self, client, admin_stub):
        admin_stub.status = 500
        response = client.post("/coupon/redeem", json={"code": "X", "orderId": "o1", "total": 10,
                                                        "customerEmail": "a@example.com"})
        assert response.status_code == 502
        assert response.json()["adminStatus"] == 500

    def test_retry_redemptions(self, client, db):
        make_order(db, [line("p")], redemption={"code": "SAVE10", "status": "failed", "attempts": 1})
        body = client.post("/redemptions/retry").json()
        assert body["attempted"] == 1
        assert body["delivered"] == 1


class TestAmbassadorApi:

    def test_request_then_conflict(self, client):
        payload = {"name": "Sara", "email": "sara@example.com", "formData": {"why": "love it"}}
        assert client.post("/ambassador/request", json=payload).status_code == 200
        assert client.post("/ambassador/request", json=payload).status_code == 409

    def test_status(self, client, approved_ambassador):
        body = client.get("/ambassador/status", params={"email": "nour@example.com"}).json()
        assert body["application"]["status"] == "approved"

    def test_data_requires_email(self, client):
        assert client.get("/ambassador/data").status_code == 400

    def test_data_forbidden_for_pending(self, client):
        client.post("/ambassador/request", json={"name": "Sara", "email": "sara@example.com"})
        assert client.get("/ambassador/data", params={"email": "sara@example.com"}).status_code == 403


class TestNewsletterApi:

    def test_subscribe_statuses(self, client):
        assert client.post("/newsletter", json={"email": "jane@example.com"}).status_code == 201
        second = client.post("/newsletter", json={"email": "jane@example.com"})
        assert second.status_code == 200
        assert second.json()["message"] == "Already subscribed"

    def test_waitlist(self, client):
        body = client.post("/waitlist", json={"email": "jane@example.com"}).json()
        assert body["success"] is True


def test_health(client):
    assert client.get("/").status_code == 200
    assert client.get("/test").status_code == 200


class TestLifespan:

    def test_one_admin_client_for_the_app(self):
        with TestClient(app):
            shared = app.state.admin_client
            assert isinstance(shared, AdminClient)
            request = SimpleNamespace(app=app)
            assert get_admin_client(request) is get_admin_client(request) is shared
        assert shared.client.is_closed
