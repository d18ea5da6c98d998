import os
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo.database import Database
from pymongo.errors import PyMongoError

import ambassadors
import checkout
import inventory
import newsletter
import notifier
import orders
import promotions
import database
from config import settings
from database import get_db, serialize
from errors import StorefrontError
from notifier import AdminClient, get_admin_client
from schemas import (
    AmbassadorRequestIn, CodeIn, InventoryIn, InventoryOrderIn, OrderIn, OrderItemUpdateIn,
    OrderUpdateIn, RedeemIn, ReduceInventoryIn, StockValidateIn, SubscribeIn, VideoLinkIn,
)

logging.basicConfig(level=settings.LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if database.db is not None:
        try:
            database.ensure_indexes(database.db)
        except PyMongoError as e:
            logger.error(f"Could not create indexes: {e}")
    app.state.admin_client = AdminClient()
    yield
    app.state.admin_client.close()


app = FastAPI(title=settings.APP_NAME, lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(StorefrontError)
async def storefront_error_handler(request: Request, exc: StorefrontError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=serialize(exc.to_dict()))


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    details = [f"{'.'.join(str(p) for p in err['loc'] if p != 'body')}: {err['msg']}" for err in exc.errors()]
    return JSONResponse(status_code=400, content={"success": False, "error": "Invalid request data", "details": details})


@app.exception_handler(PyMongoError)
async def database_error_handler(request: Request, exc: PyMongoError):
    logger.error(f"{request.method} {request.url.path} database error: {exc}")
    return JSONResponse(status_code=500, content={"success": False, "error": "Database operation failed"})


@app.get("/")
def read_root():
    return {"message": "Storefront API is running"}


@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": "✅ Set" if settings.DATABASE_URL else "❌ Not Set",
        "database_name": settings.DATABASE_NAME,
        "connection_status": "Not Connected",
        "collections": []
    }
    try:
        db = get_db()
        response["connection_status"] = "Connected"
        try:
            collections = db.list_collection_names()
            response["collections"] = collections[:10]
            response["database"] = "✅ Connected & Working"
        except PyMongoError as e:
            response["database"] = f"⚠️  Connected but Error: {str(e)[:50]}"
    except StorefrontError as e:
        response["database"] = f"❌ Error: {e.message[:50]}"
    return response


# Catalog endpoints
@app.get("/products")
def list_products(q: Optional[str] = None, db: Database = Depends(get_db)):
    return serialize(inventory.list_products(db, q))


@app.get("/products/{product_id}")
def get_product(product_id: str, db: Database = Depends(get_db)):
    return serialize(inventory.get_product(db, product_id))


@app.get("/products/{product_id}/inventory")
def get_product_inventory(product_id: str, db: Database = Depends(get_db)):
    return {"success": True, "inventory": inventory.get_inventory(db, product_id)}


@app.put("/products/{product_id}/inventory")
def put_product_inventory(product_id: str, payload: InventoryIn, db: Database = Depends(get_db)):
    updated = inventory.replace_inventory(db, product_id, payload.inventory)
    return {"success": True, "message": "Inventory updated successfully", "inventory": updated}


@app.post("/products/{product_id}/reduce-inventory")
def reduce_product_inventory(product_id: str, payload: ReduceInventoryIn, db: Database = Depends(get_db)):
    return inventory.reduce_variant(db, product_id, payload.size, payload.color, payload.quantity)


@app.post("/stock/validate")
def validate_stock(payload: StockValidateIn, db: Database = Depends(get_db)):
    return inventory.validate_stock(db, payload.items)


# Orders
@app.post("/orders")
def create_order(payload: OrderIn, db: Database = Depends(get_db), admin: AdminClient = Depends(get_admin_client)):
    return serialize(checkout.place_order(db, admin, payload))


@app.get("/orders")
def list_orders(db: Database = Depends(get_db)):
    return serialize(orders.list_orders(db))


@app.post("/orders/{order_id}/update")
def update_order(order_id: str, payload: OrderUpdateIn, db: Database = Depends(get_db)):
    order = orders.update_order(db, order_id, status=payload.status, inventory_processed=payload.inventory_processed)
    return serialize({"success": True, "message": "Order updated successfully", "order": order})


@app.post("/orders/{order_id}/items/update")
def update_order_item(order_id: str, payload: OrderItemUpdateIn, db: Database = Depends(get_db)):
    item = orders.update_order_item(db, order_id, payload.product_id, payload.size, payload.updates, payload.color)
    return serialize({"success": True, "message": "Order item updated successfully", "item": item})


# Inventory reconciliation
@app.post("/inventory/update-from-order")
def update_inventory_from_order(payload: InventoryOrderIn, db: Database = Depends(get_db)):
    return serialize(inventory.reconcile_order(db, payload.order_id).to_dict())


@app.post("/inventory/sync-all-orders")
def sync_all_orders(db: Database = Depends(get_db)):
    return inventory.sync_all_orders(db)


# Codes
def _validation_response(db: Database, code: Optional[str]) -> JSONResponse:
    try:
        policy = promotions.validate_code(db, code)
    except StorefrontError as e:
        return JSONResponse(status_code=e.status_code, content={"valid": False, "error": e.message})
    return JSONResponse(content={"valid": True, "discount": policy.model_dump(by_alias=True)})


@app.post("/promocodes/validate")
def validate_promo_code(payload: CodeIn, db: Database = Depends(get_db)):
    return _validation_response(db, payload.code)


@app.get("/coupon/validate")
def validate_coupon(code: Optional[str] = None, db: Database = Depends(get_db)):
    return _validation_response(db, code)


@app.post("/coupon/redeem")
def redeem_coupon(payload: RedeemIn, admin: AdminClient = Depends(get_admin_client)):
    return notifier.redeem(admin, payload)


@app.post("/redemptions/retry")
def retry_redemptions(db: Database = Depends(get_db), admin: AdminClient = Depends(get_admin_client)):
    results = notifier.retry_pending_redemptions(db, admin)
    return {
        "success": True,
        "attempted": len(results),
        "delivered": sum(1 for r in results if r["success"]),
        "results": results,
    }


# Ambassador program
@app.post("/ambassador/request")
def request_ambassador(payload: AmbassadorRequestIn, db: Database = Depends(get_db)):
    created = ambassadors.submit_application(db, payload.name, payload.email, payload.user_id, payload.form_data)
    return {"success": True, "message": "Ambassador request submitted successfully", **created}


@app.get("/ambassador/status")
def ambassador_status(email: Optional[str] = None, db: Database = Depends(get_db)):
    return {"application": ambassadors.get_application(db, email)}


@app.get("/ambassador/data")
def ambassador_data(email: Optional[str] = None, db: Database = Depends(get_db)):
    return ambassadors.get_dashboard(db, email)


@app.post("/ambassador/update-video-link")
def ambassador_video_link(payload: VideoLinkIn, db: Database = Depends(get_db),
                          admin: AdminClient = Depends(get_admin_client)):
    return ambassadors.update_video_link(db, admin, payload.email, payload.product_video_link)


# Newsletter / waitlist
@app.post("/newsletter")
def subscribe_newsletter(payload: SubscribeIn, db: Database = Depends(get_db)):
    outcome = newsletter.subscribe(db, payload.email, payload.source)
    messages = {
        newsletter.CREATED: ("Subscribed successfully", 201),
        newsletter.RESUBSCRIBED: ("Re-subscribed successfully", 200),
        newsletter.ALREADY_SUBSCRIBED: ("Already subscribed", 200),
    }
    message, status = messages[outcome]
    return JSONResponse(status_code=status, content={"success": True, "message": message})


@app.post("/newsletter/unsubscribe")
def unsubscribe_newsletter(payload: SubscribeIn, db: Database = Depends(get_db)):
    newsletter.unsubscribe(db, payload.email)
    return {"success": True, "message": "Unsubscribed successfully"}


@app.post("/waitlist")
def join_waitlist(payload: SubscribeIn, db: Database = Depends(get_db), admin: AdminClient = Depends(get_admin_client)):
    return newsletter.join_waitlist(db, admin, payload.email, payload.source)


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", settings.PORT))
    uvicorn.run(app, host="0.0.0.0", port=port)
