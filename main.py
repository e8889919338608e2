import logging
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo.errors import PyMongoError

import database
from config import settings
from errors import CanteenError, InternalFailure
from inventory import InventoryLedger
from orders import OrderEngine
from schemas import MenuItem, OrderCreate, OrderStatusUpdate, PaymentStatusUpdate, StockUpdate
from sweeper import ExpirySweeper

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("canteen")


# Dependencies

def get_ledger() -> InventoryLedger:
    if database.db is None:
        raise InternalFailure("Database not available")
    return InventoryLedger(database.db)


def get_engine(ledger: InventoryLedger = Depends(get_ledger)) -> OrderEngine:
    return OrderEngine(
        ledger.db,
        ledger=ledger,
        hold_minutes=settings.order_hold_minutes,
        pickup_grace_seconds=settings.pickup_grace_seconds,
        cancel_restock_policy=settings.cancel_restock_policy,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    sweeper = None
    if database.db is not None:
        database.ensure_indexes(database.db)
        if settings.sweeper_enabled:
            sweeper = ExpirySweeper(get_engine(get_ledger()), settings.sweep_interval_seconds)
            sweeper.start()
    else:
        logger.warning("DATABASE_URL / DATABASE_NAME not set; running without storage")
    app.state.sweeper = sweeper
    yield
    if sweeper is not None:
        sweeper.stop()


app = FastAPI(title="Canteen Ordering API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(CanteenError)
async def canteen_error_handler(request: Request, exc: CanteenError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


@app.get("/api/health")
def health():
    return {"status": "OK", "message": "Canteen Ordering System is running"}


@app.get("/test")
def test_database():
    """Storage diagnostics: whether Mongo is configured and reachable."""
    report = {
        "database_configured": database.db is not None,
        "database_name": None,
        "collections": [],
        "error": None,
    }
    if database.db is None:
        return report
    report["database_name"] = database.db.name
    try:
        report["collections"] = sorted(database.db.list_collection_names())
    except PyMongoError as exc:
        logger.warning("Database diagnostics failed: %s", exc)
        report["error"] = str(exc)[:80]
    return report

# ----- Menu / Inventory -----
@app.get("/api/menu", response_model=List[dict])
def list_menu_items(category: Optional[str] = None, available: Optional[bool] = None,
                    ledger: InventoryLedger = Depends(get_ledger)):
    return ledger.list_menu_items(category=category, available_only=bool(available))

@app.get("/api/menu/categories/list", response_model=List[str])
def list_categories(ledger: InventoryLedger = Depends(get_ledger)):
    return ledger.list_categories()

@app.get("/api/menu/{item_id}")
def get_menu_item(item_id: str, ledger: InventoryLedger = Depends(get_ledger)):
    return ledger.get_menu_item(item_id)

@app.post("/api/menu", status_code=201)
def create_menu_item(item: MenuItem, ledger: InventoryLedger = Depends(get_ledger)):
    return ledger.create_menu_item(item)

@app.patch("/api/menu/{item_id}/stock")
def update_stock(item_id: str, payload: StockUpdate, ledger: InventoryLedger = Depends(get_ledger)):
    delta = payload.quantity if payload.operation == "increase" else -payload.quantity
    return ledger.adjust_stock(item_id, delta)

# ----- Orders -----
@app.get("/api/orders", response_model=List[dict])
def list_orders(status: Optional[str] = None, customer_phone: Optional[str] = None,
                engine: OrderEngine = Depends(get_engine)):
    return engine.list_orders(status=status, customer_phone=customer_phone)

@app.get("/api/orders/stats/summary")
def order_stats(engine: OrderEngine = Depends(get_engine)):
    return engine.get_order_stats()

@app.get("/api/orders/number/{order_number}")
def get_order_by_number(order_number: str, engine: OrderEngine = Depends(get_engine)):
    return engine.get_order_by_number(order_number)

@app.get("/api/orders/customer/{phone}", response_model=List[dict])
def list_customer_orders(phone: str, engine: OrderEngine = Depends(get_engine)):
    return engine.list_orders_by_customer_phone(phone)

@app.get("/api/orders/{order_id}")
def get_order(order_id: str, engine: OrderEngine = Depends(get_engine)):
    return engine.get_order(order_id)

@app.post("/api/orders", status_code=201)
def create_order(payload: OrderCreate, engine: OrderEngine = Depends(get_engine)):
    return engine.create_order(
        payload.items,
        customer_name=payload.customer_name,
        customer_phone=payload.customer_phone,
        pickup_time=payload.pickup_time,
        payment_method=payload.payment_method,
        notes=payload.notes,
    )

@app.put("/api/orders/{order_id}/status")
def update_order_status(order_id: str, payload: OrderStatusUpdate, engine: OrderEngine = Depends(get_engine)):
    return engine.update_order_status(order_id, payload.status)

@app.patch("/api/orders/{order_id}/payment")
def update_payment_status(order_id: str, payload: PaymentStatusUpdate, engine: OrderEngine = Depends(get_engine)):
    return engine.update_payment_status(order_id, payload.payment_status)

@app.delete("/api/orders/{order_id}")
def cancel_order(order_id: str, engine: OrderEngine = Depends(get_engine)):
    order = engine.cancel_order(order_id)
    return {"message": "Order cancelled successfully", "order": order}

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=settings.port)
