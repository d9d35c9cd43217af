# backend/app/main.py

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.startup import configure_startup_logging, run_startup_checks
from core.config import settings
from core.exceptions import register_exception_handlers

# ========== Restaurant Floor ==========
from modules.tables.routes.table_routes import router as table_router
from modules.settings.routes.settings_routes import router as settings_router
from modules.menu.routes.menu_routes import router as menu_router

# ========== Orders & Payments ==========
from modules.orders.routes.order_routes import router as order_router
from modules.payments.routes.payment_routes import router as payment_router
from modules.daybook.routes.daybook_routes import router as daybook_router
from modules.analytics.routes.analytics_routes import (
    customer_router,
    router as analytics_router,
)

# ========== Realtime & Health ==========
from modules.realtime.routes.realtime_routes import router as realtime_router
from modules.realtime.services.broadcast_channel import broadcast_channel
from modules.realtime.services.redis_relay import RedisEventRelay
from modules.health.routes.health_routes import router as health_router

configure_startup_logging()
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Restaurant Coordination API",
    description="""
    Coordinates the restaurant floor between the customer menu, the kitchen
    display and the reception desk.

    ## Features

    * **Table Sessions** - Table binding, shared carts and session clearing
    * **Order Lifecycle** - Dine-in and delivery orders from pending to completed
    * **Payments** - Cash, card and online settlement with ledger reconciliation
    * **Daybook** - Daily cash ledger with opening and closing balances
    * **Analytics** - Sales figures and the customer directory
    * **Realtime** - Push channel with per-entity sequence numbers and snapshots
    """,
    version=settings.app_version,
)

register_exception_handlers(app)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health_router)
app.include_router(settings_router)
app.include_router(menu_router)
app.include_router(table_router)
app.include_router(order_router)
app.include_router(payment_router)
app.include_router(daybook_router)
app.include_router(analytics_router)
app.include_router(customer_router)
app.include_router(realtime_router)


@app.get("/")
def read_root():
    return {"message": "Restaurant coordination backend is running"}


# Startup and shutdown events
@app.on_event("startup")
async def startup_event():
    """Initialize services on application startup"""
    run_startup_checks()

    relay = RedisEventRelay() if settings.redis_enabled else None
    try:
        await broadcast_channel.start(relay=relay)
    except Exception as e:
        logger.error(f"Redis relay unavailable, broadcasting locally only: {e}")
        await broadcast_channel.start()


@app.on_event("shutdown")
async def shutdown_event():
    """Cleanup on application shutdown"""
    await broadcast_channel.close()
