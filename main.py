import asyncio
import contextlib
import logging
import socket
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlmodel import Session

from core.config import settings
from core.database import create_db_and_tables, engine
from core.errors import register_exception_handlers
from routes.auth import router as auth_router
from routes.users import router as users_router
from routes.organization import router as organization_router
from routes.plans import router as plans_router
from routes.stripe import router as stripe_router
from services.subscription_service import expire_lapsed_subscriptions

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


# =========================================
# ⏳ Lapsed-subscription sweep
# =========================================
def run_expiry_sweep() -> int:
    with Session(engine) as session:
        return expire_lapsed_subscriptions(session)


async def expiry_sweep_loop(interval: int) -> None:
    while True:
        try:
            expired = await asyncio.to_thread(run_expiry_sweep)
            if expired:
                logger.info("Expiry sweep marked %s organizations expired", expired)
        except Exception:
            logger.exception("Expiry sweep failed")
        await asyncio.sleep(interval)


# =========================================
# 🏁 Lifespan (DB initialization)
# =========================================
@asynccontextmanager
async def lifespan(app: FastAPI):
    create_db_and_tables()
    logger.info("Database tables created on startup.")

    sweep = None
    if settings.EXPIRY_SWEEP_INTERVAL_SECONDS > 0:
        sweep = asyncio.create_task(expiry_sweep_loop(settings.EXPIRY_SWEEP_INTERVAL_SECONDS))
    app.state.expiry_sweep = sweep
    yield
    if sweep:
        sweep.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await sweep
    logger.info("Application shutting down.")


# =========================================
#  ✅ FastAPI App
# =========================================
app = FastAPI(lifespan=lifespan, title="Seatflow Backend")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)


# =========================================
# 📦 Routers
# =========================================
app.include_router(auth_router, prefix="/auth", tags=["Authentication"])
app.include_router(users_router, prefix="/users", tags=["Users"])
app.include_router(organization_router, prefix="/organizations", tags=["Organizations"])
app.include_router(plans_router, prefix="/plans", tags=["Plans"])
app.include_router(stripe_router, prefix="/stripe", tags=["Stripe"])


# =========================================
# 🩺 Health Check
# =========================================
@app.get("/health")
def health_check():
    return {"status": "ok", "message": "Backend is running"}


# =========================================
# 🚀 Entrypoint
# =========================================
def find_free_port(start: int, attempts: int) -> int:
    """First port from ``start`` that can be bound, trying ``attempts`` ports."""
    for port in range(start, start + attempts + 1):
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
            try:
                sock.bind(("0.0.0.0", port))
            except OSError:
                logger.warning("Port %s is in use, trying %s", port, port + 1)
                continue
            return port
    raise RuntimeError(f"No free port between {start} and {start + attempts}")


def run() -> None:
    port = find_free_port(settings.PORT, settings.PORT_RETRY_LIMIT)
    logger.info("Starting server on port %s", port)
    uvicorn.run(app, host="0.0.0.0", port=port)


if __name__ == "__main__":
    run()
