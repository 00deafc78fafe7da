import logging

import uvicorn
from fastapi import FastAPI
from sqlalchemy import text

from . import models  # noqa: F401  registers tables on Base.metadata
from .config import settings
from .database import Base, SessionLocal, engine
from .deps import SessionDep
from .routers.loans_api import router as loans_router
from .routers.payments_api import router as payments_router
from .routers.reconciliation_api import router as reconciliation_router
from .routers.servicing_api import router as servicing_router

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s"
)
log = logging.getLogger(__name__)

db_tables_created = False  # Track if database tables have been initialized


async def create_db_and_tables():
    """Creates all database tables defined in models.py."""
    global db_tables_created

    if db_tables_created:
        return

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    db_tables_created = True
    log.info("Tables created successfully")


async def test_db_connection() -> bool:
    """Tests the database connection."""
    try:
        async with SessionLocal() as db:
            await db.execute(text("SELECT 1"))
            return True
    except Exception as e:
        log.error(f"Database connection failed: {e}")
        return False


app = FastAPI(
    title="LoanServe Payments",
    description="Mortgage payment ingestion, posting, servicing cycle and bank reconciliation"
)


@app.on_event("startup")
async def startup_event():
    try:
        log.info("Initializing application...")
        await create_db_and_tables()
        if await test_db_connection():
            log.info("Application ready")
    except Exception as e:
        log.warning(f"Startup issue: {e}; application will continue in limited mode")


# Include API routers
app.include_router(payments_router)
app.include_router(loans_router)
app.include_router(reconciliation_router)
app.include_router(servicing_router)


@app.get("/healthz")
async def healthz(db: SessionDep):
    """Liveness plus database reachability"""
    try:
        await db.execute(text("SELECT 1"))
        return {"status": "ok", "database": "ok"}
    except Exception as e:
        log.error(f"Health check database error: {e}")
        return {"status": "degraded", "database": "error"}


if __name__ == "__main__":
    uvicorn.run("loanserve.main:app", host="0.0.0.0", port=8000, reload=False)
