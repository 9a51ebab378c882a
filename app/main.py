from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from app.api import groupfund, treasurer
from app.core.config import settings
from app.core.exceptions import TreasuryError
from app.services.scheduler import start_scheduler, stop_scheduler
import logging

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S'
)

# Get logger for this module
logger = logging.getLogger(__name__)
logger.info("Starting Aurora Treasury API")


@asynccontextmanager
async def lifespan(app: FastAPI):
    if settings.SCHEDULER_ENABLED:
        start_scheduler()
    yield
    stop_scheduler()


app = FastAPI(
    title="Aurora Treasury API",
    description="Club treasury: monthly group fund payments, verification and wallet",
    version="1.0.0",
    lifespan=lifespan,
    debug=settings.DEBUG,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000", "http://127.0.0.1:3000", "*"],  # Frontend URLs - allow all for dev
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(TreasuryError)
async def treasury_error_handler(request: Request, exc: TreasuryError):
    if exc.status_code >= 500:
        logger.error("%s on %s %s: %s", exc.code, request.method, request.url.path, exc.detail)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail, "code": exc.code})


# Include routers
app.include_router(treasurer.router)
app.include_router(groupfund.router)


@app.get("/")
def root():
    """Root endpoint."""
    return {"message": "Aurora Treasury API", "version": "1.0.0"}


@app.get("/api/health")
def health_check():
    """Health check endpoint: checks API and database connectivity."""
    from app.db.base import SessionLocal
    from sqlalchemy import text
    from datetime import datetime, timezone

    db_status = "unreachable"
    db_error = None
    db = SessionLocal()
    try:
        db.execute(text("SELECT 1"))
        db_status = "connected"
    except Exception as e:
        db_error = str(e)
    finally:
        db.close()

    status = "healthy" if db_status == "connected" else "degraded"

    return {
        "status": status,
        "version": "1.0.0",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "services": {
            "api": "ok",
            "database": db_status,
        },
        **({"database_error": db_error} if db_error else {})
    }
