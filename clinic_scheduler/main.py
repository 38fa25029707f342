# clinic_scheduler/main.py
from __future__ import annotations

# Load .env early so settings and os.getenv see it
from dotenv import load_dotenv
load_dotenv()

import sqlalchemy as sa
from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from clinic_scheduler.core.config import settings
from clinic_scheduler.core.errors import SchedulingError, log_error
from clinic_scheduler.core.logging import LoggingMiddleware, get_logger, setup_logging
from clinic_scheduler.db.session import get_session

# Routers
from clinic_scheduler.api.routes.appointments import router as appointments_router
from clinic_scheduler.api.routes.calendar_sync import router as calendar_sync_router

setup_logging(
    debug=settings.is_development,
    max_log_length=settings.MAX_LOG_LENGTH,
    level=settings.LOG_LEVEL,
)
logger = get_logger(__name__)

app = FastAPI(title="Clinic Scheduler", description="Appointment scheduling and calendar sync")

app.middleware("http")(LoggingMiddleware(log_requests=settings.LOG_REQUESTS or settings.is_development))


@app.exception_handler(SchedulingError)
async def scheduling_error_handler(request: Request, exc: SchedulingError):
    log_error(exc, {"endpoint": request.url.path, "code": exc.code})
    return JSONResponse({"error": exc.to_dict()}, status_code=exc.http_status)


# -------- Health / readiness (public) --------
@app.get("/healthz", include_in_schema=False)
async def healthz():
    return {"ok": True}


@app.get("/readyz", include_in_schema=False)
async def readyz(db: AsyncSession = Depends(get_session)):
    await db.execute(sa.text("SELECT 1"))
    return {"db": "ok"}


# -------- Include routers --------
app.include_router(appointments_router)
app.include_router(calendar_sync_router)
