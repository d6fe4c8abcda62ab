import os
from contextlib import asynccontextmanager
from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import structlog

load_dotenv()

from disc_recovery.core.errors import RecoveryError  # noqa: E402
from disc_recovery.db.db import create_db_and_tables  # noqa: E402
from disc_recovery.routers import admin, notifications, profile, realtime, recovery, webhooks  # noqa: E402
from disc_recovery.utils.logging import configure_logging  # noqa: E402

configure_logging()

log = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    create_db_and_tables()
    log.info("startup_complete")
    yield


app = FastAPI(lifespan=lifespan)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=[origin.strip() for origin in os.getenv("CORS_ORIGINS", "http://localhost:3000").split(",") if origin.strip()],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(RecoveryError)
async def recovery_error_handler(request: Request, exc: RecoveryError):
    if exc.status_code >= 500:
        log.error("request_failed", path=request.url.path, code=exc.code, detail=exc.message)
    else:
        log.warning("request_rejected", path=request.url.path, code=exc.code, detail=exc.message)

    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "code": exc.code},
    )


# Register routers
app.include_router(recovery.router, prefix="/recovery", tags=["Recovery"])
app.include_router(realtime.router, tags=["Realtime"])
app.include_router(admin.router, prefix="/admin", tags=["Admin"])
app.include_router(notifications.router, prefix="/notifications", tags=["Notifications"])
app.include_router(profile.router, prefix="/profile", tags=["Profile"])
app.include_router(webhooks.router, prefix="/webhooks", tags=["Webhooks"])


@app.get("/")
def root():
    return {"status": "ok"}
