import logging
from contextlib import asynccontextmanager
from datetime import datetime

import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from profit_auditor.audit_api import audit_router
from profit_auditor.config import settings
from profit_auditor.database import SessionLocal, init_db
from profit_auditor.integrations_api import integrations_router
from profit_auditor.services.sync_scheduler import SyncScheduler
from profit_auditor.spreadsheet_api import spreadsheet_router
from profit_auditor.utils import AppException

handlers = [logging.StreamHandler()]
if settings.LOG_FILE:
    handlers.append(logging.FileHandler(settings.LOG_FILE))

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=handlers
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events"""
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")
    init_db()

    scheduler = None
    if settings.ENABLE_SCHEDULED_SYNC:
        scheduler = SyncScheduler(SessionLocal)
        scheduler.start()

    yield

    logger.info("Shutting down application")
    if scheduler:
        scheduler.shutdown()


app = FastAPI(
    title=settings.APP_NAME,
    description=settings.APP_DESCRIPTION,
    version=settings.APP_VERSION,
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(spreadsheet_router)
app.include_router(audit_router)
app.include_router(integrations_router)


# Error handlers: every failure is rendered as {"error": ...}
@app.exception_handler(AppException)
async def app_exception_handler(request: Request, exc: AppException):
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    problems = "; ".join(
        f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}" for err in exc.errors()
    )
    return JSONResponse(status_code=400, content={"error": problems})


@app.exception_handler(Exception)
async def internal_error_handler(request: Request, exc: Exception):
    logger.error(f"Internal server error: {exc}", exc_info=True)
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


@app.get("/")
async def root():
    return {
        "app": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "status": "running",
        "features": {
            "scheduled_sync": settings.ENABLE_SCHEDULED_SYNC,
            "ai_audits": bool(settings.OPENAI_API_KEY),
        }
    }


@app.get("/health")
async def health_check():
    return {"status": "healthy", "timestamp": datetime.utcnow().isoformat()}


def run():
    logger.info("Starting FastAPI server...")
    uvicorn.run(app, host=settings.HOST, port=settings.PORT)


if __name__ == "__main__":
    run()
