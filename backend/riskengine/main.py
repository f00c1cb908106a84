import logging

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from riskengine.config import settings
from riskengine.dependencies import get_store
from riskengine.errors import NotFoundError, StorageError, ValidationError
from riskengine.repository.base import RiskStore
from riskengine.routers.dashboard import router as dashboard_router
from riskengine.routers.gap_analysis import router as gap_analysis_router
from riskengine.routers.risk import router as risk_router

logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ── Engine errors → HTTP ──

@app.exception_handler(ValidationError)
async def _validation_error(request: Request, exc: ValidationError):
    return JSONResponse(status_code=400, content={"detail": str(exc), "field": exc.field})


@app.exception_handler(NotFoundError)
async def _not_found(request: Request, exc: NotFoundError):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(StorageError)
async def _storage_error(request: Request, exc: StorageError):
    logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=503, content={"detail": "Storage unavailable"})


app.include_router(risk_router)
app.include_router(dashboard_router)
app.include_router(gap_analysis_router)


@app.get("/health")
async def health(store: RiskStore = Depends(get_store)):
    """Health check — verifies API is running and the store answers."""
    try:
        await store.ping()
        db_status = "connected"
    except StorageError as exc:
        db_status = f"error: {exc}"

    return {
        "status": "ok" if db_status == "connected" else "degraded",
        "app": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "database": db_status,
    }
