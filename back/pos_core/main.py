import logging

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .db import check_db_connection, create_db_and_tables
from .errors import PosError
from .kds_routes import router as kds_router
from .pos_routes import router as pos_router
from .public_routes import router as public_router
from .settings import settings

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


app = FastAPI(
    title="POS Core API",
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
)

# Parse CORS origins from environment (comma-separated)
cors_origins_list = [
    origin.strip()
    for origin in settings.cors_origins.split(",")
    if origin.strip()
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(pos_router, prefix="/pos", tags=["POS"])
app.include_router(kds_router, prefix="/kds", tags=["Kitchen"])
app.include_router(public_router, prefix="/public", tags=["Public"])


@app.exception_handler(PosError)
async def pos_error_handler(request: Request, exc: PosError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.detail}")
    else:
        logger.info(f"{request.method} {request.url.path} rejected ({exc.status_code}): {exc.detail}")
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


@app.on_event("startup")
def on_startup() -> None:
    logger.info("Starting application...")
    create_db_and_tables()


@app.get("/health")
def health() -> dict:
    return {"status": "ok"}


@app.get("/health/db")
def health_db() -> dict:
    """Check database connection."""
    try:
        check_db_connection()
    except Exception as e:
        raise HTTPException(status_code=503, detail=f"Database error: {e}")
    return {"status": "ok", "database": "connected"}
