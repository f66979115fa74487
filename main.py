"""
CoOwnSign FastAPI Backend
Document e-signing workflow for vehicle co-ownership groups
"""

import logging
import time
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from config import settings
from database import DatabaseManager
from app.routes import documents, signatures
from app.services.signing_errors import SigningError

logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events"""
    # Startup
    logger.info(f"{settings.APP_NAME} backend starting (v{settings.APP_VERSION})")

    if settings.SKIP_DB_TABLE_CREATION:
        logger.info("SKIP_DB_TABLE_CREATION is set; tables are managed by alembic migrations")
    else:
        DatabaseManager.create_all_tables()
        logger.info("Database tables ready")

    if not DatabaseManager.check_connection():
        logger.error("Database connection failed at startup")

    yield

    # Shutdown
    logger.info(f"{settings.APP_NAME} backend shutting down")


# Create FastAPI app
app = FastAPI(
    title="CoOwnSign API",
    description="Send documents for signature, collect signatures and track signing status",
    version=settings.APP_VERSION,
    docs_url="/api/docs" if settings.DEBUG else None,
    redoc_url="/api/redoc" if settings.DEBUG else None,
    lifespan=lifespan
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)


@app.exception_handler(SigningError)
async def signing_error_handler(request: Request, exc: SigningError):
    """Render typed signing failures as {error, code, details}"""
    log = logger.warning if exc.status_code < 500 else logger.error
    log(f"{request.method} {request.url.path} rejected: {exc.code} ({exc.message})")

    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


# Health check endpoint
@app.get("/health")
async def health_check():
    """System health check"""
    database_ok = DatabaseManager.check_connection()
    return {
        "status": "healthy" if database_ok else "degraded",
        "timestamp": time.time(),
        "services": {"database": "healthy" if database_ok else "unhealthy"}
    }


# Root endpoint
@app.get("/")
async def root():
    """Welcome message and API information"""
    return {
        "message": f"Welcome to {settings.APP_NAME} API",
        "status": "running",
        "documentation": "/api/docs",
        "health_check": "/health"
    }


app.include_router(documents.router, prefix="/api/documents", tags=["Documents"])
app.include_router(signatures.router, prefix="/api/signatures", tags=["Signatures"])


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=5000,
        reload=settings.DEBUG,
        access_log=settings.DEBUG
    )
