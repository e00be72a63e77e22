from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
import logging
import uvicorn

from core.config import settings
from core.errors import ErrorKind, SchemaDriftError
from api.routers import comparison, profiles, sync, database

# Configure logging
logging.basicConfig(
    level=settings.LOG_LEVEL,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

logger = logging.getLogger(__name__)

ERROR_STATUS_CODES = {
    ErrorKind.INVALID_FILTER_PATTERN: 400,
    ErrorKind.UNSUPPORTED_DEFINITION: 400,
    ErrorKind.RESULT_FROZEN: 409,
    ErrorKind.SNAPSHOT_FAILED: 502,
    ErrorKind.TIMEOUT: 504,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifecycle"""
    # Startup
    logger.info(f"Starting {settings.PROJECT_NAME}...")

    yield

    # Shutdown
    logger.info(f"Shutting down {settings.PROJECT_NAME}...")


# Create FastAPI app
app = FastAPI(
    title=settings.PROJECT_NAME,
    version=settings.VERSION,
    lifespan=lifespan
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(SchemaDriftError)
async def schema_drift_error_handler(request: Request, exc: SchemaDriftError) -> JSONResponse:
    """Structured body for every comparison error"""
    status_code = ERROR_STATUS_CODES.get(exc.kind, 500)
    logger.error(f"{request.method} {request.url.path} failed ({exc.kind.value}): {exc.message}")
    return JSONResponse(status_code=status_code, content=exc.to_dict())


# Include routers
app.include_router(comparison.router, prefix=f"{settings.API_V1_STR}/comparison", tags=["comparison"])
app.include_router(profiles.router, prefix=f"{settings.API_V1_STR}/profiles", tags=["profiles"])
app.include_router(sync.router, prefix=f"{settings.API_V1_STR}/sync", tags=["sync"])
app.include_router(database.router, prefix=f"{settings.API_V1_STR}/database", tags=["database"])


@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "name": settings.PROJECT_NAME,
        "version": settings.VERSION,
        "status": "operational"
    }


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {
        "status": "healthy",
        "version": settings.VERSION
    }


if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        log_level=settings.LOG_LEVEL.lower()
    )
