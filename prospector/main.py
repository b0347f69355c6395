"""
Prospector - FastAPI Application
Main entry point with all routes configured.
"""
import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager

from prospector.database import init_db
from prospector.core.exceptions import ProspectorException
from prospector.core.logging import configure_logging
from prospector.schemas.common import HealthResponse

# Import all API routers
from prospector.api import lead_search, enrichment, webhook

VERSION = "1.0.0"

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    # Startup
    configure_logging()
    await init_db()
    logger.info("Prospector API started")
    yield
    # Shutdown


app = FastAPI(
    title="Prospector API",
    description="Apollo lead search and webhook-driven enrichment",
    version=VERSION,
    lifespan=lifespan
)

# CORS Configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ProspectorException)
async def prospector_exception_handler(request: Request, exc: ProspectorException):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    if errors:
        first = errors[0]
        field = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        message = f"Invalid request: {field}: {first.get('msg')}" if field else f"Invalid request: {first.get('msg')}"
    else:
        message = "Invalid request"
    return JSONResponse(status_code=400, content={"error": message})


# Include all routers
app.include_router(lead_search.router)
app.include_router(enrichment.router)
app.include_router(webhook.router)


@app.get("/")
async def root():
    """Health check endpoint."""
    return {
        "message": "Prospector API is running",
        "version": VERSION,
        "docs": "/docs"
    }


@app.get("/health", response_model=HealthResponse)
async def health():
    """Detailed health check."""
    return HealthResponse(version=VERSION)
