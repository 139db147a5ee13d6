"""
Mothbeam Identification API

FastAPI application for reviewing insect detections from light-trap
monitoring nights: identify detections against a species list, persist the
identifications per photo, and export Darwin Core occurrence CSVs.

Usage:
    uvicorn mothbeam.main:app --reload
    uvicorn mothbeam.main:app --host 0.0.0.0 --port 8000
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from mothbeam.core.config import get_settings
from mothbeam.api.routes import detections_router, export_router, health_router, species_router
from mothbeam.api.routes.health import set_startup_time
from mothbeam.services.detection_service import get_night_writer

settings = get_settings()

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler.

    On shutdown every pending write-behind save is flushed so no
    identification made in the last debounce window is lost.
    """
    logger.info(f"Starting {settings.app_name} (data root: {settings.data_dir})")
    set_startup_time()

    yield

    logger.info("Flushing pending night writes...")
    get_night_writer().flush()
    logger.info("Shutdown complete")


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="""
## Mothbeam Identification API

Identification and Darwin Core export for insect detections from
light-trap monitoring nights.

### Workflow

1. Ingest a night (`POST /api/v1/nights/{night}/ingest`)
2. Register and select a species list (`/api/v1/species-lists`)
3. Identify detections: pick a taxon, give a morphospecies, mark errors, or accept
4. Export a Darwin Core CSV (`GET /api/v1/nights/{night}/export/darwin.csv`)

Night ids are paths such as `project/site/deployment/2025-06-23`.
Identifications are written behind to `<photo>_identified.json` files.
    """,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Handle unexpected exceptions."""
    logger.exception(f"Unhandled exception: {exc}")
    return JSONResponse(
        status_code=500,
        content={
            "error": "internal_server_error",
            "message": "An unexpected error occurred. Please try again.",
            "details": str(exc) if settings.debug else None
        }
    )


# Include routers
app.include_router(health_router, prefix=settings.api_prefix)
app.include_router(detections_router, prefix=settings.api_prefix)
app.include_router(export_router, prefix=settings.api_prefix)
app.include_router(species_router, prefix=settings.api_prefix)


@app.get("/api", tags=["Root"])
async def api_info():
    """API information endpoint."""
    return {
        "name": settings.app_name,
        "version": settings.app_version,
        "documentation": "/docs",
        "health_check": f"{settings.api_prefix}/health",
        "nights_endpoint": f"{settings.api_prefix}/nights",
        "species_lists_endpoint": f"{settings.api_prefix}/species-lists",
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "mothbeam.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        workers=1 if settings.debug else settings.workers
    )
