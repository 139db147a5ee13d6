# API routes module
from mothbeam.api.routes.detections import router as detections_router
from mothbeam.api.routes.export import router as export_router
from mothbeam.api.routes.health import router as health_router
from mothbeam.api.routes.species import router as species_router

__all__ = ["detections_router", "export_router", "health_router", "species_router"]
