"""
FastAPI dependency injection.

Provides dependency injection for services and components,
enabling easy testing and component swapping.
"""

from mothbeam.identification.species_lookup import InMemorySpeciesLookup, get_species_lookup
from mothbeam.persistence.night_writer import NightWriter
from mothbeam.services.detection_service import (
    DetectionService,
    get_detection_service,
    get_night_writer,
)


# Re-export the service getters
__all__ = [
    "DetectionService",
    "InMemorySpeciesLookup",
    "NightWriter",
    "get_detection_service",
    "get_night_writer",
    "get_species_lookup",
]
