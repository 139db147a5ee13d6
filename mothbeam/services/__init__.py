# Services module
from mothbeam.services.detection_service import (
    DetectionService,
    NightNotLoadedError,
    get_detection_service,
    get_night_writer,
)

__all__ = [
    "DetectionService",
    "NightNotLoadedError",
    "get_detection_service",
    "get_night_writer",
]
