"""
Application configuration with environment-based settings.

Configuration is centralized here so the annotation service can be pointed
at a different data root or annotator without code changes.
"""

from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # API Configuration
    app_name: str = "Mothbeam Identification API"
    app_version: str = "0.1.0"
    debug: bool = False
    api_prefix: str = "/api/v1"

    # Server Configuration
    host: str = "0.0.0.0"
    port: int = 8000
    workers: int = 1

    # Storage
    data_dir: str = "./data"
    save_delay_ms: int = 400  # write-behind debounce per night

    # Annotator initials written to identifier_human on user detections
    identifier_human: str = ""

    # Logging
    log_level: str = "INFO"

    class Config:
        env_file = ".env"
        env_prefix = "MOTHBEAM_"


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Fixed higher taxonomy - the monitoring hardware only ever photographs insects
FIXED_KINGDOM = "Animalia"
FIXED_PHYLUM = "Arthropoda"
FIXED_CLASS = "Insecta"

SOFTWARE_NAME = "Mothbeam v2"
BASIS_OF_RECORD = "MachineObservation"

# Persisted document layout
PHOTO_DOCUMENT_VERSION = "1"
IDENTIFIED_SUFFIX = "_identified.json"
BOT_DETECTION_SUFFIX = "_botdetection.json"
NIGHT_SUMMARY_FILE = "night_summary.json"
PATCHES_PREFIX = "patches/"

ERROR_LABEL = "ERROR"
