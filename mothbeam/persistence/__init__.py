# Persistence module
from mothbeam.persistence.shape_codec import (
    PersistedShape,
    to_persisted_shape,
    from_persisted_shape,
    from_bot_shape,
    build_photo_document,
    parse_photo_document,
)
from mothbeam.persistence.night_writer import NightWriter, build_night_summary

__all__ = [
    "PersistedShape",
    "to_persisted_shape",
    "from_persisted_shape",
    "from_bot_shape",
    "build_photo_document",
    "parse_photo_document",
    "NightWriter",
    "build_night_summary",
]
