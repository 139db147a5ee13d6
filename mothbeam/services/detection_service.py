"""
Detection Service

Owns the in-memory detections of every loaded night and coordinates the
identification pipeline:

1. Ingest detector output and saved user identifications for a night
2. Apply identification inputs (single inputs in batch, accept-by-order)
3. Announce changes through an injected callback (write-behind saving)
4. Produce Darwin Core exports on demand

The identification engine stays pure; this service is where state lives.
"""

import logging
import threading
from datetime import date
from typing import Optional, List, Dict, Any, Callable, Iterable, Tuple

from mothbeam.core.config import get_settings
from mothbeam.export.darwin import ExportContext, build_export_file_name, build_rows, rows_to_csv
from mothbeam.identification.accept import accept_by_order, project_id_from_night_id
from mothbeam.identification.engine import (
    BatchIdentificationResult,
    Clock,
    IdentificationContext,
    IdentificationInput,
    identify_many,
    system_clock,
)
from mothbeam.identification.species_lookup import SpeciesLookup, get_species_lookup
from mothbeam.persistence.night_writer import NightWriter
from mothbeam.persistence.shape_codec import (
    PersistedShape,
    build_photo_document,
    from_bot_shape,
    from_persisted_shape,
    parse_photo_document,
    to_persisted_shape,
)
from mothbeam.models.enums import TaxonomicRank
from mothbeam.taxonomy.base import DetectionEntity, PhotoContext
from mothbeam.taxonomy.ranks import detect_missing_ranks

logger = logging.getLogger(__name__)

ChangeCallback = Callable[[str], None]


class NightNotLoadedError(KeyError):
    """Raised when an operation targets a night that was never ingested."""


class DetectionService:
    """
    Main service for detection identification.

    Usage:
        service = DetectionService(lookup=InMemorySpeciesLookup())
        service.load_documents(night_id, bot_documents, user_documents)
        result = service.identify(night_id, ["patch_1.jpg"], MarkError())
    """

    def __init__(
        self,
        lookup: Optional[SpeciesLookup] = None,
        on_change: Optional[ChangeCallback] = None,
        clock: Optional[Clock] = None,
        identifier_human: Optional[str] = None,
    ):
        """
        Initialize the service.

        Args:
            lookup: Species reference lookup (uses global instance if None)
            on_change: Called with a night id after its detections change
            clock: Epoch-ms timestamp source
            identifier_human: Annotator initials used in exports
        """
        self.lookup = lookup or get_species_lookup()
        self.on_change = on_change
        self.clock = clock or system_clock
        self.identifier_human = identifier_human

        self._lock = threading.RLock()
        self._detections: Dict[str, Dict[str, DetectionEntity]] = {}
        self._photos: Dict[str, Dict[str, PhotoContext]] = {}
        self._bot_shapes: Dict[str, Dict[str, PersistedShape]] = {}
        self._species_list_by_project: Dict[str, str] = {}

    # === Loading ===

    def load_documents(
        self,
        night_id: str,
        bot_documents: Dict[str, Any],
        user_documents: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, int]:
        """
        Replace a night with detector output overlaid by saved user edits.

        Args:
            night_id: Night path
            bot_documents: Photo base -> detector JSON document
            user_documents: Photo base -> ``_identified.json`` document

        Returns:
            Counts of photos, detections and user-identified detections.
        """
        detections: Dict[str, DetectionEntity] = {}
        photos: Dict[str, PhotoContext] = {}
        bot_shapes: Dict[str, PersistedShape] = {}

        for base_name, document in sorted(bot_documents.items()):
            parsed = parse_photo_document(document)
            if parsed is None:
                logger.warning(f"Ignoring detector document without shapes: {base_name}")
                continue
            photo = PhotoContext(photo_id=f"{base_name}.jpg", night_id=night_id)
            photos[photo.photo_id] = photo
            for index, shape in enumerate(parsed[1]):
                detection = from_bot_shape(shape, photo, index=index)
                if detection is None:
                    continue
                detections[detection.id] = detection
                bot_shapes[detection.id] = shape

        identified = 0
        for base_name, document in sorted((user_documents or {}).items()):
            parsed = parse_photo_document(document)
            if parsed is None:
                logger.warning(f"Ignoring identified document without shapes: {base_name}")
                continue
            photo = photos.get(f"{base_name}.jpg") or PhotoContext(photo_id=f"{base_name}.jpg", night_id=night_id)
            photos.setdefault(photo.photo_id, photo)
            for shape in parsed[1]:
                existing = detections.get(shape.patch_file_name or "")
                detection = from_persisted_shape(shape, photo, existing)
                if detection is None:
                    continue
                detections[detection.id] = detection
                identified += 1

        with self._lock:
            self._detections[night_id] = detections
            self._photos[night_id] = photos
            self._bot_shapes[night_id] = bot_shapes

        logger.info(
            f"Loaded night {night_id}: {len(photos)} photos, "
            f"{len(detections)} detections, {identified} user-identified"
        )
        return {"photos": len(photos), "detections": len(detections), "identified": identified}

    def ingest_from_disk(self, night_id: str, writer: NightWriter) -> Dict[str, int]:
        """Load a night from the writer's data root."""
        return self.load_documents(
            night_id,
            writer.read_bot_documents(night_id),
            writer.read_documents(night_id),
        )

    # === Queries ===

    def _night(self, night_id: str) -> Dict[str, DetectionEntity]:
        detections = self._detections.get(night_id)
        if detections is None:
            raise NightNotLoadedError(night_id)
        return detections

    def is_loaded(self, night_id: str) -> bool:
        with self._lock:
            return night_id in self._detections

    def list_detections(self, night_id: str) -> List[DetectionEntity]:
        with self._lock:
            night = self._night(night_id)
            return sorted(night.values(), key=lambda d: (d.photo_id, d.patch_id))

    def get_detection(self, night_id: str, detection_id: str) -> Optional[DetectionEntity]:
        with self._lock:
            return self._night(night_id).get(detection_id)

    def snapshot(self, night_id: str) -> Tuple[List[DetectionEntity], List[PhotoContext]]:
        """Detections and photos of a night, for persistence."""
        with self._lock:
            detections = list(self._night(night_id).values())
            photos = sorted(self._photos.get(night_id, {}).values(), key=lambda p: p.photo_id)
            return detections, photos

    def photo_documents(self, night_id: str) -> Dict[str, Dict[str, Any]]:
        """Photo documents as they would be saved right now."""
        detections, photos = self.snapshot(night_id)
        documents = {}
        for photo in photos:
            items = sorted(
                (d for d in detections if d.photo_id == photo.photo_id and d.is_user_identified),
                key=lambda d: d.patch_id,
            )
            shapes = [to_persisted_shape(d, self.identifier_human, self.clock) for d in items]
            documents[photo.photo_base] = build_photo_document(photo.photo_base, shapes)
        return documents

    # === Species lists ===

    def select_species_list(self, project_id: str, list_id: Optional[str]) -> None:
        with self._lock:
            if list_id:
                self._species_list_by_project[project_id] = list_id
            else:
                self._species_list_by_project.pop(project_id, None)

    def species_list_for_night(self, night_id: str) -> Optional[str]:
        project_id = project_id_from_night_id(night_id)
        return self._species_list_by_project.get(project_id) if project_id else None

    def context_for_night(self, night_id: str) -> IdentificationContext:
        """Identification context from the project's selected species list."""
        list_id = self.species_list_for_night(night_id)
        if not list_id:
            return IdentificationContext()
        return IdentificationContext(species_list_id=list_id, species_list_doi=self.lookup.get_doi(list_id))

    # === Identification ===

    def _commit(self, night_id: str, result: BatchIdentificationResult) -> BatchIdentificationResult:
        if result.updated:
            self._night(night_id).update(result.updated)
            if self.on_change is not None:
                self.on_change(night_id)
        return result

    def identify(
        self,
        night_id: str,
        ids: Iterable[str],
        input: IdentificationInput,
        context: Optional[IdentificationContext] = None,
    ) -> BatchIdentificationResult:
        """Apply one identification input to detections of a night."""
        with self._lock:
            night = self._night(night_id)
            context = context or self.context_for_night(night_id)
            result = identify_many(dict(night), list(ids), input, context, self.clock)
            return self._commit(night_id, result)

    def accept(self, night_id: str, ids: Iterable[str]) -> BatchIdentificationResult:
        """Accept detections whose order exists in the project's species list."""
        with self._lock:
            night = self._night(night_id)
            result = accept_by_order(
                dict(night),
                list(ids),
                self.lookup,
                dict(self._species_list_by_project),
                self.clock,
            )
            return self._commit(night_id, result)

    def reset_to_auto(self, night_id: str, ids: Iterable[str]) -> BatchIdentificationResult:
        """Discard user identifications and restore detector output."""
        result = BatchIdentificationResult()
        with self._lock:
            night = self._night(night_id)
            bot_shapes = self._bot_shapes.get(night_id, {})
            for detection_id in dict.fromkeys(ids):
                existing = night.get(detection_id)
                shape = bot_shapes.get(detection_id)
                if existing is None or shape is None:
                    result.skipped.append(detection_id)
                    result.skip_reasons[detection_id] = "No detector output for detection"
                    continue
                photo = PhotoContext(photo_id=existing.photo_id, night_id=existing.night_id)
                result.updated[detection_id] = from_bot_shape(shape, photo, existing=existing)
            return self._commit(night_id, result)

    # === Export ===

    def rank_gaps(self, night_id: str) -> Dict[str, List[TaxonomicRank]]:
        """
        Detections whose taxonomy skips a rank above its deepest assignment.

        Error detections carry no taxonomy and are never reported.
        """
        gaps = {}
        for detection in self.list_detections(night_id):
            if detection.is_error:
                continue
            missing = detect_missing_ranks(detection.taxon)
            if missing:
                gaps[detection.id] = missing
        return gaps

    def export_csv(self, night_id: str, today: Optional[date] = None) -> Tuple[str, str]:
        """
        Darwin Core export of a night.

        Returns:
            (file name, CSV text)
        """
        detections = self.list_detections(night_id)
        context = ExportContext(night_id=night_id, identifier_human=self.identifier_human)
        gaps = self.rank_gaps(night_id)
        if gaps:
            logger.warning(f"Night {night_id} exports {len(gaps)} detections with missing intermediate ranks")
        csv_text = rows_to_csv(build_rows(detections, context))
        logger.info(f"Exported {len(detections)} detections for night {night_id}")
        return build_export_file_name(night_id, today), csv_text


# Singleton instances
_detection_service: Optional[DetectionService] = None
_night_writer: Optional[NightWriter] = None


def get_night_writer() -> NightWriter:
    """Get or create the night writer singleton."""
    global _night_writer
    if _night_writer is None:
        settings = get_settings()
        _night_writer = NightWriter(
            root=settings.data_dir,
            identifier_human=settings.identifier_human,
            save_delay_ms=settings.save_delay_ms,
        )
    return _night_writer


def get_detection_service() -> DetectionService:
    """Get or create the detection service singleton, wired to the writer."""
    global _detection_service
    if _detection_service is None:
        settings = get_settings()
        writer = get_night_writer()
        service = DetectionService(identifier_human=settings.identifier_human or None)
        service.on_change = lambda night_id: writer.schedule(night_id, lambda: service.snapshot(night_id))
        _detection_service = service
    return _detection_service
