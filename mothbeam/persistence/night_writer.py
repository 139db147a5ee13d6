"""
Night Writer

Persists user identifications for one night of captures:

- ``{photoBase}_identified.json`` per photo, holding the user-identified
  shapes (an empty shape list clears a stale file)
- ``night_summary.json`` with detection counts and morphospecies tallies

Writes are debounced per night: a burst of identifications produces one
write ``save_delay_ms`` after the last change. The writer only receives
snapshots through a callback, so identification code never imports it.
"""

import json
import logging
import threading
from collections import Counter
from pathlib import Path
from typing import Optional, List, Dict, Any, Callable, Iterable, Tuple

from mothbeam.core.config import (
    BOT_DETECTION_SUFFIX,
    IDENTIFIED_SUFFIX,
    NIGHT_SUMMARY_FILE,
)
from mothbeam.identification.engine import system_clock
from mothbeam.persistence.shape_codec import build_photo_document, to_persisted_shape
from mothbeam.taxonomy.base import DetectionEntity, PhotoContext
from mothbeam.taxonomy.morphospecies import normalize_morpho_key

logger = logging.getLogger(__name__)

NightSnapshot = Tuple[List[DetectionEntity], List[PhotoContext]]


def build_night_summary(night_id: str, detections: Iterable[DetectionEntity], now: int) -> Dict[str, Any]:
    """Counts and morphospecies tallies for one night."""
    detections = list(detections)
    morpho_counts: Counter = Counter()
    preview_ids: Dict[str, str] = {}

    for detection in detections:
        key = normalize_morpho_key(detection.morphospecies)
        if not key or detection.is_error:
            continue
        morpho_counts[key] += 1
        preview_ids.setdefault(key, detection.patch_id)

    return {
        "nightId": night_id,
        "totalDetections": len(detections),
        "totalIdentified": sum(1 for d in detections if d.is_user_identified),
        "updatedAt": now,
        "morphoCounts": dict(morpho_counts),
        "morphoPreviewPatchIds": preview_ids,
    }


class NightWriter:
    """
    Writes and reads per-night JSON documents under a data root.

    A night id is a relative path ("project/site/deployment/2025-06-23")
    and maps directly to a directory below ``root``.

    Usage:
        writer = NightWriter(root="./data", identifier_human="AB")
        writer.schedule(night_id, lambda: (detections, photos))
        writer.flush()
    """

    def __init__(
        self,
        root: str,
        identifier_human: Optional[str] = None,
        save_delay_ms: int = 400,
        clock: Optional[Callable[[], int]] = None,
    ):
        """
        Initialize night writer.

        Args:
            root: Data root directory
            identifier_human: Annotator initials written on user shapes
            save_delay_ms: Debounce delay for scheduled writes
            clock: Epoch-ms timestamp source
        """
        self.root = Path(root)
        self.identifier_human = identifier_human or "user"
        self.save_delay_ms = save_delay_ms
        self.clock = clock or system_clock

        self._lock = threading.Lock()
        self._timers: Dict[str, threading.Timer] = {}
        self._pending: Dict[str, Callable[[], NightSnapshot]] = {}

    def night_dir(self, night_id: str) -> Path:
        parts = [part for part in night_id.replace("\\", "/").split("/") if part and part != ".."]
        return self.root.joinpath(*parts)

    # === Writing ===

    def write_night(
        self,
        night_id: str,
        detections: Iterable[DetectionEntity],
        photos: Iterable[PhotoContext],
    ) -> List[Path]:
        """
        Write every photo document and the summary for a night.

        Returns:
            Paths written, summary last.
        """
        detections = list(detections)
        by_photo: Dict[str, List[DetectionEntity]] = {}
        for detection in detections:
            if detection.is_user_identified:
                by_photo.setdefault(detection.photo_id, []).append(detection)

        directory = self.night_dir(night_id)
        directory.mkdir(parents=True, exist_ok=True)
        written = []

        for photo in photos:
            items = sorted(by_photo.get(photo.photo_id, []), key=lambda d: d.patch_id)
            shapes = [to_persisted_shape(d, self.identifier_human, self.clock) for d in items]
            path = directory / f"{photo.photo_base}{IDENTIFIED_SUFFIX}"
            self._write_json(path, build_photo_document(photo.photo_base, shapes))
            written.append(path)

        summary_path = directory / NIGHT_SUMMARY_FILE
        self._write_json(summary_path, build_night_summary(night_id, detections, self.clock()))
        written.append(summary_path)

        logger.info(f"Saved night {night_id}: {len(written) - 1} photo documents")
        return written

    def _write_json(self, path: Path, data: Any) -> None:
        tmp_path = path.with_suffix(path.suffix + ".tmp")
        try:
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
        except (TypeError, ValueError):
            tmp_path.unlink(missing_ok=True)
            raise
        tmp_path.replace(path)

    # === Write-behind ===

    def schedule(self, night_id: str, snapshot: Callable[[], NightSnapshot]) -> None:
        """
        Schedule a debounced write of a night.

        ``snapshot`` is called when the timer fires, so the latest state is
        written even if more changes arrive during the delay.
        """
        with self._lock:
            previous = self._timers.pop(night_id, None)
            if previous is not None:
                previous.cancel()
            self._pending[night_id] = snapshot
            timer = threading.Timer(self.save_delay_ms / 1000.0, self._fire, args=(night_id,))
            timer.daemon = True
            self._timers[night_id] = timer
            timer.start()

    def _fire(self, night_id: str) -> None:
        with self._lock:
            self._timers.pop(night_id, None)
            snapshot = self._pending.pop(night_id, None)
        if snapshot is None:
            return
        try:
            detections, photos = snapshot()
            self.write_night(night_id, detections, photos)
        except (OSError, TypeError, ValueError):
            logger.exception(f"Failed to save night {night_id}")

    def flush(self, night_id: Optional[str] = None) -> None:
        """Write pending nights now instead of waiting for their timers."""
        with self._lock:
            night_ids = [night_id] if night_id else list(self._pending)
            for pending_id in night_ids:
                timer = self._timers.pop(pending_id, None)
                if timer is not None:
                    timer.cancel()
        for pending_id in night_ids:
            self._fire(pending_id)

    def has_pending(self, night_id: str) -> bool:
        with self._lock:
            return night_id in self._pending

    # === Reading ===

    def read_documents(self, night_id: str, suffix: str = IDENTIFIED_SUFFIX) -> Dict[str, Any]:
        """
        Read all documents with a suffix in a night directory.

        Returns:
            Mapping of photo base to parsed JSON. Unreadable files are
            logged and left out.
        """
        directory = self.night_dir(night_id)
        documents: Dict[str, Any] = {}
        if not directory.is_dir():
            return documents

        for path in sorted(directory.glob(f"*{suffix}")):
            photo_base = path.name[: -len(suffix)]
            try:
                with open(path, "r", encoding="utf-8") as f:
                    documents[photo_base] = json.load(f)
            except (OSError, json.JSONDecodeError) as e:
                logger.warning(f"Skipping unreadable document {path}: {e}")
        return documents

    def read_bot_documents(self, night_id: str) -> Dict[str, Any]:
        return self.read_documents(night_id, BOT_DETECTION_SUFFIX)
