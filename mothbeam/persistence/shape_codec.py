"""
Shape Codec

Bidirectional mapping between DetectionEntity and the flat JSON "shape"
records stored in per-photo ``_identified.json`` documents.

Shapes come from several writer versions and from the detector itself, so
every field is independently optional and tolerant of bad types. Reading a
shape never raises: unusable values are dropped and logged.

Document layout:
    {"version": "1", "photoBase": "<photo id without .jpg>", "shapes": [...]}
"""

import logging
from typing import Optional, List, Dict, Any, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from mothbeam.core.config import ERROR_LABEL, PATCHES_PREFIX, PHOTO_DOCUMENT_VERSION
from mothbeam.models.enums import TaxonomicRank, DetectedBy, LATTICE_RANKS
from mothbeam.taxonomy.base import TaxonRecord, DetectionEntity, PhotoContext
from mothbeam.taxonomy.labels import compute_label
from mothbeam.taxonomy.morphospecies import looks_like_morphospecies_code
from mothbeam.taxonomy.normalize import normalize_taxon_value, safe_string, safe_number, safe_int
from mothbeam.taxonomy.ranks import determine_scientific_name_and_rank

logger = logging.getLogger(__name__)

RANK_FIELDS = ("kingdom", "phylum", "class_", "order", "family", "genus", "species")


class PersistedShape(BaseModel):
    """
    One persisted detection record.

    Field aliases are the on-disk keys. Unknown keys are kept so documents
    written by newer versions survive a load/save cycle.
    """
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    # Geometry and detector output
    patch_path: Optional[str] = None
    label: Optional[str] = None
    score: Optional[float] = None
    direction: Optional[float] = None
    shape_type: Optional[str] = None
    points: Optional[List[Any]] = None
    cluster_id: Optional[int] = Field(default=None, alias="clusterID")

    # Taxonomy
    kingdom: Optional[str] = None
    phylum: Optional[str] = None
    class_: Optional[str] = Field(default=None, alias="class")
    order: Optional[str] = None
    family: Optional[str] = None
    genus: Optional[str] = None
    species: Optional[str] = None
    scientific_name: Optional[str] = Field(default=None, alias="scientificName")
    taxon_rank: Optional[str] = Field(default=None, alias="taxonRank")

    # Species list metadata
    taxon_id: Optional[str] = Field(default=None, alias="taxonID")
    accepted_taxon_key: Optional[str] = Field(default=None, alias="acceptedTaxonKey")
    accepted_scientific_name: Optional[str] = Field(default=None, alias="acceptedScientificName")
    vernacular_name: Optional[str] = Field(default=None, alias="vernacularName")
    taxonomic_status: Optional[str] = Field(default=None, alias="taxonomicStatus")
    species_list: Optional[str] = None

    # Human identification
    is_error: Optional[bool] = None
    identifier_human: Optional[str] = None
    timestamp_id_human: Optional[int] = Field(default=None, alias="timestamp_ID_human")
    human_identified_at: Optional[int] = None  # older writers
    morphospecies: Optional[str] = None

    @field_validator("kingdom", "phylum", "class_", "order", "family", "genus", "species", mode="before")
    @classmethod
    def clean_rank_value(cls, v: Any) -> Optional[str]:
        """Treat NA-like placeholders as missing."""
        return normalize_taxon_value(v)

    @field_validator(
        "patch_path", "label", "shape_type", "scientific_name", "taxon_rank",
        "taxon_id", "accepted_taxon_key", "accepted_scientific_name",
        "vernacular_name", "taxonomic_status", "species_list",
        "identifier_human", "morphospecies",
        mode="before",
    )
    @classmethod
    def clean_string(cls, v: Any) -> Optional[str]:
        return safe_string(v)

    @field_validator("score", "direction", mode="before")
    @classmethod
    def clean_number(cls, v: Any) -> Optional[float]:
        return safe_number(v)

    @field_validator("cluster_id", "timestamp_id_human", "human_identified_at", mode="before")
    @classmethod
    def clean_integer(cls, v: Any) -> Optional[int]:
        return safe_int(v)

    @field_validator("is_error", mode="before")
    @classmethod
    def clean_flag(cls, v: Any) -> Optional[bool]:
        """Only a literal true marks an error."""
        return True if v is True else None

    @field_validator("points", mode="before")
    @classmethod
    def clean_points(cls, v: Any) -> Optional[List[Any]]:
        return v if isinstance(v, list) else None

    @property
    def patch_file_name(self) -> Optional[str]:
        if not self.patch_path:
            return None
        name = self.patch_path
        if name.startswith(PATCHES_PREFIX):
            name = name[len(PATCHES_PREFIX):]
        return name or None

    @property
    def marks_error(self) -> bool:
        return self.is_error is True or (self.label or "").upper() == ERROR_LABEL


def parse_shape(raw: Any) -> Optional[PersistedShape]:
    """Validate a raw JSON object as a shape; None when it is not one."""
    if not isinstance(raw, dict):
        return None
    try:
        return PersistedShape.model_validate(raw)
    except ValidationError as e:
        logger.warning(f"Unreadable shape {raw.get('patch_path')!r}: {e}")
        return None


# === Detection -> Shape ===

def to_persisted_shape(
    detection: DetectionEntity,
    identifier_human: Optional[str] = None,
    clock=None,
) -> Dict[str, Any]:
    """
    Flatten a detection into a persisted shape.

    Taxonomy and species-list metadata are omitted for error detections.
    ``morphospecies`` and ``species_list`` are omitted (not blanked) when
    absent so that "never set" stays distinguishable on reload.
    """
    taxon = None if detection.is_error else detection.taxon
    identified_at = detection.identified_at
    if identified_at is None and clock is not None:
        identified_at = clock()

    shape = PersistedShape(
        patch_path=f"{PATCHES_PREFIX}{detection.patch_id}",
        label=detection.label,
        score=detection.score,
        direction=detection.direction,
        shape_type=detection.shape_type,
        points=detection.points,
        cluster_id=detection.cluster_id,
        is_error=True if detection.is_error else None,
        identifier_human=identifier_human if detection.is_user_identified else None,
        timestamp_id_human=identified_at,
        morphospecies=detection.morphospecies or None,
        species_list=None if detection.is_error else detection.species_list_doi,
    )

    if taxon is not None:
        shape = shape.model_copy(update={
            "kingdom": taxon.kingdom,
            "phylum": taxon.phylum,
            "class_": taxon.class_,
            "order": taxon.order,
            "family": taxon.family,
            "genus": taxon.genus,
            "species": taxon.species,
            "scientific_name": taxon.scientific_name or None,
            "taxon_rank": taxon.taxon_rank.value if taxon.taxon_rank else None,
            "taxon_id": taxon.taxon_id,
            "accepted_taxon_key": taxon.accepted_taxon_key,
            "accepted_scientific_name": taxon.accepted_scientific_name,
            "vernacular_name": taxon.vernacular_name,
            "taxonomic_status": taxon.taxonomic_status,
        })

    return shape.model_dump(by_alias=True, exclude_none=True)


# === Shape -> Detection ===

def _taxon_and_morphospecies(shape: PersistedShape) -> Tuple[Optional[TaxonRecord], Optional[str]]:
    """
    Rebuild the taxon and morphospecies from a shape's flat fields.

    A species value that reads as a code is a morphospecies stored in the
    species slot by older writers, not a formal epithet.
    """
    if shape.marks_error:
        return None, None

    values = {rank: getattr(shape, attr) for rank, attr in zip(LATTICE_RANKS, RANK_FIELDS)}
    morphospecies = shape.morphospecies
    raw_species = values[TaxonomicRank.SPECIES]

    if raw_species:
        if morphospecies:
            if raw_species != morphospecies:
                values[TaxonomicRank.SPECIES] = None
        elif looks_like_morphospecies_code(raw_species):
            morphospecies = raw_species
            values[TaxonomicRank.SPECIES] = None

    if not any(values.values()):
        return None, morphospecies

    derived_name, derived_rank = determine_scientific_name_and_rank(values)
    scientific_name = shape.scientific_name
    if not scientific_name or looks_like_morphospecies_code(scientific_name):
        scientific_name = derived_name
    rank = TaxonomicRank.parse(shape.taxon_rank) or derived_rank

    taxon = TaxonRecord(
        scientific_name=scientific_name,
        taxon_rank=rank,
        taxon_id=shape.taxon_id,
        accepted_taxon_key=shape.accepted_taxon_key,
        accepted_scientific_name=shape.accepted_scientific_name,
        vernacular_name=shape.vernacular_name,
        taxonomic_status=shape.taxonomic_status,
    ).with_ranks(values)
    return taxon.update(name=compute_label(taxon, None, morphospecies)), morphospecies


def from_persisted_shape(
    shape: Any,
    photo: PhotoContext,
    existing: Optional[DetectionEntity] = None,
) -> Optional[DetectionEntity]:
    """
    Rebuild a user-identified detection from a persisted shape.

    Args:
        shape: Raw JSON object or PersistedShape
        photo: Photo the shape belongs to
        existing: Previously ingested detection for the same patch; its
            values fill any field the shape does not carry

    Returns:
        DetectionEntity with ``detected_by='user'``, or None when the shape
        has no usable patch path.
    """
    if not isinstance(shape, PersistedShape):
        shape = parse_shape(shape)
    if shape is None or not shape.patch_file_name:
        return None

    is_error = shape.marks_error
    taxon, morphospecies = _taxon_and_morphospecies(shape)
    if taxon is None and not is_error and existing is not None and not morphospecies:
        taxon = existing.taxon

    identified_at = shape.timestamp_id_human
    if identified_at is None:
        identified_at = shape.human_identified_at
    if identified_at is None and existing is not None:
        identified_at = existing.identified_at

    fallback_label = shape.label or (existing.label if existing else None)
    patch_id = shape.patch_file_name

    return DetectionEntity(
        id=patch_id,
        patch_id=patch_id,
        photo_id=existing.photo_id if existing else photo.photo_id,
        night_id=photo.night_id,
        label=compute_label(taxon, fallback_label, morphospecies, is_error),
        taxon=taxon,
        morphospecies=morphospecies,
        detected_by=DetectedBy.USER,
        identified_at=identified_at,
        is_error=is_error,
        score=_first(shape.score, existing, "score"),
        direction=_first(shape.direction, existing, "direction"),
        shape_type=_first(shape.shape_type, existing, "shape_type"),
        points=_first(shape.points, existing, "points"),
        cluster_id=_first(shape.cluster_id, existing, "cluster_id"),
        species_list_id=existing.species_list_id if existing else None,
        species_list_doi=shape.species_list or (existing.species_list_doi if existing else None),
    )


def _first(value: Any, existing: Optional[DetectionEntity], attr: str) -> Any:
    if value is not None:
        return value
    return getattr(existing, attr) if existing is not None else None


def from_bot_shape(
    shape: Any,
    photo: PhotoContext,
    index: int = 0,
    existing: Optional[DetectionEntity] = None,
) -> Optional[DetectionEntity]:
    """
    Build an automatic detection from detector output.

    Also used to reset a detection to its machine state: every user field
    (morphospecies, error flag, timestamp, species list) is cleared.
    Shapes without a patch path get an id derived from the photo and index.
    """
    if not isinstance(shape, PersistedShape):
        shape = parse_shape(shape)
    if shape is None:
        return None

    if existing is not None:
        patch_id = existing.patch_id
    else:
        patch_id = shape.patch_file_name or f"{photo.photo_base}_{index}.jpg"

    # Detector labels are never error marks or user morphospecies
    machine = shape.model_copy(update={"is_error": None, "morphospecies": None})
    taxon, _ = _taxon_and_morphospecies(machine)
    label = taxon.scientific_name if taxon and taxon.scientific_name else (shape.label or "")

    return DetectionEntity(
        id=existing.id if existing else patch_id,
        patch_id=patch_id,
        photo_id=existing.photo_id if existing else photo.photo_id,
        night_id=existing.night_id if existing else photo.night_id,
        label=label,
        taxon=taxon,
        detected_by=DetectedBy.AUTO,
        score=shape.score,
        direction=shape.direction,
        shape_type=shape.shape_type,
        points=shape.points if shape.points is not None else (existing.points if existing else None),
        cluster_id=shape.cluster_id,
    )


# === Photo documents ===

def build_photo_document(photo_base: str, shapes: List[Dict[str, Any]]) -> Dict[str, Any]:
    return {"version": PHOTO_DOCUMENT_VERSION, "photoBase": photo_base, "shapes": shapes}


def parse_photo_document(data: Any) -> Optional[Tuple[Optional[str], List[PersistedShape]]]:
    """
    Read a photo document (or a bare detector file with only ``shapes``).

    Returns ``(photo_base, shapes)`` or None when the document has no shape
    list. Individual unreadable shapes are skipped.
    """
    if not isinstance(data, dict) or not isinstance(data.get("shapes"), list):
        return None
    shapes = [shape for shape in (parse_shape(raw) for raw in data["shapes"]) if shape is not None]
    return safe_string(data.get("photoBase")), shapes
