"""
Core data structures for detections and their taxonomic assignments.

Provides:
- TaxonRecord: Immutable snapshot of a formal taxonomic assignment
- DetectionEntity: One detected image patch and its identification state
- PhotoContext: Identity of the photo a persisted shape belongs to

Every structure here is a frozen dataclass. Operations that "change" a
record return a new instance through ``dataclasses.replace``.
"""

from dataclasses import dataclass, field, replace, fields
from typing import Optional, List, Dict, Any

from mothbeam.models.enums import TaxonomicRank, DetectedBy, LATTICE_RANKS


# Attribute names for each lattice rank ("class" is a keyword)
RANK_ATTRS: Dict[TaxonomicRank, str] = {
    TaxonomicRank.KINGDOM: "kingdom",
    TaxonomicRank.PHYLUM: "phylum",
    TaxonomicRank.CLASS: "class_",
    TaxonomicRank.ORDER: "order",
    TaxonomicRank.FAMILY: "family",
    TaxonomicRank.GENUS: "genus",
    TaxonomicRank.SPECIES: "species",
}

METADATA_ATTRS = (
    "taxon_id",
    "accepted_taxon_key",
    "accepted_scientific_name",
    "vernacular_name",
    "taxonomic_status",
)


@dataclass(frozen=True)
class TaxonRecord:
    """
    Structured taxonomic snapshot: rank, one value per lattice rank, metadata.

    ``species`` holds the epithet only ("domestica", not "Musca domestica").
    ``name`` is the derived display name and is recomputed by the engine.
    """
    scientific_name: str = ""
    taxon_rank: Optional[TaxonomicRank] = None

    kingdom: Optional[str] = None
    phylum: Optional[str] = None
    class_: Optional[str] = None
    order: Optional[str] = None
    family: Optional[str] = None
    genus: Optional[str] = None
    species: Optional[str] = None

    # Opaque metadata from the species list, passed through unchanged
    taxon_id: Optional[str] = None
    accepted_taxon_key: Optional[str] = None
    accepted_scientific_name: Optional[str] = None
    vernacular_name: Optional[str] = None
    taxonomic_status: Optional[str] = None

    name: Optional[str] = None

    def get_rank(self, rank: TaxonomicRank) -> Optional[str]:
        """Value stored for a rank; sub-ranks read their lattice field."""
        return getattr(self, RANK_ATTRS[rank.lattice_rank])

    def rank_values(self) -> Dict[TaxonomicRank, Optional[str]]:
        """All lattice values, shallowest first."""
        return {rank: self.get_rank(rank) for rank in LATTICE_RANKS}

    def with_ranks(self, values: Dict[TaxonomicRank, Optional[str]]) -> "TaxonRecord":
        """Copy with the given lattice values replaced."""
        changes = {RANK_ATTRS[rank.lattice_rank]: value for rank, value in values.items()}
        return replace(self, **changes)

    def update(self, **changes: Any) -> "TaxonRecord":
        return replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        data = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if isinstance(value, TaxonomicRank):
                value = value.value
            data[f.name.rstrip("_")] = value
        return data


@dataclass(frozen=True)
class DetectionEntity:
    """
    A single labeled or unlabeled image patch.

    Identity fields (id, patch_id, photo_id, night_id) never change after
    ingestion. When ``is_error`` is set every taxonomic field is void,
    whatever ``taxon`` still holds.
    """
    id: str
    patch_id: str
    photo_id: str
    night_id: str

    label: str = ""
    taxon: Optional[TaxonRecord] = None
    morphospecies: Optional[str] = None

    detected_by: DetectedBy = DetectedBy.AUTO
    identified_at: Optional[int] = None  # epoch milliseconds
    is_error: bool = False

    # Detector geometry and confidence, opaque to identification
    score: Optional[float] = None
    direction: Optional[float] = None
    shape_type: Optional[str] = None
    points: Optional[List[List[float]]] = field(default=None, hash=False, compare=True)
    cluster_id: Optional[int] = None

    species_list_id: Optional[str] = None
    species_list_doi: Optional[str] = None

    def update(self, **changes: Any) -> "DetectionEntity":
        return replace(self, **changes)

    @property
    def is_user_identified(self) -> bool:
        return self.detected_by == DetectedBy.USER

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "patch_id": self.patch_id,
            "photo_id": self.photo_id,
            "night_id": self.night_id,
            "label": self.label,
            "taxon": self.taxon.to_dict() if self.taxon else None,
            "morphospecies": self.morphospecies,
            "detected_by": self.detected_by.value,
            "identified_at": self.identified_at,
            "is_error": self.is_error,
            "score": self.score,
            "direction": self.direction,
            "shape_type": self.shape_type,
            "points": self.points,
            "cluster_id": self.cluster_id,
            "species_list_id": self.species_list_id,
            "species_list_doi": self.species_list_doi,
        }


@dataclass(frozen=True)
class PhotoContext:
    """Identity of the photo that owns a set of persisted shapes."""
    photo_id: str  # e.g. "2025_06_23__21_15_03_HDR0.jpg"
    night_id: str  # hierarchical path, e.g. "project/site/deployment/2025-06-23"

    @property
    def photo_base(self) -> str:
        """Photo id without its .jpg extension."""
        if self.photo_id.lower().endswith(".jpg"):
            return self.photo_id[: -len(".jpg")]
        return self.photo_id
