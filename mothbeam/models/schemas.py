"""
Pydantic schemas for API request/response validation.

These schemas define the contract between the API and clients. They are
converted to and from the frozen dataclasses the identification core works
on; the core never sees a pydantic model.
"""

from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import Optional, List, Dict, Any

from mothbeam.models.enums import TaxonomicRank, DetectedBy, IdentificationKind
from mothbeam.taxonomy.base import TaxonRecord, DetectionEntity


# === Taxonomy Schemas ===

class TaxonSchema(BaseModel):
    """
    Taxonomic record as exchanged over the API.

    ``species`` may be an epithet ("domestica") or a binomial
    ("Musca domestica"); binomials are split during identification.
    """
    model_config = ConfigDict(populate_by_name=True)

    scientific_name: str = Field(default="", description="Display name at the assigned rank")
    taxon_rank: Optional[TaxonomicRank] = Field(default=None, description="Deepest rank asserted")
    kingdom: Optional[str] = None
    phylum: Optional[str] = None
    class_: Optional[str] = Field(default=None, alias="class")
    order: Optional[str] = None
    family: Optional[str] = None
    genus: Optional[str] = None
    species: Optional[str] = None

    taxon_id: Optional[str] = None
    accepted_taxon_key: Optional[str] = None
    accepted_scientific_name: Optional[str] = None
    vernacular_name: Optional[str] = None
    taxonomic_status: Optional[str] = None
    name: Optional[str] = None

    @field_validator("taxon_rank", mode="before")
    @classmethod
    def parse_rank(cls, v: Any) -> Optional[TaxonomicRank]:
        """Accept ranks in any case."""
        if v is None or v == "":
            return None
        rank = TaxonomicRank.parse(v)
        if rank is None:
            raise ValueError(f"Unknown taxonomic rank: {v}")
        return rank

    @field_validator(
        "kingdom", "phylum", "class_", "order", "family", "genus", "species",
        "taxon_id", "accepted_taxon_key",
        mode="before",
    )
    @classmethod
    def blank_to_none(cls, v: Any) -> Optional[str]:
        if v is None:
            return None
        text = str(v).strip()
        return text or None

    def to_record(self) -> TaxonRecord:
        return TaxonRecord(
            scientific_name=self.scientific_name or "",
            taxon_rank=self.taxon_rank,
            kingdom=self.kingdom,
            phylum=self.phylum,
            class_=self.class_,
            order=self.order,
            family=self.family,
            genus=self.genus,
            species=self.species,
            taxon_id=self.taxon_id,
            accepted_taxon_key=self.accepted_taxon_key,
            accepted_scientific_name=self.accepted_scientific_name,
            vernacular_name=self.vernacular_name,
            taxonomic_status=self.taxonomic_status,
            name=self.name,
        )

    @classmethod
    def from_record(cls, record: TaxonRecord) -> "TaxonSchema":
        return cls.model_validate(record.to_dict())


class DetectionSchema(BaseModel):
    """A detection and its current identification."""
    id: str
    patch_id: str
    photo_id: str
    night_id: str
    label: str = ""
    taxon: Optional[TaxonSchema] = None
    morphospecies: Optional[str] = None
    detected_by: DetectedBy = DetectedBy.AUTO
    identified_at: Optional[int] = Field(default=None, description="Epoch milliseconds")
    is_error: bool = False
    score: Optional[float] = None
    direction: Optional[float] = None
    shape_type: Optional[str] = None
    points: Optional[List[Any]] = None
    cluster_id: Optional[int] = None
    species_list_id: Optional[str] = None
    species_list_doi: Optional[str] = None

    @classmethod
    def from_entity(cls, detection: DetectionEntity) -> "DetectionSchema":
        return cls.model_validate(detection.to_dict())


# === Request Schemas ===

class IdentifyRequest(BaseModel):
    """
    Apply one identification input to a set of detections.

    Attributes:
        ids: Detection ids (patch file names)
        kind: taxon_pick, morphospecies, mark_error or accept
        taxon: Picked taxon (taxon_pick only)
        label: Optional label shown when the taxon yields none
        text: Morphospecies name (morphospecies only)
    """
    ids: List[str] = Field(..., min_length=1)
    kind: IdentificationKind
    taxon: Optional[TaxonSchema] = None
    label: Optional[str] = None
    text: Optional[str] = None
    species_list_id: Optional[str] = None
    species_list_doi: Optional[str] = None


class IdsRequest(BaseModel):
    """Request naming a set of detections."""
    ids: List[str] = Field(..., min_length=1)


class LoadDocumentsRequest(BaseModel):
    """Detector and user documents keyed by photo base name."""
    bot_documents: Dict[str, Any] = Field(default_factory=dict)
    user_documents: Dict[str, Any] = Field(default_factory=dict)


class SpeciesListRequest(BaseModel):
    """Register a species reference list."""
    id: str = Field(..., min_length=1)
    name: str = ""
    doi: Optional[str] = None
    records: List[TaxonSchema] = Field(default_factory=list)


class SpeciesSelectionRequest(BaseModel):
    """Select the species list used for a project's identifications."""
    project_id: str = Field(..., min_length=1)
    list_id: Optional[str] = None


# === Response Schemas ===

class IdentifyResponse(BaseModel):
    """Outcome of a batch identification."""
    updated: List[DetectionSchema]
    skipped: List[str]
    skip_reasons: Dict[str, str]


class LoadResponse(BaseModel):
    night_id: str
    photos: int
    detections: int
    identified: int


class ErrorResponse(BaseModel):
    """Standard error response."""
    error: str = Field(..., description="Error type")
    message: str = Field(..., description="Human-readable error message")
    details: Optional[dict] = Field(default=None, description="Additional error details")
