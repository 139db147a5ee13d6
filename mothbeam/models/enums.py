"""
Enumerations for the identification system.

These enums provide type safety and clear documentation of valid values.
"""

from enum import Enum
from typing import Optional


class TaxonomicRank(str, Enum):
    """
    Taxonomic hierarchy levels, shallowest first.

    Sub-ranks (suborder, subfamily, tribe) are accepted from species lists
    but are stored in the field of the lattice rank they refine.
    """
    KINGDOM = "kingdom"
    PHYLUM = "phylum"
    CLASS = "class"
    ORDER = "order"
    SUBORDER = "suborder"
    FAMILY = "family"
    SUBFAMILY = "subfamily"
    TRIBE = "tribe"
    GENUS = "genus"
    SPECIES = "species"

    @property
    def depth(self) -> int:
        """Position in the rank ordering (kingdom = 0)."""
        return _RANK_ORDER.index(self)

    @property
    def lattice_rank(self) -> "TaxonomicRank":
        """The kingdom..species rank whose field stores this rank's value."""
        return _SUBRANK_TO_LATTICE.get(self, self)

    @property
    def is_higher(self) -> bool:
        """True for every rank above species."""
        return self is not TaxonomicRank.SPECIES

    @classmethod
    def parse(cls, value: Optional[str]) -> Optional["TaxonomicRank"]:
        """Case-insensitive lookup; unknown ranks map to None."""
        if value is None:
            return None
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return None


_RANK_ORDER = list(TaxonomicRank)

_SUBRANK_TO_LATTICE = {
    TaxonomicRank.SUBORDER: TaxonomicRank.ORDER,
    TaxonomicRank.SUBFAMILY: TaxonomicRank.FAMILY,
    TaxonomicRank.TRIBE: TaxonomicRank.GENUS,
}

# The seven ranks that own a field on TaxonRecord
LATTICE_RANKS = [
    TaxonomicRank.KINGDOM,
    TaxonomicRank.PHYLUM,
    TaxonomicRank.CLASS,
    TaxonomicRank.ORDER,
    TaxonomicRank.FAMILY,
    TaxonomicRank.GENUS,
    TaxonomicRank.SPECIES,
]


class DetectedBy(str, Enum):
    """Provenance of a detection's current identification."""
    AUTO = "auto"
    USER = "user"


class IdentificationKind(str, Enum):
    """Kinds of identification input accepted by the engine."""
    TAXON_PICK = "taxon_pick"
    MORPHOSPECIES = "morphospecies"
    MARK_ERROR = "mark_error"
    ACCEPT = "accept"
