# Data models module
# API schemas live in mothbeam.models.schemas; they depend on the taxonomy
# dataclasses, which in turn depend on these enums.
from mothbeam.models.enums import TaxonomicRank, DetectedBy, IdentificationKind, LATTICE_RANKS

__all__ = [
    "TaxonomicRank",
    "DetectedBy",
    "IdentificationKind",
    "LATTICE_RANKS",
]
