# Taxonomy module
from mothbeam.taxonomy.base import TaxonRecord, DetectionEntity, PhotoContext
from mothbeam.taxonomy.labels import compute_label
from mothbeam.taxonomy.morphospecies import looks_like_morphospecies_code
from mothbeam.taxonomy.ranks import (
    merge_ranks,
    normalize_species,
    parse_binomial,
    has_higher_taxonomy_context,
    is_rank_deeper_or_equal,
)

__all__ = [
    "TaxonRecord",
    "DetectionEntity",
    "PhotoContext",
    "compute_label",
    "looks_like_morphospecies_code",
    "merge_ranks",
    "normalize_species",
    "parse_binomial",
    "has_higher_taxonomy_context",
    "is_rank_deeper_or_equal",
]
