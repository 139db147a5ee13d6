"""
Display label computation.

A detection shows exactly one line of text. It is derived from the error
flag, the morphospecies and the taxon, in that priority order.
"""

from typing import Optional

from mothbeam.core.config import ERROR_LABEL
from mothbeam.taxonomy.base import TaxonRecord, DetectionEntity
from mothbeam.taxonomy.morphospecies import looks_like_morphospecies_code
from mothbeam.taxonomy.ranks import build_genus_species_name, deepest_rank


def compute_label(
    taxon: Optional[TaxonRecord],
    explicit_label: Optional[str] = None,
    morphospecies: Optional[str] = None,
    is_error: bool = False,
) -> str:
    """
    Compute the display label.

    Priority:
        1. "ERROR" when the detection is marked as an error
        2. the morphospecies, verbatim (never prefixed with the genus)
        3. "{genus} {species}" when both are set
        4. the deepest non-empty rank value
        5. the explicit label, else ""
    """
    if is_error:
        return ERROR_LABEL

    if morphospecies:
        return morphospecies

    if taxon is not None:
        if taxon.genus and taxon.species and not looks_like_morphospecies_code(taxon.species):
            return build_genus_species_name(taxon.genus, taxon.species)

        found = deepest_rank(taxon)
        if found is not None:
            return found[1]

    return explicit_label or ""


def label_for_detection(detection: DetectionEntity) -> str:
    """Label for a detection as it currently stands."""
    return compute_label(
        detection.taxon,
        detection.label,
        detection.morphospecies,
        detection.is_error,
    )
