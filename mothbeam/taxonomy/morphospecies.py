"""
Morphospecies detection and export sanitizers.

A morphospecies is an informal working name ("111", "sp1", "Forcipomyia1")
used when a specimen cannot be assigned a formal species. These helpers
recognise such codes so they never leak into formal Darwin Core fields.
"""

import re
from typing import Optional

from mothbeam.taxonomy.base import TaxonRecord

_DIGITS = re.compile(r"\d")
_LETTERS = re.compile(r"[a-zA-Z]")


def looks_like_morphospecies_code(value: Optional[str]) -> bool:
    """
    Check whether a value reads as a morphospecies code, not an epithet.

    True for pure numbers ("111"), short values containing a digit ("sp1",
    "A1") and values with at least as many digits as letters ("111a").
    Only used to sanitize output; identification input is never blocked.
    """
    if not value:
        return False
    text = value.strip()
    if not text:
        return False

    if text.isdigit():
        return True
    digit_count = len(_DIGITS.findall(text))
    if len(text) <= 4 and digit_count:
        return True
    letter_count = len(_LETTERS.findall(text))
    return digit_count > 0 and digit_count >= letter_count


def normalize_morpho_key(value: Optional[str]) -> str:
    """Grouping key for morphospecies counts."""
    return (value or "").strip().lower()


def species_for_export(taxon: Optional[TaxonRecord], morphospecies: Optional[str]) -> str:
    """
    Formal species epithet for the export ``species`` column.

    Morphospecies have their own column, so a detection carrying one
    exports a blank species. Code-like leftovers are blanked as well.
    """
    if morphospecies:
        return ""
    raw = (taxon.species if taxon else None) or ""
    if looks_like_morphospecies_code(raw):
        return ""
    return raw


def scientific_name_for_export(
    taxon: Optional[TaxonRecord],
    morphospecies: Optional[str],
    label: Optional[str] = None,
) -> str:
    """Scientific name safe for GBIF-style consumers (never a code)."""
    if morphospecies:
        if taxon is None:
            return ""
        return taxon.genus or taxon.family or taxon.order or ""

    candidate = (taxon.scientific_name if taxon else "") or ""
    if looks_like_morphospecies_code(candidate):
        return ""
    if candidate:
        return candidate

    if label and not looks_like_morphospecies_code(label):
        return label
    return ""
