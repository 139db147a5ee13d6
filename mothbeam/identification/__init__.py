"""
Identification Package

Turns annotator actions into detection state transitions.

Components:
- engine: the pure identification state machine and batch application
- accept: bulk acceptance grouped by order
- species_lookup: species reference list interface
"""

from mothbeam.identification.engine import (
    TaxonPick,
    MorphospeciesText,
    MarkError,
    Accept,
    IdentificationContext,
    IdentificationResult,
    BatchIdentificationResult,
    identify,
    identify_many,
    parse_identification_text,
)
from mothbeam.identification.species_lookup import (
    SpeciesLookup,
    SpeciesList,
    InMemorySpeciesLookup,
    get_species_lookup,
)
from mothbeam.identification.accept import accept_by_order

__all__ = [
    "TaxonPick",
    "MorphospeciesText",
    "MarkError",
    "Accept",
    "IdentificationContext",
    "IdentificationResult",
    "BatchIdentificationResult",
    "identify",
    "identify_many",
    "parse_identification_text",
    "SpeciesLookup",
    "SpeciesList",
    "InMemorySpeciesLookup",
    "get_species_lookup",
    "accept_by_order",
]
