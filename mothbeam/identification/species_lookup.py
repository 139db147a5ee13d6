"""
Species Reference Lookup

The identification engine consumes species lists only through
``SpeciesLookup.search(list_id, query, limit)``. Ranking internals belong to
the lookup, not to the engine.

InMemorySpeciesLookup keeps registered lists in memory and answers queries
from an exact-name index with a substring fallback. Only accepted, ranked
records are returned.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Optional, List, Dict

from mothbeam.models.enums import TaxonomicRank, LATTICE_RANKS
from mothbeam.taxonomy.base import TaxonRecord
from mothbeam.taxonomy.ranks import dedupe_by_taxon_key

logger = logging.getLogger(__name__)


class SpeciesLookup(ABC):
    """Interface for species reference lists."""

    @abstractmethod
    def search(self, list_id: str, query: str, limit: int = 20) -> List[TaxonRecord]:
        """Ranked candidate taxa for a query within one list."""
        pass

    @abstractmethod
    def get_doi(self, list_id: str) -> Optional[str]:
        """DOI of a registered list, if it has one."""
        pass


@dataclass
class SpeciesList:
    """A registered reference checklist."""
    id: str
    name: str
    records: List[TaxonRecord] = field(default_factory=list)
    doi: Optional[str] = None


def _is_searchable(record: TaxonRecord) -> bool:
    status = (record.taxonomic_status or "").lower()
    return record.taxon_rank is not None and (not status or status == "accepted")


class InMemorySpeciesLookup(SpeciesLookup):
    """
    Species lookup over lists held in memory.

    Features:
    - Case-insensitive exact match on any rank value
    - Records asserting the matched name rank ahead of their descendants
    - Substring fallback when nothing matches exactly
    """

    def __init__(self):
        self._lists: Dict[str, SpeciesList] = {}
        self._exact_index: Dict[str, Dict[str, List[TaxonRecord]]] = {}

    def register(self, species_list: SpeciesList) -> None:
        """Register or replace a list and rebuild its index."""
        self._lists[species_list.id] = species_list
        self._exact_index[species_list.id] = self._build_index(species_list)
        logger.info(
            f"Registered species list {species_list.id} "
            f"({len(species_list.records)} records)"
        )

    def _build_index(self, species_list: SpeciesList) -> Dict[str, List[TaxonRecord]]:
        index: Dict[str, List[TaxonRecord]] = {}
        for record in species_list.records:
            if not _is_searchable(record):
                continue
            for value in record.rank_values().values():
                if value:
                    index.setdefault(value.lower(), []).append(record)
        return index

    def list_ids(self) -> List[str]:
        return list(self._lists)

    def get_doi(self, list_id: str) -> Optional[str]:
        species_list = self._lists.get(list_id)
        return species_list.doi if species_list else None

    def search(self, list_id: str, query: str, limit: int = 20) -> List[TaxonRecord]:
        """
        Search one list.

        Args:
            list_id: Registered list id
            query: Name at any rank (case-insensitive)
            limit: Maximum number of candidates

        Returns:
            Candidates, best first; empty when the list is unknown.
        """
        text = (query or "").strip().lower()
        species_list = self._lists.get(list_id)
        if not text or species_list is None:
            return []

        exact = self._exact_index.get(list_id, {}).get(text, [])
        exact = sorted(exact, key=lambda record: self._exact_rank_score(record, text))

        fallback: List[TaxonRecord] = []
        if len(exact) < limit:
            fallback = [
                record
                for record in species_list.records
                if _is_searchable(record) and self._contains(record, text)
            ]

        return dedupe_by_taxon_key(exact + fallback)[:limit]

    @staticmethod
    def _exact_rank_score(record: TaxonRecord, text: str) -> int:
        """Lower is better: the record naming the query at its own rank wins."""
        rank = record.taxon_rank
        own_value = record.get_rank(rank) if rank else None
        if own_value and own_value.lower() == text:
            return 0
        return 1 + (rank.depth if rank else len(TaxonomicRank))

    @staticmethod
    def _contains(record: TaxonRecord, text: str) -> bool:
        haystack = [record.get_rank(rank) or "" for rank in LATTICE_RANKS]
        haystack.append(record.scientific_name or "")
        haystack.append(record.vernacular_name or "")
        return any(text in value.lower() for value in haystack if value)


# Singleton instance
_species_lookup: Optional[InMemorySpeciesLookup] = None


def get_species_lookup() -> InMemorySpeciesLookup:
    """Get singleton species lookup instance."""
    global _species_lookup
    if _species_lookup is None:
        _species_lookup = InMemorySpeciesLookup()
    return _species_lookup
