"""
Rank lattice utilities.

Pure functions over TaxonRecord: merging two records along the rank
ordering, species-epithet normalization, binomial parsing and rank
queries. Nothing here mutates its arguments.

Rank ordering:
    kingdom < phylum < class < order (< suborder) < family
    (< subfamily < tribe) < genus < species
"""

from typing import Optional, Tuple, List, Dict, Iterable

from mothbeam.models.enums import TaxonomicRank, LATTICE_RANKS
from mothbeam.taxonomy.base import TaxonRecord, METADATA_ATTRS
from mothbeam.taxonomy.morphospecies import looks_like_morphospecies_code

# Ranks whose presence lets a morphospecies be grouped and exported
CONTEXT_RANKS = (TaxonomicRank.ORDER, TaxonomicRank.FAMILY, TaxonomicRank.GENUS)


def is_rank_deeper_or_equal(a: TaxonomicRank, b: TaxonomicRank) -> bool:
    """True when rank ``a`` sits at or below rank ``b``."""
    return a.depth >= b.depth


def has_taxon_fields(taxon: Optional[TaxonRecord]) -> bool:
    """True when at least one lattice rank carries a value."""
    if taxon is None:
        return False
    return any(value for value in taxon.rank_values().values())


def has_higher_taxonomy_context(taxon: Optional[TaxonRecord]) -> bool:
    """True iff order, family or genus is present."""
    if taxon is None:
        return False
    return any(taxon.get_rank(rank) for rank in CONTEXT_RANKS)


def parse_binomial(text: Optional[str]) -> Optional[Tuple[str, str]]:
    """
    Split a scientific name into ``(genus, epithet)``.

    Returns None for single tokens and for tokens that are not words
    ("Lispe 111", "Genus sp."). Extra tokens (authors, subspecies) are
    ignored.
    """
    if not text:
        return None
    parts = text.split()
    if len(parts) < 2:
        return None
    genus, epithet = parts[0], parts[1]
    if not _is_name_token(genus) or not _is_name_token(epithet):
        return None
    return genus, epithet


def _is_name_token(token: str) -> bool:
    return token.replace("-", "").isalpha()


def normalize_species(taxon: TaxonRecord) -> TaxonRecord:
    """
    Reduce a species-rank record's ``species`` to the bare epithet.

    "Musca domestica" becomes genus "Musca" (when genus is missing or
    agrees) and species "domestica". Records at other ranks, or already
    holding an epithet, are returned unchanged.
    """
    if not taxon.species or taxon.taxon_rank != TaxonomicRank.SPECIES:
        return taxon

    parsed = parse_binomial(taxon.species)
    if parsed is None:
        return taxon

    genus, epithet = parsed
    update_genus = not taxon.genus or taxon.genus == genus
    return taxon.update(
        genus=genus if update_genus else taxon.genus,
        species=epithet,
        scientific_name=taxon.scientific_name or f"{genus} {epithet}",
    )


def merge_ranks(existing: Optional[TaxonRecord], incoming: TaxonRecord) -> TaxonRecord:
    """
    Merge ``incoming`` into ``existing`` along the rank lattice.

    Each rank takes the incoming value when present, else the existing one.
    When the value at the asserted rank (``incoming.taxon_rank``) actually
    changes, every deeper rank is taken from ``incoming`` alone, so a
    re-assigned order drops the genus/species recorded under the old order.
    For assertions above species the existing species slot wins, which
    keeps a working species under a refined context.
    """
    if existing is None:
        return incoming

    asserted = incoming.taxon_rank
    existing_values = existing.rank_values()
    incoming_values = incoming.rank_values()

    if asserted is None:
        merged = {
            rank: incoming_values[rank] or existing_values[rank]
            for rank in LATTICE_RANKS
        }
        return _with_metadata(existing.with_ranks(merged), existing, incoming).update(
            scientific_name=incoming.scientific_name or existing.scientific_name,
            taxon_rank=existing.taxon_rank,
        )

    lattice = asserted.lattice_rank
    old_value = existing_values[lattice]
    new_value = incoming_values[lattice]
    cascade = old_value is not None and new_value is not None and old_value != new_value

    merged: Dict[TaxonomicRank, Optional[str]] = {}
    for rank in LATTICE_RANKS:
        if rank.depth <= lattice.depth:
            merged[rank] = incoming_values[rank] or existing_values[rank]
        elif cascade:
            merged[rank] = incoming_values[rank]
        elif rank == TaxonomicRank.SPECIES:
            merged[rank] = existing_values[rank] or incoming_values[rank]
        else:
            merged[rank] = incoming_values[rank] or existing_values[rank]

    result = existing.with_ranks(merged).update(
        scientific_name=incoming.scientific_name,
        taxon_rank=asserted,
    )
    return _with_metadata(result, existing, incoming)


def _with_metadata(merged: TaxonRecord, existing: TaxonRecord, incoming: TaxonRecord) -> TaxonRecord:
    changes = {
        attr: getattr(incoming, attr) or getattr(existing, attr)
        for attr in METADATA_ATTRS
    }
    return merged.update(**changes)


def deepest_rank(
    taxon: Optional[TaxonRecord],
    skip_codes: bool = True,
) -> Optional[Tuple[TaxonomicRank, str]]:
    """
    Deepest populated lattice rank and its value.

    A code-like species ("111") is skipped so it never becomes a display
    name on its own.
    """
    if taxon is None:
        return None
    for rank in reversed(LATTICE_RANKS):
        value = taxon.get_rank(rank)
        if not value:
            continue
        if skip_codes and rank == TaxonomicRank.SPECIES and looks_like_morphospecies_code(value):
            continue
        return rank, value
    return None


def build_genus_species_name(genus: Optional[str], species: Optional[str]) -> str:
    """Render "Genus epithet" without repeating a genus already in species."""
    genus = (genus or "").strip()
    species = (species or "").strip()
    if not genus:
        return species
    if not species:
        return genus
    if species.lower() == genus.lower() or species.lower().startswith(genus.lower() + " "):
        return species
    return f"{genus} {species}"


def determine_scientific_name_and_rank(
    values: Dict[TaxonomicRank, Optional[str]],
) -> Tuple[str, Optional[TaxonomicRank]]:
    """
    Scientific name and rank from the first non-empty rank, deepest first.

    A species-level name is rendered as the binomial when genus is known.
    Code-like species values do not count as a species assignment.
    """
    species = values.get(TaxonomicRank.SPECIES)
    genus = values.get(TaxonomicRank.GENUS)
    if species and not looks_like_morphospecies_code(species):
        return build_genus_species_name(genus, species), TaxonomicRank.SPECIES

    for rank in reversed(LATTICE_RANKS[:-1]):
        value = values.get(rank)
        if value:
            return value, rank
    return "", None


def scientific_name_for_rank(taxon: TaxonRecord) -> str:
    """
    Scientific name at the record's asserted rank.

    Falls back to the deepest assigned rank when the asserted rank has no
    value, and never returns a morphospecies code.
    """
    rank = taxon.taxon_rank
    if rank == TaxonomicRank.SPECIES:
        if taxon.species and not looks_like_morphospecies_code(taxon.species):
            return build_genus_species_name(taxon.genus, taxon.species)
    elif rank is not None:
        value = taxon.get_rank(rank)
        if value:
            return value

    values = taxon.rank_values()
    return determine_scientific_name_and_rank(values)[0]


def detect_missing_ranks(taxon: Optional[TaxonRecord]) -> List[TaxonomicRank]:
    """
    Lattice ranks left empty above the deepest assigned rank.

    The fixed kingdom/phylum/class are not reported; they are supplied
    at export time.
    """
    found = deepest_rank(taxon, skip_codes=False)
    if found is None:
        return []
    deepest, _ = found
    return [
        rank
        for rank in LATTICE_RANKS
        if TaxonomicRank.ORDER.depth <= rank.depth < deepest.depth and not taxon.get_rank(rank)
    ]


def stable_taxon_key(taxon: Optional[TaxonRecord]) -> str:
    """Case-insensitive key identifying a taxon by its deepest assignment."""
    if taxon is None:
        return ""
    if taxon.taxon_id:
        return f"id:{taxon.taxon_id}"
    name, rank = determine_scientific_name_and_rank(taxon.rank_values())
    if rank is None:
        return f"name:{(taxon.scientific_name or '').strip().lower()}"
    return f"{rank.value}:{name.strip().lower()}"


def dedupe_by_taxon_key(records: Iterable[TaxonRecord]) -> List[TaxonRecord]:
    """Drop repeated taxa, keeping first occurrences in order."""
    seen = set()
    unique = []
    for record in records:
        key = stable_taxon_key(record)
        if key in seen:
            continue
        seen.add(key)
        unique.append(record)
    return unique
