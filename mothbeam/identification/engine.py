"""
Identification Engine

State-transition function for detections. Given the current detection and
one identification input, computes the next detection. Four inputs exist:

- TaxonPick: a taxon chosen from a species list (optionally with a label)
- MorphospeciesText: a free-text working name such as "111"
- MarkError: the patch is not a valid specimen
- Accept: confirm the current identification as-is

The engine is pure. It never raises and never mutates the detection it is
given: invalid input produces a skipped result carrying a readable reason
and the untouched original.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Optional, List, Dict, Callable, Iterable, Union

from mothbeam.core.config import ERROR_LABEL
from mothbeam.models.enums import TaxonomicRank, DetectedBy
from mothbeam.taxonomy.base import TaxonRecord, DetectionEntity
from mothbeam.taxonomy.labels import compute_label
from mothbeam.taxonomy.morphospecies import looks_like_morphospecies_code
from mothbeam.taxonomy.ranks import (
    CONTEXT_RANKS,
    deepest_rank,
    has_higher_taxonomy_context,
    has_taxon_fields,
    merge_ranks,
    normalize_species,
    parse_binomial,
    scientific_name_for_rank,
)

logger = logging.getLogger(__name__)

Clock = Callable[[], int]

SKIP_EMPTY_MORPHOSPECIES = "Empty morphospecies text"
SKIP_NO_CONTEXT = "Morphospecies requires higher taxonomy context (order, family, or genus)"
SKIP_NO_TAXON = "No valid taxon provided"
SKIP_NOT_FOUND = "Detection not found"
SKIP_UNKNOWN_INPUT = "Unknown input type"


def system_clock() -> int:
    """Wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


# === Inputs ===

@dataclass(frozen=True)
class TaxonPick:
    """A taxon picked from a species list."""
    taxon: TaxonRecord
    label: Optional[str] = None


@dataclass(frozen=True)
class MorphospeciesText:
    """Free-text morphospecies name typed by the annotator."""
    text: str


@dataclass(frozen=True)
class MarkError:
    """Mark the detection as not a valid specimen."""


@dataclass(frozen=True)
class Accept:
    """Confirm the current identification without changing taxonomy."""


IdentificationInput = Union[TaxonPick, MorphospeciesText, MarkError, Accept]


@dataclass(frozen=True)
class IdentificationContext:
    """Species list the identification came from, if any."""
    species_list_id: Optional[str] = None
    species_list_doi: Optional[str] = None


# === Results ===

@dataclass(frozen=True)
class IdentificationResult:
    """Outcome of identifying a single detection."""
    detection: DetectionEntity
    changed: bool
    skipped: bool
    skip_reason: Optional[str] = None


@dataclass
class BatchIdentificationResult:
    """Outcome of applying one input to many detections."""
    updated: Dict[str, DetectionEntity] = field(default_factory=dict)
    skipped: List[str] = field(default_factory=list)
    skip_reasons: Dict[str, str] = field(default_factory=dict)

    @property
    def updated_count(self) -> int:
        return len(self.updated)


def _skip(detection: DetectionEntity, reason: str) -> IdentificationResult:
    logger.debug(f"Skipped identification of {detection.id}: {reason}")
    return IdentificationResult(detection=detection, changed=False, skipped=True, skip_reason=reason)


def _stamp(
    detection: DetectionEntity,
    context: Optional[IdentificationContext],
    now: int,
    **changes,
) -> IdentificationResult:
    """Apply changes plus the provenance every successful transition carries."""
    context = context or IdentificationContext()
    next_detection = detection.update(
        detected_by=DetectedBy.USER,
        identified_at=now,
        species_list_id=context.species_list_id or detection.species_list_id,
        species_list_doi=context.species_list_doi or detection.species_list_doi,
        **changes,
    )
    return IdentificationResult(detection=next_detection, changed=True, skipped=False)


def _finalize_taxon(taxon: Optional[TaxonRecord], morphospecies: Optional[str]) -> Optional[TaxonRecord]:
    """Fill a missing rank or scientific name and recompute ``name``."""
    if taxon is None:
        return None
    if taxon.taxon_rank is None:
        found = deepest_rank(taxon)
        if found is not None:
            taxon = taxon.update(taxon_rank=found[0])
    if not taxon.scientific_name or looks_like_morphospecies_code(taxon.scientific_name):
        taxon = taxon.update(scientific_name=scientific_name_for_rank(taxon))
    return taxon.update(name=compute_label(taxon, None, morphospecies))


# === Transitions ===

def identify(
    detection: DetectionEntity,
    input: IdentificationInput,
    context: Optional[IdentificationContext] = None,
    clock: Optional[Clock] = None,
) -> IdentificationResult:
    """
    Identify a single detection.

    Args:
        detection: Current detection state
        input: One of TaxonPick, MorphospeciesText, MarkError, Accept
        context: Species list provenance to copy onto the detection
        clock: Timestamp source in epoch ms (defaults to wall clock)

    Returns:
        IdentificationResult with the next detection, or the original
        detection and a skip reason when the input is rejected.
    """
    now = (clock or system_clock)()

    if isinstance(input, MarkError):
        return _identify_error(detection, context, now)
    if isinstance(input, Accept):
        return _stamp(detection, context, now)
    if isinstance(input, MorphospeciesText):
        return _identify_morphospecies(detection, input.text, context, now)
    if isinstance(input, TaxonPick):
        return _identify_taxon(detection, input.taxon, input.label, context, now)
    return _skip(detection, SKIP_UNKNOWN_INPUT)


def _identify_error(
    detection: DetectionEntity,
    context: Optional[IdentificationContext],
    now: int,
) -> IdentificationResult:
    return _stamp(
        detection,
        context,
        now,
        label=ERROR_LABEL,
        taxon=None,
        morphospecies=None,
        is_error=True,
    )


def _identify_morphospecies(
    detection: DetectionEntity,
    text: Optional[str],
    context: Optional[IdentificationContext],
    now: int,
) -> IdentificationResult:
    trimmed = (text or "").strip()
    if not trimmed:
        return _skip(detection, SKIP_EMPTY_MORPHOSPECIES)

    existing = detection.taxon
    if not has_higher_taxonomy_context(existing):
        return _skip(detection, SKIP_NO_CONTEXT)

    taxon = existing
    if existing.species:
        # A morphospecies replaces any formal species; fall back to the
        # deepest remaining rank.
        taxon = existing.update(species=None)
        found = deepest_rank(taxon, skip_codes=False)
        rank = found[0] if found else None
        taxon = taxon.update(
            taxon_rank=rank,
            scientific_name=found[1] if found else "",
        )

    return _stamp(
        detection,
        context,
        now,
        label=trimmed,
        taxon=_finalize_taxon(taxon, trimmed),
        morphospecies=trimmed,
        is_error=False,
    )


def _identify_taxon(
    detection: DetectionEntity,
    picked: Optional[TaxonRecord],
    label: Optional[str],
    context: Optional[IdentificationContext],
    now: int,
) -> IdentificationResult:
    if not has_taxon_fields(picked):
        return _skip(detection, SKIP_NO_TAXON)

    existing = detection.taxon or TaxonRecord()
    morphospecies = detection.morphospecies
    new_rank = picked.taxon_rank
    is_higher_rank = new_rank is not None and new_rank.is_higher

    has_genus = bool(picked.genus)
    has_family = bool(picked.family)
    has_order = bool(picked.order)
    has_species = bool(picked.species)

    is_full_species = has_genus and has_species and new_rank == TaxonomicRank.SPECIES

    old_value = existing.get_rank(new_rank) if new_rank else None
    new_value = picked.get_rank(new_rank) if new_rank else None
    is_rank_changed = (
        not is_full_species
        and old_value is not None
        and new_value is not None
        and old_value != new_value
    )

    if is_full_species:
        # A full species always supersedes a morphospecies
        taxon = normalize_species(picked)
        next_morpho = None

    elif is_rank_changed:
        taxon = merge_ranks(existing, picked)
        if new_rank == TaxonomicRank.SPECIES:
            taxon = normalize_species(taxon)
        next_morpho = None

    elif is_higher_rank and morphospecies:
        taxon = merge_ranks(existing, picked)
        if new_rank == TaxonomicRank.GENUS:
            taxon = taxon.update(
                species=None,
                scientific_name=taxon.scientific_name or picked.genus or "",
            )
        else:
            taxon = taxon.update(species=morphospecies)
        next_morpho = morphospecies

    elif morphospecies and (has_genus or has_family or has_order):
        taxon = merge_ranks(existing, picked)
        context_rank = next(rank for rank in reversed(CONTEXT_RANKS) if picked.get_rank(rank))
        taxon = taxon.update(species=morphospecies, taxon_rank=context_rank)
        next_morpho = morphospecies

    elif new_rank == TaxonomicRank.SPECIES and has_species and not (has_genus or has_family or has_order):
        to_merge = picked
        parsed = parse_binomial(picked.species)
        if parsed is not None:
            genus, epithet = parsed
            to_merge = picked.update(
                genus=genus,
                species=epithet,
                scientific_name=picked.scientific_name or f"{genus} {epithet}",
            )
        if has_higher_taxonomy_context(existing):
            taxon = normalize_species(merge_ranks(existing, to_merge))
        else:
            taxon = normalize_species(to_merge)
        next_morpho = None

    else:
        taxon = normalize_species(picked) if new_rank == TaxonomicRank.SPECIES else picked
        next_morpho = None

    taxon = _finalize_taxon(taxon, next_morpho)
    return _stamp(
        detection,
        context,
        now,
        label=compute_label(taxon, label, next_morpho),
        taxon=taxon,
        morphospecies=next_morpho,
        is_error=False,
    )


# === Batch ===

def identify_many(
    detections: Dict[str, DetectionEntity],
    ids: Iterable[str],
    input: IdentificationInput,
    context: Optional[IdentificationContext] = None,
    clock: Optional[Clock] = None,
) -> BatchIdentificationResult:
    """
    Apply one input to many detections independently.

    A missing id or a per-detection skip never aborts the batch. The clock
    is read once so every detection in the batch gets the same timestamp
    and the result does not depend on processing order.
    """
    now = (clock or system_clock)()
    result = BatchIdentificationResult()

    for detection_id in dict.fromkeys(ids):
        existing = detections.get(detection_id)
        if existing is None:
            result.skipped.append(detection_id)
            result.skip_reasons[detection_id] = SKIP_NOT_FOUND
            continue

        outcome = identify(existing, input, context, clock=lambda: now)
        if outcome.skipped:
            result.skipped.append(detection_id)
            if outcome.skip_reason:
                result.skip_reasons[detection_id] = outcome.skip_reason
        elif outcome.changed:
            result.updated[detection_id] = outcome.detection

    logger.info(
        f"Batch identification ({type(input).__name__}): "
        f"{result.updated_count} updated, {len(result.skipped)} skipped"
    )
    return result


def parse_identification_text(text: Optional[str], taxon: Optional[TaxonRecord] = None) -> IdentificationInput:
    """
    Map the annotator's free-text entry to an input.

    "ERROR" (any case) marks an error, a resolved taxon becomes a pick
    labelled with the text, anything else is a morphospecies name.
    """
    value = (text or "").strip()
    if value.upper() == ERROR_LABEL:
        return MarkError()
    if taxon is not None:
        return TaxonPick(taxon=taxon, label=value or None)
    return MorphospeciesText(text=value)
