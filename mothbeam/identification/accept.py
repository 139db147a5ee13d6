"""
Accept-by-order

Confirms machine identifications in bulk. Every detection must carry an
order and belong to a project with a selected species list; detections are
then grouped per (list, order) and each order is checked against its list
before the detections are re-stamped as user-identified.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional, List, Dict, Iterable

from mothbeam.identification.engine import (
    Accept,
    BatchIdentificationResult,
    Clock,
    IdentificationContext,
    identify_many,
)
from mothbeam.identification.species_lookup import SpeciesLookup
from mothbeam.taxonomy.base import TaxonRecord, DetectionEntity

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AcceptValidationError:
    detection_id: str
    message: str


@dataclass
class AcceptGroup:
    """Detections sharing one order within one species list."""
    order: str
    species_list_id: str
    ids: List[str] = field(default_factory=list)


@dataclass
class AcceptPlan:
    groups: List[AcceptGroup] = field(default_factory=list)
    errors: List[AcceptValidationError] = field(default_factory=list)


def project_id_from_night_id(night_id: Optional[str]) -> Optional[str]:
    """First path segment of a night id ("project/site/deployment/night")."""
    parts = [part for part in (night_id or "").split("/") if part]
    return parts[0] if parts else None


def group_for_accept(
    ids: Iterable[str],
    detections: Dict[str, DetectionEntity],
    selection_by_project: Dict[str, Optional[str]],
) -> AcceptPlan:
    """Validate detections for acceptance and group them by list and order."""
    plan = AcceptPlan()
    groups: Dict[str, AcceptGroup] = {}

    for detection_id in ids:
        detection = detections.get(detection_id)
        if detection is None:
            continue

        order = detection.taxon.order if detection.taxon else None
        if not order:
            plan.errors.append(AcceptValidationError(detection_id, "Cannot accept: detection missing order"))
            continue

        project_id = project_id_from_night_id(detection.night_id)
        list_id = selection_by_project.get(project_id) if project_id else None
        if not list_id:
            plan.errors.append(
                AcceptValidationError(detection_id, "Cannot accept: no species list selected for project")
            )
            continue

        key = f"{list_id}:{order}"
        if key not in groups:
            groups[key] = AcceptGroup(order=order, species_list_id=list_id)
        groups[key].ids.append(detection_id)

    plan.groups = list(groups.values())
    return plan


def resolve_order_taxon(group: AcceptGroup, lookup: SpeciesLookup) -> Optional[TaxonRecord]:
    """Best candidate for the group's order in its species list."""
    results = lookup.search(group.species_list_id, group.order, limit=1)
    return results[0] if results else None


def accept_by_order(
    detections: Dict[str, DetectionEntity],
    ids: Iterable[str],
    lookup: SpeciesLookup,
    selection_by_project: Dict[str, Optional[str]],
    clock: Optional[Clock] = None,
) -> BatchIdentificationResult:
    """
    Accept detections whose order is present in the project's species list.

    Detections failing validation or whose order is not found are reported
    as skipped with a reason; the rest receive the Accept transition with
    the list's provenance.
    """
    plan = group_for_accept(ids, detections, selection_by_project)
    result = BatchIdentificationResult()

    for error in plan.errors:
        result.skipped.append(error.detection_id)
        result.skip_reasons[error.detection_id] = error.message

    for group in plan.groups:
        if resolve_order_taxon(group, lookup) is None:
            message = f"Cannot accept: order '{group.order}' not found in species list"
            logger.warning(f"{message} ({group.species_list_id}, {len(group.ids)} detections)")
            for detection_id in group.ids:
                result.skipped.append(detection_id)
                result.skip_reasons[detection_id] = message
            continue

        context = IdentificationContext(
            species_list_id=group.species_list_id,
            species_list_doi=lookup.get_doi(group.species_list_id),
        )
        outcome = identify_many(detections, group.ids, Accept(), context, clock)
        result.updated.update(outcome.updated)
        result.skipped.extend(outcome.skipped)
        result.skip_reasons.update(outcome.skip_reasons)

    return result
