"""
Species list endpoints.

Register reference checklists, search them, and select which list a
project identifies against.
"""

import logging
from fastapi import APIRouter, HTTPException, Depends, Query

from mothbeam.core.dependencies import (
    DetectionService,
    InMemorySpeciesLookup,
    get_detection_service,
    get_species_lookup,
)
from mothbeam.identification.species_lookup import SpeciesList
from mothbeam.models.schemas import SpeciesListRequest, SpeciesSelectionRequest, TaxonSchema

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/species-lists", tags=["Species Lists"])


@router.post("", status_code=201)
async def register_species_list(
    request: SpeciesListRequest,
    lookup: InMemorySpeciesLookup = Depends(get_species_lookup),
) -> dict:
    """Register (or replace) a species list."""
    lookup.register(SpeciesList(
        id=request.id,
        name=request.name or request.id,
        doi=request.doi,
        records=[record.to_record() for record in request.records],
    ))
    return {"id": request.id, "records": len(request.records)}


@router.get("/{list_id}/search", response_model=list[TaxonSchema])
async def search_species(
    list_id: str,
    q: str = Query(..., min_length=1, description="Name at any rank"),
    limit: int = Query(default=20, ge=1, le=100),
    lookup: InMemorySpeciesLookup = Depends(get_species_lookup),
) -> list[TaxonSchema]:
    if list_id not in lookup.list_ids():
        raise HTTPException(status_code=404, detail=f"Unknown species list: {list_id}")
    return [TaxonSchema.from_record(record) for record in lookup.search(list_id, q, limit)]


@router.put("/selection")
async def select_species_list(
    request: SpeciesSelectionRequest,
    service: DetectionService = Depends(get_detection_service),
) -> dict:
    """Select the list a project's identifications are made against."""
    if request.list_id and request.list_id not in service.lookup.list_ids():
        raise HTTPException(status_code=404, detail=f"Unknown species list: {request.list_id}")
    service.select_species_list(request.project_id, request.list_id)
    logger.info(f"Project {request.project_id} now uses species list {request.list_id}")
    return {"project_id": request.project_id, "list_id": request.list_id}
