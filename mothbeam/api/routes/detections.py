"""
Detection identification endpoints.

Night ids are hierarchical paths ("project/site/deployment/2025-06-23")
and are passed as path parameters including their slashes.

Endpoints:
- Load a night from disk or from posted documents
- List detections
- Identify (taxon pick, morphospecies, error, accept)
- Accept by order, reset to detector output
- Inspect and flush persisted documents
"""

import logging
from fastapi import APIRouter, HTTPException, Depends

from mothbeam.identification.engine import (
    Accept,
    IdentificationContext,
    MarkError,
    MorphospeciesText,
    TaxonPick,
)
from mothbeam.models.enums import IdentificationKind
from mothbeam.models.schemas import (
    DetectionSchema,
    ErrorResponse,
    IdentifyRequest,
    IdentifyResponse,
    IdsRequest,
    LoadDocumentsRequest,
    LoadResponse,
)
from mothbeam.core.dependencies import (
    DetectionService,
    NightWriter,
    get_detection_service,
    get_night_writer,
)
from mothbeam.services.detection_service import NightNotLoadedError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/nights", tags=["Detections"])

NOT_LOADED = {404: {"model": ErrorResponse, "description": "Night not loaded"}}


def _to_response(result) -> IdentifyResponse:
    return IdentifyResponse(
        updated=[DetectionSchema.from_entity(d) for d in result.updated.values()],
        skipped=result.skipped,
        skip_reasons=result.skip_reasons,
    )


def _not_loaded(night_id: str) -> HTTPException:
    return HTTPException(status_code=404, detail=f"Night not loaded: {night_id}")


def _build_input(request: IdentifyRequest):
    """Translate a request into an engine input."""
    if request.kind == IdentificationKind.TAXON_PICK:
        if request.taxon is None:
            raise ValueError("taxon_pick requires a taxon")
        return TaxonPick(taxon=request.taxon.to_record(), label=request.label)
    if request.kind == IdentificationKind.MORPHOSPECIES:
        return MorphospeciesText(text=request.text or "")
    if request.kind == IdentificationKind.MARK_ERROR:
        return MarkError()
    return Accept()


# === Loading ===

@router.post("/{night_id:path}/ingest", response_model=LoadResponse, summary="Load a night from disk")
async def ingest_night(
    night_id: str,
    service: DetectionService = Depends(get_detection_service),
    writer: NightWriter = Depends(get_night_writer),
) -> LoadResponse:
    """Load detector output and saved identifications from the data root."""
    counts = service.ingest_from_disk(night_id, writer)
    return LoadResponse(night_id=night_id, **counts)


@router.post("/{night_id:path}/load", response_model=LoadResponse, summary="Load a night from documents")
async def load_night(
    night_id: str,
    request: LoadDocumentsRequest,
    service: DetectionService = Depends(get_detection_service),
) -> LoadResponse:
    """Load a night from posted detector and identified documents."""
    counts = service.load_documents(night_id, request.bot_documents, request.user_documents)
    return LoadResponse(night_id=night_id, **counts)


# === Queries ===

@router.get("/{night_id:path}/detections", response_model=list[DetectionSchema], responses=NOT_LOADED)
async def list_detections(
    night_id: str,
    service: DetectionService = Depends(get_detection_service),
) -> list[DetectionSchema]:
    try:
        return [DetectionSchema.from_entity(d) for d in service.list_detections(night_id)]
    except NightNotLoadedError:
        raise _not_loaded(night_id)


@router.get("/{night_id:path}/documents", responses=NOT_LOADED)
async def photo_documents(
    night_id: str,
    service: DetectionService = Depends(get_detection_service),
) -> dict:
    """Per-photo documents exactly as they are saved."""
    try:
        return service.photo_documents(night_id)
    except NightNotLoadedError:
        raise _not_loaded(night_id)


# === Identification ===

@router.post(
    "/{night_id:path}/identify",
    response_model=IdentifyResponse,
    responses={
        400: {"model": ErrorResponse, "description": "Invalid request"},
        **NOT_LOADED,
    },
    summary="Identify detections",
    description="""
    Apply one identification input to a set of detections.

    **Kinds:**
    - taxon_pick: assign a taxon from a species list
    - morphospecies: assign a free-text working name (needs order, family or genus)
    - mark_error: mark as not a valid specimen
    - accept: confirm the current identification

    Rejected detections are reported in `skipped` with a reason; they never
    fail the request.
    """
)
async def identify_detections(
    night_id: str,
    request: IdentifyRequest,
    service: DetectionService = Depends(get_detection_service),
) -> IdentifyResponse:
    try:
        identification = _build_input(request)
    except ValueError as e:
        logger.warning(f"Validation error: {e}")
        raise HTTPException(status_code=400, detail=str(e))

    context = None
    if request.species_list_id or request.species_list_doi:
        context = IdentificationContext(
            species_list_id=request.species_list_id,
            species_list_doi=request.species_list_doi,
        )

    try:
        result = service.identify(night_id, request.ids, identification, context)
    except NightNotLoadedError:
        raise _not_loaded(night_id)

    logger.info(
        f"Identified {len(result.updated)} detections in {night_id} "
        f"({request.kind.value}), skipped {len(result.skipped)}"
    )
    return _to_response(result)


@router.post("/{night_id:path}/accept", response_model=IdentifyResponse, responses=NOT_LOADED)
async def accept_detections(
    night_id: str,
    request: IdsRequest,
    service: DetectionService = Depends(get_detection_service),
) -> IdentifyResponse:
    """Accept detections whose order is in the project's species list."""
    try:
        return _to_response(service.accept(night_id, request.ids))
    except NightNotLoadedError:
        raise _not_loaded(night_id)


@router.post("/{night_id:path}/reset", response_model=IdentifyResponse, responses=NOT_LOADED)
async def reset_detections(
    night_id: str,
    request: IdsRequest,
    service: DetectionService = Depends(get_detection_service),
) -> IdentifyResponse:
    """Restore detector output, discarding user identifications."""
    try:
        return _to_response(service.reset_to_auto(night_id, request.ids))
    except NightNotLoadedError:
        raise _not_loaded(night_id)


@router.post("/{night_id:path}/save", responses=NOT_LOADED)
async def save_night(
    night_id: str,
    service: DetectionService = Depends(get_detection_service),
    writer: NightWriter = Depends(get_night_writer),
) -> dict:
    """Write the night now instead of waiting for the write-behind timer."""
    try:
        detections, photos = service.snapshot(night_id)
    except NightNotLoadedError:
        raise _not_loaded(night_id)
    written = writer.write_night(night_id, detections, photos)
    return {"night_id": night_id, "files": [str(path) for path in written]}
