"""
Darwin Core export endpoints.
"""

import logging
from fastapi import APIRouter, HTTPException, Depends
from fastapi.responses import Response

from mothbeam.core.dependencies import DetectionService, get_detection_service
from mothbeam.services.detection_service import NightNotLoadedError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/nights", tags=["Export"])


@router.get(
    "/{night_id:path}/export/darwin.csv",
    response_class=Response,
    summary="Darwin Core CSV export",
    description="One row per detection. Error detections export blank taxonomy "
                "with name ERROR; morphospecies are exported in their own column.",
)
async def export_darwin_csv(
    night_id: str,
    service: DetectionService = Depends(get_detection_service),
) -> Response:
    try:
        file_name, csv_text = service.export_csv(night_id)
    except NightNotLoadedError:
        raise HTTPException(status_code=404, detail=f"Night not loaded: {night_id}")

    return Response(
        content=csv_text,
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{file_name}"'},
    )
