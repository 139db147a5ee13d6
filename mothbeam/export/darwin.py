"""
Darwin Core Export

Maps detections to flat Darwin Core rows and formats them as CSV.

Rows are built from data that may have been written by older, less careful
versions, so every derivation is total: nothing here raises on odd input,
and anything that cannot be mapped becomes an empty string. Formal name
columns are sanitized so morphospecies codes never appear as species
epithets or scientific names.
"""

import csv
import io
import re
from dataclasses import dataclass
from datetime import date
from typing import Optional, List, Dict, Iterable, Tuple

from mothbeam.core.config import (
    BASIS_OF_RECORD,
    ERROR_LABEL,
    FIXED_CLASS,
    FIXED_KINGDOM,
    FIXED_PHYLUM,
    SOFTWARE_NAME,
)
from mothbeam.taxonomy.base import DetectionEntity
from mothbeam.taxonomy.labels import compute_label
from mothbeam.taxonomy.morphospecies import scientific_name_for_export, species_for_export

DARWIN_COLUMNS = [
    "basisOfRecord",
    "datasetID",
    "parentEventID",
    "eventID",
    "occurrenceID",
    "verbatimEventDate",
    "eventDate",
    "eventTime",
    "UTCOFFSET",
    "detectionBy",
    "detection_confidence",
    "identifiedBy",
    "ID_confidence",
    "kingdom",
    "phylum",
    "class",
    "order",
    "family",
    "genus",
    "species",
    "morphospecies",
    "taxonID",
    "taxonKey",
    "commonName",
    "scientificName",
    "taxonRank",
    "name",
    "species_list_doi",
    "filepath",
    "mothbox",
    "deployment",
    "software",
    "sheet",
    "country",
    "area",
    "point",
    "latitude",
    "longitude",
    "ground_height",
    "deployment_name",
    "deployment_date",
    "collect_date",
    "data_storage_location",
    "crew",
    "notes",
    "schedule",
    "habitat",
    "image_id",
    "label",
    "bbox",
    "segmentation",
    "attractor",
    "attractor_location",
]

TAXONOMY_COLUMNS = [
    "kingdom", "phylum", "class", "order", "family", "genus", "species",
    "morphospecies", "taxonID", "taxonKey", "commonName", "scientificName", "taxonRank",
]

_VERBATIM_DATE = re.compile(r"(\d{4})_(\d{2})_(\d{2})__(\d{2})_(\d{2})_(\d{2})")
_TRAILING_DATE = re.compile(r"^(.*)_(\d{4}-\d{2}-\d{2})$")

DarwinRow = Dict[str, str]


@dataclass(frozen=True)
class ExportContext:
    """Night-level information shared by every row of an export."""
    night_id: str
    night_disk_path: Optional[str] = None  # defaults to the night id
    identifier_human: Optional[str] = None

    @property
    def disk_path(self) -> str:
        return _normalize_path(self.night_disk_path or self.night_id)


def _normalize_path(path: Optional[str]) -> str:
    return "/".join(part for part in (path or "").replace("\\", "/").split("/") if part)


def _path_parts(path: Optional[str]) -> List[str]:
    normalized = _normalize_path(path)
    return normalized.split("/") if normalized else []


# === Derived columns ===

def photo_base(photo_id: Optional[str]) -> str:
    photo_id = photo_id or ""
    if photo_id.lower().endswith(".jpg"):
        return photo_id[: -len(".jpg")]
    return photo_id


def extract_event_datetime(base_name: Optional[str]) -> Tuple[str, str, str]:
    """
    Parse the capture time embedded in a photo name.

    "2025_06_23__21_15_03_HDR0" gives
    ("2025_06_23__21_15_03", "2025-06-23", "21:15:03"); names without the
    pattern give three blanks.
    """
    match = _VERBATIM_DATE.search(base_name or "")
    if not match:
        return "", "", ""
    yyyy, mm, dd, hh, mi, ss = match.groups()
    return match.group(0), f"{yyyy}-{mm}-{dd}", f"{hh}:{mi}:{ss}"


def derive_dataset_id(night_id: Optional[str]) -> str:
    return "_".join(_path_parts(night_id))


def derive_deployment(night_id: Optional[str]) -> str:
    """
    Deployment identifier: the night path without its trailing night segment.

    "proj/site/Dep_2025-06-22/2025-06-23" gives "proj/site/Dep_2025-06-22".
    """
    return "/".join(_path_parts(night_id)[:-1])


def extract_mothbox(night_disk_path: Optional[str]) -> str:
    """Device name: last "_" token of the deployment folder, date removed."""
    parts = _path_parts(night_disk_path)
    if len(parts) < 2:
        return ""
    folder = parts[-2]
    match = _TRAILING_DATE.match(folder)
    before_date = match.group(1) if match else folder
    tokens = [token for token in before_date.split("_") if token]
    return tokens[-1] if tokens else ""


def extract_detection_by(patch_id: Optional[str], base_name: Optional[str]) -> str:
    """Detector tag from a patch file name ("<photo>_<n>_<detector>.jpg")."""
    name = re.sub(r"\.jpg$", "", patch_id or "", flags=re.IGNORECASE)
    prefix = f"{base_name}_" if base_name else ""
    if prefix and name.startswith(prefix):
        name = name[len(prefix):]
    index = name.find("_")
    if index >= 0:
        name = name[index + 1:]
    return name


def _format_number(value: Optional[float]) -> str:
    if value is None:
        return ""
    if float(value).is_integer():
        return str(int(value))
    return str(value)


# === Rows ===

def build_row(detection: DetectionEntity, context: ExportContext) -> DarwinRow:
    """
    Map one detection to a Darwin Core row.

    Error detections export blank taxonomy with name "ERROR". Otherwise
    kingdom/phylum/class are the fixed domain constants, order/family/genus
    come from the taxon, and species/scientificName are sanitized against
    morphospecies codes. The morphospecies has its own column.
    """
    base_name = photo_base(detection.photo_id)
    verbatim, event_date, event_time = extract_event_datetime(base_name)
    dataset_id = derive_dataset_id(context.night_id)
    disk_path = context.disk_path

    row: DarwinRow = {column: "" for column in DARWIN_COLUMNS}
    row.update({
        "basisOfRecord": BASIS_OF_RECORD,
        "datasetID": dataset_id,
        "parentEventID": dataset_id,
        "eventID": detection.photo_id or "",
        "occurrenceID": detection.patch_id or "",
        "verbatimEventDate": verbatim,
        "eventDate": event_date,
        "eventTime": event_time,
        "detectionBy": extract_detection_by(detection.patch_id, base_name),
        "detection_confidence": _format_number(detection.score),
        "identifiedBy": (context.identifier_human or "user") if detection.is_user_identified else "",
        "filepath": "/".join(part for part in (disk_path, "patches", detection.patch_id or "") if part),
        "mothbox": extract_mothbox(disk_path),
        "deployment": derive_deployment(context.night_id),
        "software": SOFTWARE_NAME,
        "image_id": detection.patch_id or "",
        "label": detection.label or "",
    })

    if detection.is_error:
        row["name"] = ERROR_LABEL
        row["label"] = ERROR_LABEL
        return row

    taxon = detection.taxon
    morphospecies = (detection.morphospecies or "").strip() or None

    row.update({
        "kingdom": FIXED_KINGDOM,
        "phylum": FIXED_PHYLUM,
        "class": FIXED_CLASS,
        "order": (taxon.order if taxon else None) or "",
        "family": (taxon.family if taxon else None) or "",
        "genus": (taxon.genus if taxon else None) or "",
        "species": species_for_export(taxon, morphospecies),
        "morphospecies": morphospecies or "",
        "scientificName": scientific_name_for_export(taxon, morphospecies, detection.label),
        "name": compute_label(taxon, detection.label, morphospecies),
        "species_list_doi": detection.species_list_doi or "",
    })

    if taxon is not None:
        row.update({
            "taxonID": taxon.taxon_id or "",
            "taxonKey": taxon.accepted_taxon_key or taxon.taxon_id or "",
            "commonName": taxon.vernacular_name or "",
            "taxonRank": taxon.taxon_rank.value if taxon.taxon_rank else "",
        })
    return row


def build_rows(detections: Iterable[DetectionEntity], context: ExportContext) -> List[DarwinRow]:
    """Rows for a night, ordered by photo then patch."""
    ordered = sorted(detections, key=lambda d: (d.photo_id or "", d.patch_id or ""))
    return [build_row(detection, context) for detection in ordered]


def rows_to_csv(rows: Iterable[DarwinRow]) -> str:
    """Format rows as CSV text with the fixed Darwin column order."""
    buffer = io.StringIO()
    writer = csv.DictWriter(buffer, fieldnames=DARWIN_COLUMNS, extrasaction="ignore", lineterminator="\n")
    writer.writeheader()
    for row in rows:
        writer.writerow(row)
    return buffer.getvalue()


# === File naming ===

def sanitize_for_file_name(value: Optional[str]) -> str:
    text = (value or "").strip()
    if not text:
        return "unnamed"
    text = re.sub(r"\s+", "_", text)
    return re.sub(r"[^a-zA-Z0-9._-]", "_", text)


def build_export_file_name(night_id: Optional[str], today: Optional[date] = None) -> str:
    """
    Export file name: ``{project}_{deployment}_{night}_exported-YYYY-MM_DD.csv``.

    The deployment is the third segment of a four-part night id
    (project/site/deployment/night), else the second.
    """
    parts = _path_parts(night_id)
    project = parts[0] if parts else "dataset"
    if len(parts) >= 4:
        deployment = parts[2]
    elif len(parts) >= 2:
        deployment = parts[1]
    else:
        deployment = "deployment"
    night = parts[-1] if parts else "night"

    today = today or date.today()
    stamp = f"{today.year:04d}-{today.month:02d}_{today.day:02d}"
    return (
        f"{sanitize_for_file_name(project)}_{sanitize_for_file_name(deployment)}_"
        f"{sanitize_for_file_name(night)}_exported-{stamp}.csv"
    )
