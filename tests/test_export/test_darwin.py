"""
Tests for the Darwin Core export.

Tests cover:
- Error rows
- Species / scientificName sanitization
- Morphospecies column and name
- Derived path, date and detector columns
- CSV formatting and file naming
"""

import csv
import io
from datetime import date

import pytest

from mothbeam.models.enums import TaxonomicRank, DetectedBy
from mothbeam.export.darwin import (
    DARWIN_COLUMNS,
    TAXONOMY_COLUMNS,
    ExportContext,
    build_export_file_name,
    build_row,
    build_rows,
    derive_dataset_id,
    derive_deployment,
    extract_detection_by,
    extract_event_datetime,
    extract_mothbox,
    rows_to_csv,
    sanitize_for_file_name,
)
from mothbeam.identification.engine import MarkError, MorphospeciesText, TaxonPick, identify
from mothbeam.taxonomy.base import TaxonRecord, DetectionEntity

NIGHT = "Panama/Gamboa/Tower_Mothbox7_2025-06-22/2025-06-23"
PHOTO = "2025_06_23__21_15_03_HDR0.jpg"
PATCH = "2025_06_23__21_15_03_HDR0_0_yolo11.jpg"


def make_detection(taxon=None, **changes):
    return DetectionEntity(
        id=PATCH,
        patch_id=PATCH,
        photo_id=PHOTO,
        night_id=NIGHT,
        label=taxon.scientific_name if taxon else "",
        taxon=taxon,
        score=0.875,
    ).update(**changes)


def apply(detection, input):
    return identify(detection, input, clock=lambda: 1).detection


@pytest.fixture
def context():
    return ExportContext(night_id=NIGHT, identifier_human="AB")


@pytest.fixture
def diptera_detection():
    return make_detection(TaxonRecord(scientific_name="Diptera", taxon_rank=TaxonomicRank.ORDER, order="Diptera"))


class TestTaxonomyColumns:
    """Test taxonomy column mapping."""

    def test_error_row_blanks_taxonomy(self, diptera_detection, context):
        row = build_row(apply(diptera_detection, MarkError()), context)

        assert all(row[column] == "" for column in TAXONOMY_COLUMNS)
        assert row["name"] == "ERROR"
        assert row["scientificName"] == ""

    def test_error_flag_with_stale_taxon(self, diptera_detection, context):
        """Whatever the taxon still holds, an error exports blank taxonomy."""
        row = build_row(diptera_detection.update(is_error=True), context)

        assert row["order"] == ""
        assert row["kingdom"] == ""
        assert row["name"] == "ERROR"

    def test_fixed_higher_taxonomy(self, diptera_detection, context):
        row = build_row(diptera_detection, context)

        assert row["kingdom"] == "Animalia"
        assert row["phylum"] == "Arthropoda"
        assert row["class"] == "Insecta"
        assert row["order"] == "Diptera"
        assert row["family"] == ""

    def test_corrupt_species_code_blanked(self, context):
        taxon = TaxonRecord(scientific_name="111", order="Diptera", genus="Lispe", species="111")

        row = build_row(make_detection(taxon, label="Lispe"), context)

        assert row["species"] == ""
        assert row["scientificName"] == ""
        assert row["morphospecies"] == ""

    def test_formal_species_kept(self, context):
        taxon = TaxonRecord(
            scientific_name="Musca domestica",
            taxon_rank=TaxonomicRank.SPECIES,
            order="Diptera",
            genus="Musca",
            species="domestica",
            taxon_id="1",
            accepted_taxon_key="2",
            vernacular_name="house fly",
        )

        row = build_row(make_detection(taxon), context)

        assert row["species"] == "domestica"
        assert row["taxonID"] == "1"
        assert row["taxonKey"] == "2"
        assert row["commonName"] == "house fly"
        assert row["taxonRank"] == "species"

    def test_morphospecies_under_genus(self, diptera_detection, context):
        detection = apply(apply(diptera_detection, MorphospeciesText("111")), TaxonPick(TaxonRecord(
            taxon_rank=TaxonomicRank.GENUS, order="Diptera", family="Muscidae", genus="Lispe",
        )))

        row = build_row(detection, context)

        assert row["genus"] == "Lispe"
        assert row["species"] == ""
        assert row["morphospecies"] == "111"
        assert row["name"] == "111"
        assert row["scientificName"] == "Lispe"

    def test_full_species_after_morphospecies(self, diptera_detection, context):
        detection = apply(apply(diptera_detection, MorphospeciesText("111")), TaxonPick(TaxonRecord(
            taxon_rank=TaxonomicRank.SPECIES, order="Diptera", family="Muscidae",
            genus="Musca", species="domestica",
        )))

        row = build_row(detection, context)

        assert row["species"] == "domestica"
        assert row["scientificName"] == "Musca domestica"
        assert row["name"] == "Musca domestica"
        assert row["morphospecies"] == ""

    def test_identified_by_only_for_user(self, diptera_detection, context):
        assert build_row(diptera_detection, context)["identifiedBy"] == ""
        user_row = build_row(diptera_detection.update(detected_by=DetectedBy.USER), context)
        assert user_row["identifiedBy"] == "AB"

    def test_untaxoned_detection(self, context):
        row = build_row(make_detection(label="moth"), context)

        assert row["order"] == ""
        assert row["name"] == "moth"
        assert row["scientificName"] == "moth"


class TestDerivedColumns:
    """Test path, time and detector derivations."""

    def test_row_identity(self, diptera_detection, context):
        row = build_row(diptera_detection.update(species_list_doi="10.1/x"), context)

        assert row["basisOfRecord"] == "MachineObservation"
        assert row["datasetID"] == "Panama_Gamboa_Tower_Mothbox7_2025-06-22_2025-06-23"
        assert row["eventID"] == PHOTO
        assert row["occurrenceID"] == PATCH
        assert row["eventDate"] == "2025-06-23"
        assert row["eventTime"] == "21:15:03"
        assert row["detectionBy"] == "yolo11"
        assert row["detection_confidence"] == "0.875"
        assert row["mothbox"] == "Mothbox7"
        assert row["deployment"] == "Panama/Gamboa/Tower_Mothbox7_2025-06-22"
        assert row["filepath"] == f"{NIGHT}/patches/{PATCH}"
        assert row["species_list_doi"] == "10.1/x"
        assert row["software"] == "Mothbeam v2"

    def test_event_datetime_without_pattern(self):
        assert extract_event_datetime("IMG_0001") == ("", "", "")
        assert extract_event_datetime(None) == ("", "", "")

    def test_deployment_strips_night_segment(self):
        assert derive_deployment("a/b/DeploymentX/2025-06-22") == "a/b/DeploymentX"
        assert derive_deployment("single") == ""
        assert derive_deployment(None) == ""

    def test_dataset_id(self):
        assert derive_dataset_id("\\a\\b\\") == "a_b"

    def test_mothbox(self):
        assert extract_mothbox("p/s/Site_Box3/2025-06-23") == "Box3"
        assert extract_mothbox("night") == ""

    def test_detection_by(self):
        assert extract_detection_by("photo_2_human.jpg", "photo") == "human"
        assert extract_detection_by("", "photo") == ""


class TestCsv:
    """Test CSV output and naming."""

    def test_header_and_rows(self, diptera_detection, context):
        detections = [
            diptera_detection.update(id="b", patch_id="b.jpg"),
            diptera_detection.update(id="a", patch_id="a.jpg"),
        ]

        text = rows_to_csv(build_rows(detections, context))

        reader = csv.DictReader(io.StringIO(text))
        assert reader.fieldnames == DARWIN_COLUMNS
        assert [row["occurrenceID"] for row in reader] == ["a.jpg", "b.jpg"]

    def test_quotes_commas(self, context):
        row = build_row(make_detection(label="moth, small"), context)

        text = rows_to_csv([row])

        assert '"moth, small"' in text

    def test_file_name(self):
        name = build_export_file_name(NIGHT, date(2025, 7, 4))
        assert name == "Panama_Tower_Mothbox7_2025-06-22_2025-06-23_exported-2025-07_04.csv"

    def test_file_name_short_night(self):
        name = build_export_file_name("proj/night 1", date(2025, 1, 2))
        assert name == "proj_night_1_night_1_exported-2025-01_02.csv"

    def test_sanitize(self):
        assert sanitize_for_file_name("a b/c") == "a_b_c"
        assert sanitize_for_file_name("  ") == "unnamed"
