"""
Tests for DetectionService - night state, identification and export wiring.
"""

from datetime import date

import pytest

from mothbeam.models.enums import TaxonomicRank, DetectedBy
from mothbeam.identification.engine import Accept, MarkError, MorphospeciesText, TaxonPick
from mothbeam.identification.species_lookup import InMemorySpeciesLookup, SpeciesList
from mothbeam.persistence.night_writer import NightWriter
from mothbeam.services.detection_service import DetectionService, NightNotLoadedError
from mothbeam.taxonomy.base import TaxonRecord

NIGHT = "proj/site/dep/2025-06-23"
NOW = 1_750_000_000_000
BASE = "2025_06_23__21_15_03_HDR0"


def bot_documents():
    return {
        BASE: {
            "shapes": [
                {"patch_path": f"patches/{BASE}_0_yolo.jpg", "label": "Diptera", "order": "Diptera", "score": 0.9},
                {"patch_path": f"patches/{BASE}_1_yolo.jpg", "label": "insect", "score": 0.4},
            ]
        }
    }


@pytest.fixture
def lookup():
    lookup = InMemorySpeciesLookup()
    lookup.register(SpeciesList(
        id="panama",
        name="Panama",
        doi="10.15468/panama",
        records=[TaxonRecord(scientific_name="Diptera", taxon_rank=TaxonomicRank.ORDER, order="Diptera")],
    ))
    return lookup


@pytest.fixture
def changes():
    return []


@pytest.fixture
def service(lookup, changes):
    service = DetectionService(lookup=lookup, on_change=changes.append, clock=lambda: NOW, identifier_human="AB")
    service.load_documents(NIGHT, bot_documents())
    return service


class TestLoading:
    """Test night loading."""

    def test_counts(self, lookup):
        service = DetectionService(lookup=lookup)
        counts = service.load_documents(NIGHT, bot_documents())

        assert counts == {"photos": 1, "detections": 2, "identified": 0}
        assert service.is_loaded(NIGHT)

    def test_user_documents_overlay(self, lookup):
        user_documents = {
            BASE: {
                "version": "1",
                "photoBase": BASE,
                "shapes": [{"patch_path": f"patches/{BASE}_0_yolo.jpg", "order": "Diptera", "morphospecies": "111"}],
            }
        }
        service = DetectionService(lookup=lookup)

        counts = service.load_documents(NIGHT, bot_documents(), user_documents)

        detection = service.get_detection(NIGHT, f"{BASE}_0_yolo.jpg")
        assert counts["identified"] == 1
        assert detection.morphospecies == "111"
        assert detection.detected_by == DetectedBy.USER
        assert detection.score == 0.9

    def test_not_loaded(self, lookup):
        with pytest.raises(NightNotLoadedError):
            DetectionService(lookup=lookup).list_detections(NIGHT)

    def test_ingest_from_disk(self, service, lookup, tmp_path):
        writer = NightWriter(root=str(tmp_path), identifier_human="AB", clock=lambda: NOW)
        service.identify(NIGHT, [f"{BASE}_0_yolo.jpg"], MorphospeciesText("111"))
        detections, photos = service.snapshot(NIGHT)
        writer.write_night(NIGHT, detections, photos)
        bot_path = writer.night_dir(NIGHT) / f"{BASE}_botdetection.json"
        bot_path.write_text('{"shapes": [{"patch_path": "patches/%s_0_yolo.jpg", "order": "Diptera"}]}' % BASE)

        fresh = DetectionService(lookup=lookup)
        counts = fresh.ingest_from_disk(NIGHT, writer)

        assert counts["identified"] == 1
        assert fresh.get_detection(NIGHT, f"{BASE}_0_yolo.jpg").morphospecies == "111"


class TestIdentification:
    """Test identification through the service."""

    def test_identify_notifies_change(self, service, changes):
        result = service.identify(NIGHT, [f"{BASE}_0_yolo.jpg"], MorphospeciesText("111"))

        assert result.updated_count == 1
        assert changes == [NIGHT]
        assert service.get_detection(NIGHT, f"{BASE}_0_yolo.jpg").label == "111"

    def test_no_change_no_notification(self, service, changes):
        result = service.identify(NIGHT, [f"{BASE}_1_yolo.jpg"], MorphospeciesText("111"))

        assert result.updated_count == 0
        assert changes == []

    def test_selected_list_context(self, service):
        service.select_species_list("proj", "panama")

        service.identify(NIGHT, [f"{BASE}_0_yolo.jpg"], Accept())

        detection = service.get_detection(NIGHT, f"{BASE}_0_yolo.jpg")
        assert detection.species_list_id == "panama"
        assert detection.species_list_doi == "10.15468/panama"

    def test_accept_by_order(self, service):
        service.select_species_list("proj", "panama")

        result = service.accept(NIGHT, [f"{BASE}_0_yolo.jpg", f"{BASE}_1_yolo.jpg"])

        assert list(result.updated) == [f"{BASE}_0_yolo.jpg"]
        assert result.skip_reasons[f"{BASE}_1_yolo.jpg"] == "Cannot accept: detection missing order"

    def test_reset_to_auto(self, service):
        patch = f"{BASE}_0_yolo.jpg"
        service.identify(NIGHT, [patch], MarkError())

        result = service.reset_to_auto(NIGHT, [patch, "missing.jpg"])

        detection = service.get_detection(NIGHT, patch)
        assert detection.is_error is False
        assert detection.detected_by == DetectedBy.AUTO
        assert detection.taxon.order == "Diptera"
        assert result.skipped == ["missing.jpg"]


class TestOutputs:
    """Test documents and export."""

    def test_photo_documents_hold_user_shapes(self, service):
        service.identify(NIGHT, [f"{BASE}_0_yolo.jpg"], MorphospeciesText("111"))

        documents = service.photo_documents(NIGHT)

        shapes = documents[BASE]["shapes"]
        assert len(shapes) == 1
        assert shapes[0]["morphospecies"] == "111"
        assert shapes[0]["identifier_human"] == "AB"

    def test_export_csv(self, service):
        service.identify(NIGHT, [f"{BASE}_1_yolo.jpg"], MarkError())

        file_name, text = service.export_csv(NIGHT, date(2025, 7, 1))

        assert file_name == "proj_dep_2025-06-23_exported-2025-07_01.csv"
        lines = text.strip().split("\n")
        assert len(lines) == 3
        assert lines[0].startswith("basisOfRecord,")
        assert "ERROR" in lines[2]

    def test_rank_gaps_reported_on_export(self, service, caplog):
        pick = TaxonPick(TaxonRecord(taxon_rank=TaxonomicRank.GENUS, order="Diptera", genus="Musca"))
        service.identify(NIGHT, [f"{BASE}_1_yolo.jpg"], pick)

        with caplog.at_level("WARNING", logger="mothbeam.services.detection_service"):
            service.export_csv(NIGHT, date(2025, 7, 1))

        assert service.rank_gaps(NIGHT) == {f"{BASE}_1_yolo.jpg": [TaxonomicRank.FAMILY]}
        assert "missing intermediate ranks" in caplog.text

    def test_error_detections_have_no_rank_gaps(self, service):
        service.identify(NIGHT, [f"{BASE}_1_yolo.jpg"], MarkError())

        assert service.rank_gaps(NIGHT) == {}
