"""
Tests for the shape codec.

Tests cover:
- Detection -> shape flattening and omitted fields
- Shape -> detection reconstruction, legacy species codes, errors
- Overlay onto previously ingested detections
- Detector shapes and photo documents
"""

import pytest

from mothbeam.models.enums import TaxonomicRank, DetectedBy
from mothbeam.identification.engine import MarkError, MorphospeciesText, TaxonPick, identify
from mothbeam.persistence.shape_codec import (
    PersistedShape,
    build_photo_document,
    from_bot_shape,
    from_persisted_shape,
    parse_photo_document,
    parse_shape,
    to_persisted_shape,
)
from mothbeam.taxonomy.base import TaxonRecord, DetectionEntity, PhotoContext

NOW = 1_750_000_000_000
PATCH = "2025_06_23__21_15_03_HDR0_0_yolo.jpg"


@pytest.fixture
def photo():
    return PhotoContext(photo_id="2025_06_23__21_15_03_HDR0.jpg", night_id="proj/site/dep/2025-06-23")


@pytest.fixture
def auto_detection(photo):
    return DetectionEntity(
        id=PATCH,
        patch_id=PATCH,
        photo_id=photo.photo_id,
        night_id=photo.night_id,
        label="Diptera",
        taxon=TaxonRecord(scientific_name="Diptera", taxon_rank=TaxonomicRank.ORDER, order="Diptera"),
        score=0.91,
        direction=0.0,
        shape_type="rotation",
        points=[[1.0, 2.0], [3.0, 4.0]],
        cluster_id=4,
    )


def user(detection, input):
    return identify(detection, input, clock=lambda: NOW).detection


class TestToPersistedShape:
    """Test flattening detections."""

    def test_user_detection(self, auto_detection):
        detection = user(auto_detection, MorphospeciesText("111"))

        shape = to_persisted_shape(detection, "AB")

        assert shape["patch_path"] == f"patches/{PATCH}"
        assert shape["order"] == "Diptera"
        assert shape["morphospecies"] == "111"
        assert shape["identifier_human"] == "AB"
        assert shape["timestamp_ID_human"] == NOW
        assert shape["clusterID"] == 4
        assert "is_error" not in shape

    def test_absent_fields_omitted(self, auto_detection):
        shape = to_persisted_shape(auto_detection, "AB")

        assert "morphospecies" not in shape
        assert "species_list" not in shape
        assert "identifier_human" not in shape
        assert "genus" not in shape

    def test_error_omits_taxonomy(self, auto_detection):
        detection = user(auto_detection, MarkError()).update(taxon=auto_detection.taxon)

        shape = to_persisted_shape(detection, "AB")

        assert shape["is_error"] is True
        assert shape["label"] == "ERROR"
        assert "order" not in shape
        assert "scientificName" not in shape

    def test_missing_timestamp_uses_clock(self, auto_detection):
        shape = to_persisted_shape(auto_detection, clock=lambda: 7)
        assert shape["timestamp_ID_human"] == 7


class TestFromPersistedShape:
    """Test rebuilding detections."""

    @pytest.mark.parametrize("input", [
        MorphospeciesText("111"),
        TaxonPick(TaxonRecord(
            taxon_rank=TaxonomicRank.SPECIES, order="Diptera", family="Muscidae",
            genus="Musca", species="domestica",
        )),
        TaxonPick(TaxonRecord(taxon_rank=TaxonomicRank.FAMILY, order="Diptera", family="Muscidae")),
        MarkError(),
    ])
    def test_round_trip(self, auto_detection, photo, input):
        detection = user(auto_detection, input)

        restored = from_persisted_shape(to_persisted_shape(detection, "AB"), photo)

        assert restored.taxon == detection.taxon
        assert restored.morphospecies == detection.morphospecies
        assert restored.detected_by == DetectedBy.USER
        assert restored.is_error == detection.is_error
        assert restored.label == detection.label
        assert restored.identified_at == NOW

    def test_round_trip_rankless_pick(self, auto_detection, photo):
        detection = user(auto_detection.update(taxon=None, label=""), TaxonPick(TaxonRecord(order="Diptera", family="Muscidae")))

        restored = from_persisted_shape(to_persisted_shape(detection, "AB"), photo)

        assert detection.taxon.taxon_rank == TaxonomicRank.FAMILY
        assert restored.taxon == detection.taxon
        assert restored.label == "Muscidae"

    def test_round_trip_morphospecies_under_genus(self, auto_detection, photo):
        detection = user(user(auto_detection, MorphospeciesText("111")), TaxonPick(TaxonRecord(
            taxon_rank=TaxonomicRank.GENUS, order="Diptera", family="Muscidae", genus="Lispe",
        )))

        restored = from_persisted_shape(to_persisted_shape(detection, "AB"), photo)

        assert restored.taxon == detection.taxon
        assert restored.morphospecies == "111"
        assert restored.label == "111"

    def test_legacy_species_code_becomes_morphospecies(self, photo):
        shape = {
            "patch_path": f"patches/{PATCH}",
            "order": "Diptera",
            "genus": "Lispe",
            "species": "111",
            "label": "Lispe 111",
        }

        restored = from_persisted_shape(shape, photo)

        assert restored.morphospecies == "111"
        assert restored.taxon.species is None
        assert restored.taxon.scientific_name == "Lispe"
        assert restored.taxon.taxon_rank == TaxonomicRank.GENUS
        assert restored.label == "111"

    def test_rank_priority(self, photo):
        shape = {"patch_path": PATCH, "order": "Diptera", "family": "Muscidae", "genus": "Musca", "species": "domestica"}

        restored = from_persisted_shape(shape, photo)

        assert restored.taxon.scientific_name == "Musca domestica"
        assert restored.taxon.taxon_rank == TaxonomicRank.SPECIES

    def test_error_label_marks_error(self, photo):
        shape = {"patch_path": PATCH, "label": "error", "order": "Diptera"}

        restored = from_persisted_shape(shape, photo)

        assert restored.is_error is True
        assert restored.taxon is None
        assert restored.label == "ERROR"

    def test_na_placeholders_ignored(self, photo):
        shape = {"patch_path": PATCH, "order": "Diptera", "family": "NA", "genus": "null"}

        restored = from_persisted_shape(shape, photo)

        assert restored.taxon.family is None
        assert restored.taxon.genus is None
        assert restored.taxon.taxon_rank == TaxonomicRank.ORDER

    def test_existing_fills_missing_fields(self, auto_detection, photo):
        shape = {"patch_path": f"patches/{PATCH}", "morphospecies": "m2"}

        restored = from_persisted_shape(shape, photo, auto_detection.update(identified_at=5))

        assert restored.identified_at == 5
        assert restored.score == 0.91
        assert restored.points == [[1.0, 2.0], [3.0, 4.0]]
        assert restored.cluster_id == 4

    def test_existing_taxon_kept_when_shape_has_none(self, auto_detection, photo):
        shape = {"patch_path": PATCH, "label": "Diptera"}

        restored = from_persisted_shape(shape, photo, auto_detection)

        assert restored.taxon == auto_detection.taxon
        assert restored.detected_by == DetectedBy.USER

    def test_unusable_shapes(self, photo):
        assert from_persisted_shape({"label": "Diptera"}, photo) is None
        assert from_persisted_shape("not a shape", photo) is None

    def test_bad_types_tolerated(self, photo):
        shape = {"patch_path": PATCH, "score": "abc", "clusterID": "3", "points": "x", "is_error": "yes"}

        restored = from_persisted_shape(shape, photo)

        assert restored.score is None
        assert restored.cluster_id == 3
        assert restored.points is None
        assert restored.is_error is False


class TestBotShapes:
    """Test detector output ingestion."""

    def test_auto_detection(self, photo):
        shape = {"patch_path": PATCH, "label": "Diptera", "order": "Diptera", "score": 0.5, "morphospecies": "9"}

        detection = from_bot_shape(shape, photo)

        assert detection.detected_by == DetectedBy.AUTO
        assert detection.id == PATCH
        assert detection.morphospecies is None
        assert detection.taxon.order == "Diptera"
        assert detection.label == "Diptera"

    def test_id_from_index(self, photo):
        detection = from_bot_shape({"label": "moth"}, photo, index=3)

        assert detection.id == "2025_06_23__21_15_03_HDR0_3.jpg"
        assert detection.taxon is None
        assert detection.label == "moth"

    def test_reset_clears_user_fields(self, auto_detection, photo):
        edited = user(auto_detection, MorphospeciesText("111")).update(species_list_doi="10.1/x")

        reset = from_bot_shape({"patch_path": PATCH, "order": "Diptera"}, photo, existing=edited)

        assert reset.detected_by == DetectedBy.AUTO
        assert reset.morphospecies is None
        assert reset.identified_at is None
        assert reset.species_list_doi is None
        assert reset.points == auto_detection.points


class TestPhotoDocuments:
    """Test photo document framing."""

    def test_build_and_parse(self, auto_detection):
        document = build_photo_document("2025_06_23__21_15_03_HDR0", [to_persisted_shape(auto_detection)])

        photo_base, shapes = parse_photo_document(document)

        assert document["version"] == "1"
        assert photo_base == "2025_06_23__21_15_03_HDR0"
        assert len(shapes) == 1
        assert isinstance(shapes[0], PersistedShape)

    def test_bare_detector_file(self):
        photo_base, shapes = parse_photo_document({"shapes": [{"patch_path": PATCH}, "junk"]})

        assert photo_base is None
        assert [s.patch_file_name for s in shapes] == [PATCH]

    def test_not_a_document(self):
        assert parse_photo_document({"version": "1"}) is None
        assert parse_photo_document([]) is None

    def test_unknown_keys_survive(self):
        shape = parse_shape({"patch_path": PATCH, "custom": 1})
        assert shape.model_dump(by_alias=True, exclude_none=True)["custom"] == 1
