"""
Tests for accept-by-order and the in-memory species lookup.
"""

import pytest

from mothbeam.models.enums import TaxonomicRank, DetectedBy
from mothbeam.identification.accept import (
    accept_by_order,
    group_for_accept,
    project_id_from_night_id,
)
from mothbeam.identification.species_lookup import InMemorySpeciesLookup, SpeciesList
from mothbeam.taxonomy.base import TaxonRecord, DetectionEntity

NOW = 1_750_000_000_000
NIGHT = "proj/site/dep/2025-06-23"


def detection(patch_id, taxon=None, night_id=NIGHT):
    return DetectionEntity(
        id=patch_id,
        patch_id=patch_id,
        photo_id="2025_06_23__21_15_03_HDR0.jpg",
        night_id=night_id,
        taxon=taxon,
    )


@pytest.fixture
def lookup():
    """Lookup with a small Panama checklist."""
    lookup = InMemorySpeciesLookup()
    lookup.register(SpeciesList(
        id="panama",
        name="Panama insects",
        doi="10.15468/panama",
        records=[
            TaxonRecord(scientific_name="Diptera", taxon_rank=TaxonomicRank.ORDER, order="Diptera"),
            TaxonRecord(
                scientific_name="Muscidae",
                taxon_rank=TaxonomicRank.FAMILY,
                order="Diptera",
                family="Muscidae",
            ),
            TaxonRecord(
                scientific_name="Musca domestica",
                taxon_rank=TaxonomicRank.SPECIES,
                order="Diptera",
                family="Muscidae",
                genus="Musca",
                species="domestica",
                vernacular_name="house fly",
            ),
            TaxonRecord(
                scientific_name="Musca autumnalis",
                taxon_rank=TaxonomicRank.SPECIES,
                order="Diptera",
                family="Muscidae",
                genus="Musca",
                species="autumnalis",
                taxonomic_status="synonym",
            ),
        ],
    ))
    return lookup


@pytest.fixture
def night():
    return {
        "fly.jpg": detection("fly.jpg", TaxonRecord(
            scientific_name="Muscidae", taxon_rank=TaxonomicRank.FAMILY, order="Diptera", family="Muscidae",
        )),
        "moth.jpg": detection("moth.jpg", TaxonRecord(
            scientific_name="Lepidoptera", taxon_rank=TaxonomicRank.ORDER, order="Lepidoptera",
        )),
        "blank.jpg": detection("blank.jpg"),
        "other.jpg": detection("other.jpg", TaxonRecord(order="Diptera"), night_id="other/site/dep/n"),
    }


class TestSpeciesLookup:
    """Test the in-memory species lookup."""

    def test_exact_match_prefers_own_rank(self, lookup):
        results = lookup.search("panama", "diptera")
        assert results[0].taxon_rank == TaxonomicRank.ORDER

    def test_substring_fallback(self, lookup):
        results = lookup.search("panama", "house")
        assert [r.scientific_name for r in results] == ["Musca domestica"]

    def test_synonyms_excluded(self, lookup):
        assert lookup.search("panama", "autumnalis") == []

    def test_limit(self, lookup):
        assert len(lookup.search("panama", "Muscidae", limit=1)) == 1

    def test_unknown_list(self, lookup):
        assert lookup.search("nowhere", "Diptera") == []
        assert lookup.get_doi("nowhere") is None

    def test_doi(self, lookup):
        assert lookup.get_doi("panama") == "10.15468/panama"


class TestGrouping:
    """Test validation and grouping for accept."""

    def test_project_id(self):
        assert project_id_from_night_id(NIGHT) == "proj"
        assert project_id_from_night_id("") is None

    def test_errors_and_groups(self, night):
        plan = group_for_accept(list(night), night, {"proj": "panama"})

        assert [(g.order, g.ids) for g in plan.groups] == [
            ("Diptera", ["fly.jpg"]),
            ("Lepidoptera", ["moth.jpg"]),
        ]
        messages = {e.detection_id: e.message for e in plan.errors}
        assert messages["blank.jpg"] == "Cannot accept: detection missing order"
        assert messages["other.jpg"] == "Cannot accept: no species list selected for project"


class TestAcceptByOrder:
    """Test bulk acceptance."""

    def test_accepts_known_orders(self, night, lookup):
        result = accept_by_order(night, list(night), lookup, {"proj": "panama"}, clock=lambda: NOW)

        assert list(result.updated) == ["fly.jpg"]
        accepted = result.updated["fly.jpg"]
        assert accepted.detected_by == DetectedBy.USER
        assert accepted.identified_at == NOW
        assert accepted.taxon == night["fly.jpg"].taxon
        assert accepted.species_list_id == "panama"
        assert accepted.species_list_doi == "10.15468/panama"

    def test_unknown_order_skipped(self, night, lookup):
        result = accept_by_order(night, ["moth.jpg"], lookup, {"proj": "panama"}, clock=lambda: NOW)

        assert result.updated == {}
        assert result.skip_reasons["moth.jpg"] == "Cannot accept: order 'Lepidoptera' not found in species list"

    def test_no_selection(self, night, lookup):
        result = accept_by_order(night, ["fly.jpg"], lookup, {}, clock=lambda: NOW)

        assert result.skipped == ["fly.jpg"]
        assert result.updated == {}
