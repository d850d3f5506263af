import pytest

from crossportal.cross_portal import (
    MAX_RESULTS,
    CrossPortalSearch,
    classify_matches,
    search_cross_portal_listings,
    unique_agencies,
)
from crossportal.models import CrossPortalMatch, SourceListing
from crossportal.store import PROPERTIES, SHARED_PROPERTIES


SOURCE_URL = "https://www.idealista.it/immobile/1/"


@pytest.fixture
def source():
    return SourceListing(
        address="Via Paolo Sarpi 10",
        price=400000,
        size=90,
        portal_source="Idealista",
        url=SOURCE_URL,
    )


def _match(id, agency_name=None, owner_phone=None):
    return CrossPortalMatch(
        id=id, table=PROPERTIES, address="Via Roma 1", price=None, size=None,
        portal_source="Altro", external_link=None, match_score=50, match_reason="",
        agency_name=agency_name, owner_phone=owner_phone,
    )


# ============================================================================
# CLASSIFICATION
# ============================================================================

def test_classify_no_agency_is_private():
    assert classify_matches([]) == "privato"
    assert classify_matches([_match(1, owner_phone="02 1234567")]) == "privato"
    assert classify_matches([_match(1, agency_name="Privato")]) == "privato"


def test_classify_one_agency():
    matches = [_match(1, "Tecnocasa"), _match(2, "TECNOCASA"), _match(3, "Tecno Casa")]
    assert unique_agencies(matches) == ["Tecnocasa"]
    assert classify_matches(matches) == "monocondiviso"


def test_classify_several_agencies():
    assert classify_matches([_match(1, "Tecnocasa"), _match(2, "Gabetti")]) == "pluricondiviso"


def test_classify_private_mobile_with_agency():
    matches = [_match(1, "Tecnocasa"), _match(2, owner_phone="+39 333 1234567")]
    assert classify_matches(matches) == "privato+agenzia"


def test_classify_private_landline_with_agency_stays_agency():
    matches = [_match(1, "Tecnocasa"), _match(2, owner_phone="02 1234567")]
    assert classify_matches(matches) == "monocondiviso"


# ============================================================================
# SEARCH
# ============================================================================

def test_search_finds_same_unit_on_another_portal(store, insert, source):
    insert(PROPERTIES, id=1, address="Via Paolo Sarpi 10", price=400000, size=90,
           external_link="https://www.immobiliare.it/annunci/111/", agency_name="Tecnocasa")

    result = CrossPortalSearch(store).search(source)

    assert result.source_property is source
    assert len(result.matching_listings) == 1
    match = result.matching_listings[0]
    assert match.id == 1
    assert match.table == PROPERTIES
    assert match.portal_source == "Immobiliare.it"
    assert match.match_score == pytest.approx(100)
    assert "Civico 10" in match.match_reason
    assert result.unique_agencies == ["Tecnocasa"]
    assert result.total_agencies == 1
    assert result.classification == "monocondiviso"


def test_search_price_size_window_catches_reworded_address(store, insert, source):
    insert(PROPERTIES, id=1, address="Via Paolo Sarpi 10", price=400000, size=90,
           external_link="https://www.immobiliare.it/annunci/111/", agency_name="Tecnocasa")
    insert(PROPERTIES, id=2, address="Zona Chinatown", price=401000, size=91,
           external_link="https://www.casa.it/immobili/222/", agency_name="Gabetti")

    result = search_cross_portal_listings(store, source)

    ids = [m.id for m in result.matching_listings]
    assert ids == [1, 2]
    assert result.matching_listings[1].match_score == 25
    assert result.classification == "pluricondiviso"


def test_search_address_strategy_needs_score_40(store, insert, source):
    # Price far off: only the street words can find these
    insert(SHARED_PROPERTIES, id=1, address="Via Paolo Sarpi 10", price=600000, size=130,
           external_link="https://www.subito.it/1.htm", portal_source="Subito.it")
    insert(SHARED_PROPERTIES, id=2, address="Piazza Paolo VI 3", price=900000, size=200,
           external_link="https://www.subito.it/2.htm", portal_source="Subito.it")

    result = CrossPortalSearch(store).search(source)

    assert [m.id for m in result.matching_listings] == [1]
    match = result.matching_listings[0]
    assert match.table == SHARED_PROPERTIES
    assert match.portal_source == "Subito.it"
    assert match.match_score == 70
    assert result.classification == "privato"


def test_search_reports_each_row_once(store, insert, source):
    # Found by both strategies
    insert(PROPERTIES, id=1, address="Via Paolo Sarpi 10", price=400000, size=90,
           agency_name="Tecnocasa")
    # Same id in the other table is a different listing
    insert(SHARED_PROPERTIES, id=1, address="Via Paolo Sarpi 10", price=400000, size=90,
           portal_source="Idealista", owner_phone="3331234567")

    result = CrossPortalSearch(store).search(source)

    keys = [(m.table, m.id) for m in result.matching_listings]
    assert sorted(keys) == [(PROPERTIES, 1), (SHARED_PROPERTIES, 1)]
    assert result.classification == "privato+agenzia"


def test_search_skips_the_source_listing_itself(store, insert, source):
    insert(SHARED_PROPERTIES, id=1, address="Via Paolo Sarpi 10", price=400000, size=90,
           external_link=SOURCE_URL, portal_source="Idealista")

    result = CrossPortalSearch(store).search(source)

    assert result.matching_listings == []
    assert result.classification == "privato"


def test_search_without_price_uses_address_only(store, insert):
    insert(PROPERTIES, id=1, address="Via Paolo Sarpi 10", price=400000, size=90,
           agency_name="Tecnocasa")
    result = CrossPortalSearch(store).search(SourceListing(address="Via Paolo Sarpi 10"))
    assert [m.id for m in result.matching_listings] == [1]
    assert result.matching_listings[0].match_score == 70


def test_search_caps_results_but_counts_every_agency(store, insert, source):
    for i in range(1, 26):
        insert(PROPERTIES, id=i, address="Via Paolo Sarpi 10", price=400000 + i * 100, size=90,
               agency_name=f"Agenzia {i}")

    result = CrossPortalSearch(store).search(source)

    assert len(result.matching_listings) == MAX_RESULTS
    scores = [m.match_score for m in result.matching_listings]
    assert scores == sorted(scores, reverse=True)
    assert result.total_agencies == 25
    assert result.classification == "pluricondiviso"


def test_load_properties(store, insert):
    insert(PROPERTIES, id=1, address="Via Roma 10", price=300000, size=80, floor="2",
           latitude="45.46", longitude="", external_link="https://www.idealista.it/immobile/9/")
    records = store.load_properties()
    assert len(records) == 1
    record = records[0]
    assert record.latitude == 45.46
    assert record.longitude is None
    assert record.portal_source == "Idealista"
    assert record.floor == "2"
