import json

import pytest
import requests

from kijijimap.errors import MalformedAdError, SourceUnavailable
from kijijimap.models import ListingSummary, SearchCriteria
from kijijimap.scraper import (
    KijijiAdSource,
    build_search_url,
    extract_listing_links,
    parse_ad_page,
)


class DummyResponse:
    def __init__(self, text: str, status_code: int = 200):
        self.text = text
        self.status_code = status_code

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")


class DummySession:
    def __init__(self, responses):
        self.responses = responses
        self.headers = {}
        self.requested = []

    def get(self, url, timeout=None):
        self.requested.append(url)
        response = self.responses[url]
        if isinstance(response, Exception):
            raise response
        return response


def results_page(*listing_ids: str) -> str:
    links = "\n".join(
        f'<li><a data-testid="listing-link" '
        f'href="/v-apartments-condos/city-of-toronto/unit-{listing_id}/{listing_id}">Unit</a></li>'
        for listing_id in listing_ids
    )
    return f"<html><body><ul>{links}</ul><a href='/other/123'>Other</a></body></html>"


def ad_page(listing_id: str) -> str:
    payload = {
        "props": {
            "pageProps": {
                "__APOLLO_STATE__": {
                    "ROOT_QUERY": {"id": "root"},
                    f"RealEstateListing:{listing_id}": {
                        "id": listing_id,
                        "title": " Bright 1 bedroom ",
                        "description": "Close to transit",
                        "imageUrls": ["https://media.kijiji.ca/a.jpg", "https://media.kijiji.ca/b.jpg"],
                        "sortingDate": "2025-05-01T12:00:00.000Z",
                        "price": {"amount": 215000, "type": "FIXED"},
                        "attributes": {
                            "all": [
                                {"canonicalName": "numberbedrooms", "canonicalValues": ["1"]},
                                {"canonicalName": "numberbathrooms", "canonicalValues": ["1.5"]},
                                {"canonicalName": "areainfeet", "canonicalValues": ["650"]},
                                {"canonicalName": "petsallowed", "canonicalValues": ["cats", "dogs"]},
                                {"canonicalName": "furnished", "canonicalValues": []},
                            ]
                        },
                        "location": {
                            "address": "1 Yonge St, Toronto, ON",
                            "coordinates": {"latitude": 43.64, "longitude": -79.37},
                        },
                    },
                }
            }
        }
    }
    return (
        "<html><head></head><body>"
        f'<script id="__NEXT_DATA__" type="application/json">{json.dumps(payload)}</script>'
        "</body></html>"
    )


def test_build_search_url_for_first_and_later_pages():
    criteria = SearchCriteria()

    assert build_search_url(criteria) == (
        "https://www.kijiji.ca/b-apartments-condos/city-of-toronto/c37l1700273?sort=dateDesc"
    )
    assert build_search_url(criteria, page=3) == (
        "https://www.kijiji.ca/b-apartments-condos/city-of-toronto/page-3/c37l1700273?sort=dateDesc"
    )


def test_extract_listing_links_keeps_page_order():
    summaries = extract_listing_links(results_page("300", "200", "100"))

    assert [item.listing_id for item in summaries] == ["300", "200", "100"]
    assert summaries[0].url == (
        "https://www.kijiji.ca/v-apartments-condos/city-of-toronto/unit-300/300"
    )


def test_parse_ad_page_maps_next_data_payload():
    summary = ListingSummary(listing_id="555", url="https://www.kijiji.ca/v-x/555")

    ad = parse_ad_page(ad_page("555"), summary)

    assert ad.id == "555"
    assert ad.title == "Bright 1 bedroom"
    assert ad.url == "https://www.kijiji.ca/v-x/555"
    assert ad.image == "https://media.kijiji.ca/a.jpg"
    assert len(ad.images) == 2
    assert ad.date == "2025-05-01T12:00:00.000Z"
    assert ad.attributes["price"] == 2150.0
    assert ad.attributes["numberbedrooms"] == 1
    assert ad.attributes["numberbathrooms"] == 1.5
    assert ad.attributes["areainfeet"] == 650
    assert ad.attributes["petsallowed"] == ["cats", "dogs"]
    assert "furnished" not in ad.attributes
    assert ad.attributes["location"] == {
        "latitude": 43.64,
        "longitude": -79.37,
        "mapAddress": "1 Yonge St, Toronto, ON",
    }


def test_parse_ad_page_without_payload_is_malformed():
    summary = ListingSummary(listing_id="555", url="https://www.kijiji.ca/v-x/555")

    with pytest.raises(MalformedAdError):
        parse_ad_page("<html><body>Removed</body></html>", summary)


def test_parse_ad_page_for_other_listing_is_malformed():
    summary = ListingSummary(listing_id="777", url="https://www.kijiji.ca/v-x/777")

    with pytest.raises(MalformedAdError):
        parse_ad_page(ad_page("555"), summary)


def test_search_pages_until_min_results():
    criteria = SearchCriteria(min_results=4)
    session = DummySession({
        build_search_url(criteria, 1): DummyResponse(results_page("9", "8", "7")),
        build_search_url(criteria, 2): DummyResponse(results_page("7", "6", "5")),
    })
    source = KijijiAdSource(session=session)

    summaries = source.search(criteria)

    assert [item.listing_id for item in summaries] == ["9", "8", "7", "6", "5"]
    assert len(session.requested) == 2


def test_search_stops_when_page_has_nothing_new():
    criteria = SearchCriteria(min_results=50)
    session = DummySession({
        build_search_url(criteria, 1): DummyResponse(results_page("2", "1")),
        build_search_url(criteria, 2): DummyResponse(results_page("2", "1")),
    })
    source = KijijiAdSource(session=session)

    summaries = source.search(criteria)

    assert [item.listing_id for item in summaries] == ["2", "1"]
    assert len(session.requested) == 2


def test_search_http_error_raises_source_unavailable():
    criteria = SearchCriteria()
    session = DummySession({build_search_url(criteria, 1): DummyResponse("", status_code=503)})
    source = KijijiAdSource(session=session)

    with pytest.raises(SourceUnavailable):
        source.search(criteria)


def test_fetch_detail_network_error_raises_source_unavailable():
    summary = ListingSummary(listing_id="1", url="https://www.kijiji.ca/v-x/1")
    session = DummySession({summary.url: requests.ConnectionError("reset")})
    source = KijijiAdSource(session=session)

    with pytest.raises(SourceUnavailable):
        source.fetch_detail(summary)


def test_fetch_detail_parses_ad():
    summary = ListingSummary(listing_id="555", url="https://www.kijiji.ca/v-x/555")
    session = DummySession({summary.url: DummyResponse(ad_page("555"))})
    source = KijijiAdSource(session=session)

    assert source.fetch_detail(summary).attributes["location"]["longitude"] == -79.37
