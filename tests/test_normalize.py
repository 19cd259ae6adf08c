import datetime as dt
import logging

import pytest

from kijijimap.errors import MalformedAdError
from kijijimap.models import DocumentShape, RawAd
from kijijimap.normalize import normalize_ad, normalize_batch


def make_ad(listing_id: str = "1701234567", **attribute_overrides) -> RawAd:
    attributes = {
        "price": 2350.0,
        "numberbedrooms": 2,
        "numberbathrooms": 1.5,
        "areainfeet": 780,
        "location": {
            "latitude": 43.6532,
            "longitude": -79.3832,
            "mapAddress": "100 Queen St W, Toronto, ON",
        },
    }
    attributes.update(attribute_overrides)
    return RawAd(
        id=listing_id,
        title="Bright 2 bed condo",
        url=f"https://www.kijiji.ca/v-apartments-condos/city-of-toronto/condo/{listing_id}",
        date="2025-05-01T12:00:00Z",
        image="https://media.kijiji.ca/1.jpg",
        images=["https://media.kijiji.ca/1.jpg", "https://media.kijiji.ca/2.jpg"],
        attributes=attributes,
    )


def test_feature_shape_uses_longitude_latitude_order():
    feature = normalize_ad(make_ad(), DocumentShape.FEATURE)

    assert feature["type"] == "Feature"
    assert feature["geometry"] == {"type": "Point", "coordinates": [-79.3832, 43.6532]}
    properties = feature["properties"]
    assert properties["listingId"] == "1701234567"
    assert properties["address"] == "100 Queen St W, Toronto, ON"
    assert properties["price"] == 2350.0
    assert properties["bedrooms"] == 2
    assert properties["bathrooms"] == 1.5
    assert properties["sqft"] == 780
    assert properties["images"] == [
        "https://media.kijiji.ca/1.jpg",
        "https://media.kijiji.ca/2.jpg",
    ]
    assert properties["attributes"]["numberbedrooms"] == 2


def test_flat_shape_keeps_fields_at_top_level():
    document = normalize_ad(make_ad(), DocumentShape.FLAT)

    assert document["listingId"] == "1701234567"
    assert document["title"] == "Bright 2 bed condo"
    assert document["location"] == {"type": "Point", "coordinates": [-79.3832, 43.6532]}
    assert "properties" not in document


def test_absent_values_are_not_coerced_to_zero():
    ad = make_ad()
    for name in ("price", "numberbedrooms", "numberbathrooms", "areainfeet"):
        del ad.attributes[name]

    properties = normalize_ad(ad)["properties"]

    assert properties["price"] is None
    assert properties["bedrooms"] is None
    assert properties["bathrooms"] is None
    assert properties["sqft"] is None


def test_datetime_dates_become_iso_strings():
    ad = make_ad()
    ad.date = dt.datetime(2025, 5, 1, 12, 30)

    assert normalize_ad(ad)["properties"]["date"] == "2025-05-01T12:30:00"


def test_numeric_string_coordinates_are_accepted():
    ad = make_ad(location={"latitude": "43.7", "longitude": "-79.4"})

    assert normalize_ad(ad)["geometry"]["coordinates"] == [-79.4, 43.7]


@pytest.mark.parametrize(
    "location",
    [
        None,
        {"latitude": 43.6},
        {"latitude": None, "longitude": -79.3},
        {"latitude": "north", "longitude": -79.3},
        {"latitude": True, "longitude": -79.3},
        {"latitude": "nan", "longitude": -79.3},
        {"latitude": 43.6, "longitude": float("inf")},
        {"latitude": 95.0, "longitude": -79.3},
    ],
)
def test_missing_or_invalid_location_is_malformed(location):
    ad = make_ad(location=location)

    with pytest.raises(MalformedAdError) as excinfo:
        normalize_ad(ad)
    assert excinfo.value.listing_id == "1701234567"


def test_missing_id_is_malformed():
    with pytest.raises(MalformedAdError):
        normalize_ad(make_ad(listing_id=""))


def test_batch_skips_single_malformed_ad(caplog):
    ads = [make_ad("1"), make_ad("2", location=None), make_ad("3")]

    with caplog.at_level(logging.WARNING):
        documents, skipped = normalize_batch(ads)

    assert [doc["properties"]["listingId"] for doc in documents] == ["1", "3"]
    assert skipped == 1
    assert "Skipping malformed ad 2" in caplog.text
