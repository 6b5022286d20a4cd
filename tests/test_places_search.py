import json

import httpx
import pytest

from workhaven.models.spots import Coordinate, SpotCategory
from workhaven.services.places_search import (
    FIELD_MASK,
    MAX_RESULTS_PER_CATEGORY,
    PlacesSearchAdapter,
    SearchFailed,
)

CENTER = Coordinate(latitude=37.7749, longitude=-122.4194)


def _place(i: int, **overrides):
    place = {
        "displayName": {"text": f"Cafe {i}"},
        "formattedAddress": f"{i} Market St, San Francisco, CA",
        "location": {"latitude": 37.77 + i * 0.001, "longitude": -122.41},
    }
    place.update(overrides)
    return place


def _adapter(handler, api_key="places-key") -> PlacesSearchAdapter:
    return PlacesSearchAdapter(
        api_key=api_key,
        base_url="https://places.test/v1/places:searchText",
        timeout=5,
        transport=httpx.MockTransport(handler),
    )


async def test_search_sends_rectangle_restricted_text_query():
    captured = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["body"] = json.loads(request.content)
        captured["headers"] = request.headers
        return httpx.Response(200, json={"places": [_place(1)]})

    results = await _adapter(handler).search("coffee shop", CENTER, 1000)

    body = captured["body"]
    assert body["textQuery"] == "coffee shop"
    assert body["maxResultCount"] == MAX_RESULTS_PER_CATEGORY
    rect = body["locationRestriction"]["rectangle"]
    assert rect["low"]["latitude"] < CENTER.latitude < rect["high"]["latitude"]
    assert rect["low"]["longitude"] < CENTER.longitude < rect["high"]["longitude"]
    assert captured["headers"]["X-Goog-Api-Key"] == "places-key"
    assert captured["headers"]["X-Goog-FieldMask"] == FIELD_MASK

    assert len(results) == 1
    assert results[0].name == "Cafe 1"
    assert results[0].address == "1 Market St, San Francisco, CA"
    assert results[0].category == SpotCategory.COFFEE


async def test_search_tags_results_with_category():
    handler = lambda request: httpx.Response(200, json={"places": [_place(1)]})

    results = await _adapter(handler).search("co-working space", CENTER, 1000)
    assert results[0].category == SpotCategory.COWORKING


async def test_search_caps_results_per_category():
    handler = lambda request: httpx.Response(200, json={"places": [_place(i) for i in range(1, 21)]})

    results = await _adapter(handler).search("library", CENTER, 5000)
    assert len(results) == MAX_RESULTS_PER_CATEGORY
    assert results[0].name == "Cafe 1"


async def test_search_drops_incomplete_places():
    places = [
        _place(1),
        _place(2, formattedAddress=""),
        _place(3, displayName={"text": "  "}),
        _place(4, location={"latitude": 0.0, "longitude": -122.41}),
        _place(5, location={}),
    ]
    handler = lambda request: httpx.Response(200, json={"places": places})

    results = await _adapter(handler).search("park", CENTER, 5000)
    assert [c.name for c in results] == ["Cafe 1"]


async def test_search_empty_response_returns_no_candidates():
    handler = lambda request: httpx.Response(200, json={})

    assert await _adapter(handler).search("park", CENTER, 5000) == []


async def test_search_raises_search_failed_on_http_error():
    handler = lambda request: httpx.Response(403, text="API key invalid")

    with pytest.raises(SearchFailed) as exc_info:
        await _adapter(handler).search("coffee shop", CENTER, 1000)
    assert exc_info.value.category == "coffee shop"


async def test_search_raises_search_failed_on_network_error():
    def handler(request):
        raise httpx.ReadTimeout("timed out", request=request)

    with pytest.raises(SearchFailed):
        await _adapter(handler).search("library", CENTER, 1000)


async def test_search_without_api_key_returns_empty():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(200, json={"places": [_place(1)]})

    assert await _adapter(handler, api_key="").search("park", CENTER, 1000) == []
    assert calls == []


@pytest.mark.parametrize("radius", [0, -10])
async def test_search_rejects_non_positive_radius(radius):
    with pytest.raises(ValueError):
        await _adapter(lambda request: httpx.Response(200, json={})).search("park", CENTER, radius)


async def test_search_rejects_unknown_category():
    with pytest.raises(ValueError):
        await _adapter(lambda request: httpx.Response(200, json={})).search("bar", CENTER, 1000)


@pytest.mark.parametrize(
    "overrides",
    [
        {"location": [37.7, -122.4]},
        {"location": {"latitude": [37.7], "longitude": -122.4}},
        {"formattedAddress": 12},
        {"displayName": 42},
        {"displayName": {"text": ["Cafe"]}},
    ],
)
async def test_search_drops_malformed_places(overrides):
    places = [_place(1), _place(2, **overrides)]
    handler = lambda request: httpx.Response(200, json={"places": places})

    results = await _adapter(handler).search("coffee shop", CENTER, 5000)
    assert [c.name for c in results] == ["Cafe 1"]
