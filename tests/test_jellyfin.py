from __future__ import annotations

import asyncio
import json
from datetime import datetime, timezone

import httpx
import pytest

from metafin import __version__
from metafin.common.errors import JellyfinError
from metafin.common.types import Item, Person
from metafin.jellyfin import (
    JellyfinClient,
    _parse_datetime,
    build_item_update,
    item_from_payload,
    library_from_payload,
    supported_item_types,
)

SYNCED = datetime(2024, 3, 1, tzinfo=timezone.utc)


def _client(handler) -> tuple[JellyfinClient, httpx.AsyncClient]:
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return (
        JellyfinClient("http://jellyfin.local/", "secret", http_client=http_client, page_size=2),
        http_client,
    )


def test_requests_carry_auth_headers_and_paging_params() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(
            200, json={"Items": [{"Id": "1"}, {"Id": "2"}], "TotalRecordCount": 5}
        )

    client, http_client = _client(handler)

    async def _run():
        try:
            return await client.fetch_items("lib", item_types=["Movie"], start_index=2)
        finally:
            await http_client.aclose()

    page = asyncio.run(_run())

    assert page.total == 5
    assert page.start_index == 2
    assert [entry["Id"] for entry in page.items] == ["1", "2"]

    request = seen[0]
    assert request.url.path == "/Items"
    assert request.headers["X-Emby-Token"] == "secret"
    assert f'Version="{__version__}"' in request.headers["X-Emby-Authorization"]
    assert request.headers["Accept"] == "application/json"
    params = request.url.params
    assert params["ParentId"] == "lib"
    assert params["IncludeItemTypes"] == "Movie"
    assert params["Recursive"] == "true"
    assert params["StartIndex"] == "2"
    assert params["Limit"] == "2"
    assert "ProviderIds" in params["Fields"].split(",")


def test_fetch_libraries_and_item() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/Library/VirtualFolders":
            return httpx.Response(200, json=[{"Name": "Films", "ItemId": "f1"}])
        return httpx.Response(200, json={"Id": "abc", "Name": "Heat"})

    client, http_client = _client(handler)

    async def _run():
        try:
            return await client.fetch_libraries(), await client.get_item("abc")
        finally:
            await http_client.aclose()

    libraries, item = asyncio.run(_run())

    assert libraries == [{"Name": "Films", "ItemId": "f1"}]
    assert item == {"Id": "abc", "Name": "Heat"}


def test_write_item_metadata_merges_into_current_body() -> None:
    posted: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "GET":
            return httpx.Response(
                200,
                json={
                    "Id": "abc",
                    "Name": "Heat",
                    "ProviderIds": {"Tmdb": "949"},
                    "LockData": False,
                },
            )
        posted.append(json.loads(request.content))
        return httpx.Response(204)

    client, http_client = _client(handler)

    async def _run():
        try:
            await client.write_item_metadata(
                "abc",
                {
                    "year": 1995,
                    "provider_ids": {"Imdb": "tt0113277"},
                    "studios": ["Warner Bros."],
                    "people": [Person(name="Al Pacino", type="Actor", role="Vincent Hanna")],
                    "premiere_date": datetime(1995, 12, 15, tzinfo=timezone.utc),
                    "collections": ["crime"],
                },
            )
        finally:
            await http_client.aclose()

    asyncio.run(_run())

    body = posted[0]
    assert body["Id"] == "abc"
    assert body["LockData"] is False
    assert body["ProductionYear"] == 1995
    assert body["ProviderIds"] == {"Tmdb": "949", "Imdb": "tt0113277"}
    assert body["Studios"] == [{"Name": "Warner Bros."}]
    assert body["People"] == [{"Name": "Al Pacino", "Type": "Actor", "Role": "Vincent Hanna"}]
    assert body["PremiereDate"] == "1995-12-15T00:00:00+00:00"
    assert "collections" not in body and "Collections" not in body


def test_upload_artwork_posts_raw_bytes() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(204)

    client, http_client = _client(handler)

    async def _run():
        try:
            await client.upload_artwork("abc", "Primary", b"\x89PNG", "image/png")
        finally:
            await http_client.aclose()

    asyncio.run(_run())

    assert seen[0].url.path == "/Items/abc/Images/Primary"
    assert seen[0].headers["Content-Type"] == "image/png"
    assert seen[0].content == b"\x89PNG"


def test_http_status_errors_become_jellyfin_errors() -> None:
    client, http_client = _client(lambda request: httpx.Response(401))

    async def _run():
        try:
            await client.fetch_libraries()
        finally:
            await http_client.aclose()

    with pytest.raises(JellyfinError) as excinfo:
        asyncio.run(_run())

    assert excinfo.value.message == "Jellyfin returned 401 for GET /Library/VirtualFolders"
    assert excinfo.value.details == {"path": "/Library/VirtualFolders", "status": 401}
    assert excinfo.value.status_code == 502


def test_transport_errors_are_logged(caplog) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    client, http_client = _client(handler)

    async def _run():
        try:
            await client.get_item("abc")
        finally:
            await http_client.aclose()

    with caplog.at_level("ERROR", logger="metafin.jellyfin"):
        with pytest.raises(JellyfinError, match="connection refused"):
            asyncio.run(_run())

    assert "HTTP error calling Jellyfin GET /Items/abc" in caplog.text


def test_client_requires_url_and_key() -> None:
    with pytest.raises(ValueError, match="base_url is required"):
        JellyfinClient("", "key")
    with pytest.raises(ValueError, match="api_key is required"):
        JellyfinClient("http://jf", "")


def test_owned_client_is_closed() -> None:
    async def _run():
        async with JellyfinClient("http://jf/", "key") as client:
            assert client.base_url == "http://jf"
            http_client = client._http
        return http_client

    assert asyncio.run(_run()).is_closed


def test_item_from_payload_maps_fields() -> None:
    payload = {
        "Id": "jf-1",
        "Name": "Pilot",
        "Type": "Episode",
        "Path": "/tv/Show/Season 1/pilot.mkv",
        "ProductionYear": 2008,
        "PremiereDate": "2008-01-20T00:00:00.0000000Z",
        "RunTimeTicks": 34_800_000_000,
        "IndexNumber": 1,
        "ParentIndexNumber": 1,
        "Genres": ["Drama"],
        "Studios": [{"Name": "AMC"}],
        "People": [{"Name": "Bryan Cranston", "Type": "Actor", "Role": "Walter White"}, {}],
        "ProviderIds": {"Tvdb": "349232", "Imdb": ""},
        "ImageTags": {"Primary": "p1"},
        "BackdropImageTags": ["b1", "b2"],
    }

    item = item_from_payload(payload, item_id="local-1", library_id="lib", synced_at=SYNCED)

    assert item.jellyfin_id == "jf-1"
    assert item.premiere_date == datetime(2008, 1, 20, tzinfo=timezone.utc)
    assert item.runtime_mins == 58
    assert item.studios == ["AMC"]
    assert [person.name for person in item.people] == ["Bryan Cranston"]
    assert item.provider_ids == {"Tvdb": "349232"}
    assert item.artwork == {"Primary": "p1", "Backdrop": "b1"}
    assert item.last_sync_at == SYNCED


def test_item_from_payload_keeps_curation_state() -> None:
    existing = Item(
        id="local-1",
        name="Old",
        type="Movie",
        collections=["picks"],
        suspected_misclassification=True,
        misclassification_score=0.8,
    )

    item = item_from_payload(
        {"Id": "jf-1", "Name": "New", "Type": "BoxSet"}, item_id="local-1", existing=existing
    )

    assert item.type == "Collection"
    assert item.collections == ["picks"]
    assert item.misclassification_score == 0.8
    assert item_from_payload({"Id": "x", "Type": "MusicAlbum"}, item_id="x") is None


def test_library_from_payload() -> None:
    library = library_from_payload(
        {"Name": "Shows", "Id": "jf-lib", "CollectionType": "tvshows", "Locations": ["/tv"]},
        library_id="lib",
    )

    assert (library.jellyfin_id, library.type, library.locations) == ("jf-lib", "tvshows", ["/tv"])
    with pytest.raises(JellyfinError, match="missing an id"):
        library_from_payload({"Name": "Broken"}, library_id="lib")


@pytest.mark.parametrize(
    "raw, expected",
    [
        (None, None),
        ("garbage", None),
        ("2020-05-01T10:00:00Z", datetime(2020, 5, 1, 10, tzinfo=timezone.utc)),
        (
            "2020-05-01T10:00:00.1234567+00:00",
            datetime(2020, 5, 1, 10, 0, 0, 123456, tzinfo=timezone.utc),
        ),
    ],
)
def test_parse_datetime(raw, expected) -> None:
    assert _parse_datetime(raw) == expected


def test_supported_item_types() -> None:
    assert supported_item_types("tvshows") == ("Series", "Season", "Episode")
    assert supported_item_types("Movies") == ("Movie",)
    assert supported_item_types(None) == ("Series", "Season", "Episode", "Movie")


def test_build_item_update_skips_unmapped_fields() -> None:
    body = build_item_update({"Name": "Old"}, {"name": "New", "artwork": {"Primary": "x"}})

    assert body == {"Name": "New"}
