import asyncio
import json

import httpx
from click.testing import CliRunner

from metafin import cli as curate_cli
from metafin.common.types import Item
from metafin.jellyfin import JellyfinClient
from metafin.storage.qdrant import QdrantItemStore
from test_stores import FakeQdrantClient


def _seeded_client(items) -> FakeQdrantClient:
    client = FakeQdrantClient()
    store = QdrantItemStore(client)

    async def _seed():
        for item in items:
            await store.upsert(item)

    asyncio.run(_seed())
    return client


def _use_client(monkeypatch, client: FakeQdrantClient) -> None:
    monkeypatch.setattr(curate_cli.StoreOptions, "build_client", lambda self: client)


def test_scan_prints_results(monkeypatch):
    client = _seeded_client(
        [
            Item(id="m1", name="Show.S01E05.mkv", type="Movie", library_id="films"),
            Item(id="m2", name="Heat", type="Movie", library_id="films"),
            Item(id="s1", name="Breaking Bad", type="Series", library_id="shows"),
        ]
    )
    _use_client(monkeypatch, client)

    runner = CliRunner()
    result = runner.invoke(
        curate_cli.main,
        ["scan", "--library", "films", "--type", "Movie", "--batch-size", "1"],
        catch_exceptions=False,
    )

    assert result.exit_code == 0
    payload = json.loads(result.stdout)
    assert payload["total_items"] == 2
    assert payload["items_scanned"] == 2
    assert payload["misclassified_items"] == 1
    assert payload["high_confidence_issues"] == 1
    assert client.closed is True

    flagged = asyncio.run(QdrantItemStore(client).get("m1"))
    assert flagged.suspected_misclassification is True


def test_scan_rejects_unknown_type():
    runner = CliRunner()
    result = runner.invoke(curate_cli.main, ["scan", "--type", "Album"])

    assert result.exit_code != 0
    assert "Invalid value for '--type'" in result.output


def test_sync_requires_jellyfin_credentials(monkeypatch):
    monkeypatch.delenv("JELLYFIN_URL", raising=False)
    monkeypatch.delenv("JELLYFIN_API_KEY", raising=False)

    runner = CliRunner()
    result = runner.invoke(curate_cli.main, ["sync"])

    assert result.exit_code != 0
    assert "--jellyfin-url" in result.output


def _jellyfin_handler(request: httpx.Request) -> httpx.Response:
    if request.url.path == "/Library/VirtualFolders":
        return httpx.Response(
            200, json=[{"Name": "Films", "ItemId": "jf-films", "CollectionType": "movies"}]
        )
    items = [
        {"Id": "jf-heat", "Name": "Heat", "Type": "Movie", "RunTimeTicks": 102_000_000_000},
        {"Id": "jf-odd", "Name": "Show.S01E05.mkv", "Type": "Movie"},
    ]
    start = int(request.url.params.get("StartIndex", "0"))
    limit = int(request.url.params["Limit"])
    return httpx.Response(
        200, json={"Items": items[start : start + limit], "TotalRecordCount": len(items)}
    )


def test_sync_then_scan(monkeypatch):
    client = FakeQdrantClient()
    _use_client(monkeypatch, client)
    created: list[JellyfinClient] = []

    def _jellyfin_client(base_url, api_key, **kwargs):
        http_client = httpx.AsyncClient(transport=httpx.MockTransport(_jellyfin_handler))
        jellyfin = JellyfinClient(base_url, api_key, http_client=http_client, **kwargs)
        created.append(jellyfin)
        return jellyfin

    monkeypatch.setattr(curate_cli, "JellyfinClient", _jellyfin_client)

    runner = CliRunner()
    result = runner.invoke(
        curate_cli.main,
        [
            "sync",
            "--jellyfin-url",
            "http://jellyfin.local",
            "--jellyfin-api-key",
            "secret",
            "--page-size",
            "1",
            "--scan",
        ],
        catch_exceptions=False,
    )

    assert result.exit_code == 0
    payload = json.loads(result.stdout)
    assert payload["sync"]["libraries"] == ["Films"]
    assert payload["sync"]["items_synced"] == 2
    assert payload["sync"]["cancelled"] is False
    assert payload["scan"]["misclassified_items"] == 1
    assert created[0].base_url == "http://jellyfin.local"
    assert created[0].page_size == 1

    heat = asyncio.run(QdrantItemStore(client).get_by_jellyfin_id("jf-heat"))
    assert heat.runtime_mins == 170


def test_sync_without_scan_omits_scan_output(monkeypatch):
    _use_client(monkeypatch, FakeQdrantClient())
    monkeypatch.setattr(
        curate_cli,
        "JellyfinClient",
        lambda base_url, api_key, **kwargs: JellyfinClient(
            base_url,
            api_key,
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(_jellyfin_handler)),
            **kwargs,
        ),
    )

    runner = CliRunner()
    result = runner.invoke(
        curate_cli.main,
        ["sync", "--library", "jf-missing"],
        env={"JELLYFIN_URL": "http://jf", "JELLYFIN_API_KEY": "key"},
        catch_exceptions=False,
    )

    assert result.exit_code == 0
    payload = json.loads(result.stdout)
    assert "scan" not in payload
    assert payload["sync"]["libraries"] == []
    assert payload["sync"]["items_synced"] == 0
