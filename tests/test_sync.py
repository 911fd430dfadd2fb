from __future__ import annotations

import asyncio

import pytest

from metafin.common.errors import ConflictError
from metafin.common.types import Item
from metafin.jellyfin import ItemsPage
from metafin.storage.memory import InMemoryItemStore
from metafin.sync import LibrarySync, local_id_for


class FakeJellyfin:
    def __init__(self, libraries, items_by_library) -> None:
        self.libraries = libraries
        self.items_by_library = items_by_library
        self.requests: list[tuple[str, tuple[str, ...], int, int]] = []
        self.on_page = None
        self.gate: asyncio.Event | None = None

    async def fetch_libraries(self):
        if self.gate is not None:
            await self.gate.wait()
        return list(self.libraries)

    async def fetch_items(self, parent_id, *, item_types=None, start_index=0, limit=None):
        self.requests.append((parent_id, tuple(item_types or ()), start_index, limit))
        items = self.items_by_library.get(parent_id, [])
        page = ItemsPage(
            items=items[start_index : start_index + limit],
            total=len(items),
            start_index=start_index,
        )
        if self.on_page is not None:
            self.on_page()
        return page


LIBRARIES = [
    {"Name": "Shows", "ItemId": "jf-shows", "CollectionType": "tvshows"},
    {"Name": "Films", "ItemId": "jf-films", "CollectionType": "movies"},
]

ITEMS = {
    "jf-shows": [
        {"Id": "jf-series", "Name": "Breaking Bad", "Type": "Series", "ParentId": "jf-shows"},
        {"Id": "jf-season", "Name": "Season 1", "Type": "Season", "ParentId": "jf-series", "IndexNumber": 1},
        {"Id": "jf-ep1", "Name": "Pilot", "Type": "Episode", "ParentId": "jf-season"},
        {"Id": "jf-ep2", "Name": "Cat's in the Bag", "Type": "Episode", "ParentId": "jf-season"},
        {"Id": "jf-album", "Name": "Soundtrack", "Type": "MusicAlbum"},
    ],
    "jf-films": [
        {"Id": "jf-heat", "Name": "Heat", "Type": "Movie", "ParentId": "jf-films"},
        {"Id": "jf-bad", "Type": "Movie", "Name": "Broken", "ProviderIds": "not-a-map"},
    ],
}


def test_sync_mirrors_libraries_and_items() -> None:
    jellyfin = FakeJellyfin(LIBRARIES, ITEMS)
    store = InMemoryItemStore()
    sync = LibrarySync(jellyfin, store, page_size=2)

    result = asyncio.run(sync.run())

    assert result.libraries == ["Shows", "Films"]
    assert result.items_synced == 5
    assert result.items_skipped == 1
    assert result.items_failed == 1
    assert result.cancelled is False
    assert sync.is_running is False
    assert sync.progress is None

    show_requests = [request for request in jellyfin.requests if request[0] == "jf-shows"]
    assert [request[2] for request in show_requests] == [0, 2, 4]
    assert show_requests[0][1] == ("Series", "Season", "Episode")

    series = asyncio.run(store.get_by_jellyfin_id("jf-series"))
    season = asyncio.run(store.get_by_jellyfin_id("jf-season"))
    episode = asyncio.run(store.get_by_jellyfin_id("jf-ep1"))
    assert series.id == local_id_for("item", "jf-series")
    assert series.parent_id is None
    assert season.parent_id == series.id
    assert episode.parent_id == season.id
    assert episode.library_id == local_id_for("library", "jf-shows")

    libraries = asyncio.run(store.list_libraries())
    assert [library.name for library in libraries] == ["Films", "Shows"]


def test_resync_keeps_ids_and_curation_state() -> None:
    store = InMemoryItemStore()
    asyncio.run(
        store.upsert(
            Item(
                id="custom-id",
                jellyfin_id="jf-heat",
                name="Heat (old)",
                type="Movie",
                collections=["crime"],
                suspected_misclassification=True,
                misclassification_score=0.7,
            )
        )
    )
    sync = LibrarySync(FakeJellyfin(LIBRARIES, ITEMS), store)

    asyncio.run(sync.run(["jf-films"]))

    heat = asyncio.run(store.get("custom-id"))
    assert heat.name == "Heat"
    assert heat.collections == ["crime"]
    assert heat.suspected_misclassification is True
    assert asyncio.run(store.count()) == 1


def test_library_filter_uses_jellyfin_ids() -> None:
    jellyfin = FakeJellyfin(LIBRARIES, ITEMS)

    result = asyncio.run(LibrarySync(jellyfin, InMemoryItemStore()).run(["jf-films"]))

    assert result.libraries == ["Films"]
    assert {request[0] for request in jellyfin.requests} == {"jf-films"}


def test_cancel_stops_before_next_page(caplog) -> None:
    jellyfin = FakeJellyfin(LIBRARIES, ITEMS)
    store = InMemoryItemStore()
    sync = LibrarySync(jellyfin, store, page_size=2)
    jellyfin.on_page = sync.cancel

    with caplog.at_level("INFO", logger="metafin.sync"):
        result = asyncio.run(sync.run())

    assert result.cancelled is True
    assert result.items_synced == 2
    assert len(jellyfin.requests) == 1
    assert asyncio.run(store.count()) == 2
    assert "Cancelling library sync." in caplog.text
    assert sync.cancel() is False


def test_concurrent_sync_is_rejected() -> None:
    jellyfin = FakeJellyfin(LIBRARIES, {})
    sync = LibrarySync(jellyfin, InMemoryItemStore())

    async def _run():
        jellyfin.gate = asyncio.Event()
        first = asyncio.create_task(sync.run())
        await asyncio.sleep(0)
        assert sync.is_running
        with pytest.raises(ConflictError, match="already running"):
            await sync.run()
        jellyfin.gate.set()
        return await first

    result = asyncio.run(_run())

    assert result.libraries == ["Shows", "Films"]
    assert sync.is_running is False


def test_page_size_must_be_positive() -> None:
    with pytest.raises(ValueError, match="page_size must be positive"):
        LibrarySync(FakeJellyfin([], {}), InMemoryItemStore(), page_size=0)
