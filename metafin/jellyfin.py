"""Async HTTP client for the Jellyfin server API."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Mapping, Sequence

import httpx
from pydantic import BaseModel

from . import __version__
from .common.errors import JellyfinError
from .common.types import Item, ItemType, Library

LOGGER = logging.getLogger("metafin.jellyfin")

DEFAULT_TIMEOUT = 10.0
DEFAULT_PAGE_SIZE = 100

ITEM_FIELDS: tuple[str, ...] = (
    "ProviderIds",
    "Genres",
    "Tags",
    "People",
    "Studios",
    "DateCreated",
    "Overview",
    "Path",
    "ParentId",
    "ImageTags",
    "BackdropImageTags",
)

JELLYFIN_ITEM_TYPES: dict[str, ItemType] = {
    "Series": "Series",
    "Season": "Season",
    "Episode": "Episode",
    "Movie": "Movie",
    "BoxSet": "Collection",
}

_LIBRARY_ITEM_TYPES: dict[str, tuple[str, ...]] = {
    "tvshows": ("Series", "Season", "Episode"),
    "movies": ("Movie",),
    "mixed": ("Series", "Season", "Episode", "Movie"),
    "boxsets": ("BoxSet",),
}
_DEFAULT_LIBRARY_ITEM_TYPES = ("Series", "Season", "Episode", "Movie")

# Local patch keys and the Jellyfin item fields they are written to.
_PATCH_FIELDS: dict[str, str] = {
    "name": "Name",
    "overview": "Overview",
    "year": "ProductionYear",
    "premiere_date": "PremiereDate",
    "end_date": "EndDate",
    "official_rating": "OfficialRating",
    "community_rating": "CommunityRating",
    "genres": "Genres",
    "tags": "Tags",
    "studios": "Studios",
    "people": "People",
    "provider_ids": "ProviderIds",
    "index_number": "IndexNumber",
    "parent_index_number": "ParentIndexNumber",
}

_TICKS_PER_MINUTE = 600_000_000


@dataclass(slots=True)
class ItemsPage:
    """One page of raw items returned by ``/Items``."""

    items: list[dict[str, Any]] = field(default_factory=list)
    total: int = 0
    start_index: int = 0


def supported_item_types(collection_type: str | None) -> tuple[str, ...]:
    """Return the Jellyfin item types worth syncing for a library kind."""

    return _LIBRARY_ITEM_TYPES.get((collection_type or "").lower(), _DEFAULT_LIBRARY_ITEM_TYPES)


def _parse_datetime(value: Any) -> datetime | None:
    if not value:
        return None
    if isinstance(value, datetime):
        return value
    text = str(value)
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    # Jellyfin emits seven fractional digits; datetime accepts at most six.
    if "." in text:
        head, _, tail = text.partition(".")
        digits = len(tail) - len(tail.lstrip("0123456789"))
        text = f"{head}.{tail[:min(digits, 6)]}{tail[digits:]}"
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        LOGGER.debug("Ignoring unparsable Jellyfin date %r.", value)
        return None


def library_from_payload(
    payload: Mapping[str, Any], *, library_id: str, synced_at: datetime | None = None
) -> Library:
    """Build a :class:`Library` from a ``/Library/VirtualFolders`` entry."""

    jellyfin_id = payload.get("ItemId") or payload.get("Id")
    if not jellyfin_id:
        raise JellyfinError("Library payload is missing an id", details={"name": payload.get("Name")})
    return Library(
        id=library_id,
        jellyfin_id=str(jellyfin_id),
        name=str(payload.get("Name") or jellyfin_id),
        type=payload.get("CollectionType") or "unknown",
        locations=[str(location) for location in payload.get("Locations") or []],
        last_sync_at=synced_at,
    )


def item_from_payload(
    payload: Mapping[str, Any],
    *,
    item_id: str,
    library_id: str | None = None,
    parent_id: str | None = None,
    synced_at: datetime | None = None,
    existing: Item | None = None,
) -> Item | None:
    """Map a raw Jellyfin item onto a local :class:`Item`.

    Returns ``None`` for item types metafin does not track. Curation state
    (collections, misclassification flags) is carried over from *existing*
    because Jellyfin does not know about it.
    """

    item_type = JELLYFIN_ITEM_TYPES.get(str(payload.get("Type") or ""))
    if item_type is None:
        return None

    ticks = payload.get("RunTimeTicks")
    runtime_mins = round(int(ticks) / _TICKS_PER_MINUTE) if ticks else None
    artwork = {
        str(kind): str(tag) for kind, tag in (payload.get("ImageTags") or {}).items()
    }
    backdrops = payload.get("BackdropImageTags") or []
    if backdrops:
        artwork.setdefault("Backdrop", str(backdrops[0]))

    data: dict[str, Any] = {
        "id": item_id,
        "jellyfin_id": str(payload["Id"]),
        "name": str(payload.get("Name") or payload["Id"]),
        "type": item_type,
        "library_id": library_id,
        "parent_id": parent_id,
        "path": payload.get("Path"),
        "overview": payload.get("Overview"),
        "year": payload.get("ProductionYear"),
        "premiere_date": _parse_datetime(payload.get("PremiereDate")),
        "end_date": _parse_datetime(payload.get("EndDate")),
        "date_created": _parse_datetime(payload.get("DateCreated")),
        "date_modified": _parse_datetime(payload.get("DateModified")),
        "last_sync_at": synced_at,
        "runtime_mins": runtime_mins,
        "index_number": payload.get("IndexNumber"),
        "parent_index_number": payload.get("ParentIndexNumber"),
        "official_rating": payload.get("OfficialRating"),
        "community_rating": payload.get("CommunityRating"),
        "genres": list(payload.get("Genres") or []),
        "tags": list(payload.get("Tags") or []),
        "studios": [
            studio.get("Name") if isinstance(studio, Mapping) else str(studio)
            for studio in payload.get("Studios") or []
            if studio
        ],
        "people": [
            {"name": person.get("Name"), "type": person.get("Type"), "role": person.get("Role")}
            for person in payload.get("People") or []
            if person.get("Name")
        ],
        "provider_ids": {
            str(key): str(value)
            for key, value in (payload.get("ProviderIds") or {}).items()
            if value
        },
        "artwork": artwork,
    }
    if existing is not None:
        data["collections"] = list(existing.collections)
        data["suspected_misclassification"] = existing.suspected_misclassification
        data["misclassification_score"] = existing.misclassification_score
        data["misclassification_reasons"] = list(existing.misclassification_reasons)
    return Item.model_validate(data)


def _jellyfin_value(key: str, value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if key == "studios":
        return [{"Name": studio} for studio in value or []]
    if key == "people":
        people = []
        for person in value or []:
            if isinstance(person, BaseModel):
                person = person.model_dump()
            people.append(
                {"Name": person.get("name"), "Type": person.get("type"), "Role": person.get("role")}
            )
        return people
    return value


def build_item_update(current: Mapping[str, Any], patch: Mapping[str, Any]) -> dict[str, Any]:
    """Merge a local metadata *patch* into the item body Jellyfin returned."""

    body = dict(current)
    for key, value in patch.items():
        target = _PATCH_FIELDS.get(key)
        if target is None:
            LOGGER.debug("Field %s is not stored in Jellyfin; skipping.", key)
            continue
        if key == "provider_ids":
            body[target] = {**(current.get(target) or {}), **(value or {})}
        else:
            body[target] = _jellyfin_value(key, value)
    return body


class JellyfinClient:
    """Thin wrapper around the Jellyfin REST API.

    The client owns its :class:`httpx.AsyncClient` unless one is supplied,
    and every transport or HTTP status failure surfaces as
    :class:`~metafin.common.errors.JellyfinError`.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        page_size: int = DEFAULT_PAGE_SIZE,
        client_name: str = "metafin",
        device_id: str = "metafin",
        http_client: httpx.AsyncClient | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        if not base_url:
            raise ValueError("base_url is required")
        if not api_key:
            raise ValueError("api_key is required")
        self._base_url = str(base_url).rstrip("/")
        self._page_size = page_size
        self._headers = {
            "X-Emby-Token": api_key,
            "X-Emby-Authorization": (
                f'MediaBrowser Client="{client_name}", Device="{client_name}", '
                f'DeviceId="{device_id}", Version="{__version__}"'
            ),
            "Accept": "application/json",
        }
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=httpx.Timeout(timeout))
        self._logger = logger or LOGGER

    @property
    def base_url(self) -> str:
        return self._base_url

    @property
    def page_size(self) -> int:
        return self._page_size

    @property
    def logger(self) -> logging.Logger:
        return self._logger

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http.aclose()

    async def __aenter__(self) -> "JellyfinClient":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: Mapping[str, Any] | None = None,
        json: Any = None,
        content: bytes | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> httpx.Response:
        url = f"{self._base_url}{path}"
        request_headers = {**self._headers, **(headers or {})}
        query = {key: value for key, value in (params or {}).items() if value is not None}
        try:
            response = await self._http.request(
                method,
                url,
                params=query or None,
                json=json,
                content=content,
                headers=request_headers,
            )
        except httpx.HTTPError as exc:
            self._logger.exception("HTTP error calling Jellyfin %s %s", method, path)
            raise JellyfinError(
                f"Jellyfin request failed: {exc}", details={"path": path}
            ) from exc
        if not response.is_success:
            raise JellyfinError(
                f"Jellyfin returned {response.status_code} for {method} {path}",
                details={"path": path, "status": response.status_code},
            )
        return response

    async def fetch_libraries(self) -> list[dict[str, Any]]:
        response = await self._request("GET", "/Library/VirtualFolders")
        return list(response.json() or [])

    async def fetch_items(
        self,
        parent_id: str,
        *,
        item_types: Sequence[str] | None = None,
        start_index: int = 0,
        limit: int | None = None,
    ) -> ItemsPage:
        """Fetch one page of items below *parent_id*."""

        response = await self._request(
            "GET",
            "/Items",
            params={
                "ParentId": parent_id,
                "IncludeItemTypes": ",".join(item_types) if item_types else None,
                "Recursive": "true",
                "Fields": ",".join(ITEM_FIELDS),
                "StartIndex": start_index,
                "Limit": limit or self._page_size,
            },
        )
        data = response.json() or {}
        items = list(data.get("Items") or [])
        return ItemsPage(
            items=items,
            total=int(data.get("TotalRecordCount") or len(items)),
            start_index=start_index,
        )

    async def get_item(self, jellyfin_id: str) -> dict[str, Any]:
        response = await self._request("GET", f"/Items/{jellyfin_id}")
        return dict(response.json() or {})

    async def write_item_metadata(
        self, jellyfin_id: str, patch: Mapping[str, Any]
    ) -> None:
        """Merge *patch* into the Jellyfin item and post it back."""

        current = await self.get_item(jellyfin_id)
        body = build_item_update(current, patch)
        await self._request("POST", f"/Items/{jellyfin_id}", json=body)
        self._logger.debug(
            "Updated Jellyfin item %s (%s).", jellyfin_id, ", ".join(sorted(patch))
        )

    async def upload_artwork(
        self,
        jellyfin_id: str,
        artwork_type: str,
        data: bytes,
        content_type: str,
    ) -> None:
        await self._request(
            "POST",
            f"/Items/{jellyfin_id}/Images/{artwork_type}",
            content=data,
            headers={"Content-Type": content_type},
        )
        self._logger.info("Uploaded %s artwork for Jellyfin item %s.", artwork_type, jellyfin_id)


__all__ = [
    "DEFAULT_PAGE_SIZE",
    "DEFAULT_TIMEOUT",
    "ITEM_FIELDS",
    "ItemsPage",
    "JellyfinClient",
    "build_item_update",
    "item_from_payload",
    "library_from_payload",
    "supported_item_types",
]
