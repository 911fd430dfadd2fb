"""Field-level diffs between two item metadata snapshots.

Every function here is pure. Snapshots are validated into
:class:`~metafin.common.types.ItemMetadata` and dumped to JSON-compatible
values, and then canonicalised so that ordering-only differences never show
up as changes:

* unordered string sets (genres, tags, studios, collections) are de-duplicated
  and sorted, with a missing set treated as empty;
* mappings (provider ids, artwork) are rebuilt with sorted keys;
* credited people are sorted by name, then type, then role.

Identical inputs always produce identical ``model_dump_json()`` output.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Literal, Mapping, Optional, Sequence

from pydantic import BaseModel, Field

from ..common.types import ItemMetadata

ChangeType = Literal["added", "modified", "removed", "unchanged"]
MetadataSnapshot = ItemMetadata | Mapping[str, Any] | None

SCALAR_FIELDS: tuple[str, ...] = (
    "name",
    "overview",
    "year",
    "type",
    "premiere_date",
    "end_date",
    "official_rating",
    "community_rating",
    "season_number",
    "episode_number",
)
SET_FIELDS: tuple[str, ...] = ("genres", "tags", "studios", "collections")
MAPPING_FIELDS: tuple[str, ...] = ("provider_ids", "artwork")
PEOPLE_FIELD = "people"
DIFF_FIELDS: tuple[str, ...] = (
    *SCALAR_FIELDS,
    *SET_FIELDS,
    *MAPPING_FIELDS,
    PEOPLE_FIELD,
)


class FieldChange(BaseModel):
    field: str
    type: ChangeType
    before: Any = None
    after: Any = None
    has_conflict: bool = False
    conflict_reason: Optional[str] = None


class ItemDiff(BaseModel):
    item_id: str
    item_name: Optional[str] = None
    has_changes: bool
    changes: List[FieldChange] = Field(default_factory=list)
    conflicts: List[FieldChange] = Field(default_factory=list)


class DiffSummary(BaseModel):
    total_items: int = 0
    items_with_changes: int = 0
    items_with_conflicts: int = 0
    changes_by_field: Dict[str, int] = Field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class DiffEntry:
    """One ``(current, proposed)`` pair submitted to :func:`compute_bulk_diff`."""

    item_id: str
    current: MetadataSnapshot
    proposed: MetadataSnapshot
    item_name: str | None = None


def deep_equal(left: Any, right: Any) -> bool:
    """Structural equality over JSON-like values.

    ``None`` only equals ``None`` and booleans never equal numbers. Sequences
    compare element-wise and mappings compare key-set-wise.
    """

    if left is None or right is None:
        return left is None and right is None
    if isinstance(left, bool) or isinstance(right, bool):
        return isinstance(left, bool) and isinstance(right, bool) and left == right
    if isinstance(left, Mapping) or isinstance(right, Mapping):
        if not (isinstance(left, Mapping) and isinstance(right, Mapping)):
            return False
        if set(left) != set(right):
            return False
        return all(deep_equal(left[key], right[key]) for key in left)
    if isinstance(left, (list, tuple)) or isinstance(right, (list, tuple)):
        if not (isinstance(left, (list, tuple)) and isinstance(right, (list, tuple))):
            return False
        if len(left) != len(right):
            return False
        return all(deep_equal(a, b) for a, b in zip(left, right))
    return left == right


def _snapshot_values(snapshot: MetadataSnapshot) -> dict[str, Any]:
    if snapshot is None:
        metadata = ItemMetadata()
    elif isinstance(snapshot, ItemMetadata):
        metadata = snapshot
    else:
        metadata = ItemMetadata.model_validate(dict(snapshot))
    return metadata.model_dump(mode="json")


def _canonical_set(values: Sequence[str] | None) -> list[str]:
    if not values:
        return []
    return sorted(set(values))


def _canonical_mapping(values: Mapping[str, Any] | None) -> dict[str, Any]:
    if not values:
        return {}
    return {key: values[key] for key in sorted(values)}


def _person_key(person: Mapping[str, Any]) -> tuple[str, str, str]:
    return (
        str(person.get("name") or ""),
        str(person.get("type") or ""),
        str(person.get("role") or ""),
    )


def _canonical_people(
    values: Sequence[Mapping[str, Any]] | None,
) -> list[dict[str, Any]]:
    if not values:
        return []
    return [_canonical_mapping(person) for person in sorted(values, key=_person_key)]


def canonicalize(snapshot: MetadataSnapshot) -> dict[str, Any]:
    """Return the canonical form of *snapshot* keyed by :data:`DIFF_FIELDS`."""

    values = _snapshot_values(snapshot)
    canonical: dict[str, Any] = {}
    for field in SCALAR_FIELDS:
        canonical[field] = values.get(field)
    for field in SET_FIELDS:
        canonical[field] = _canonical_set(values.get(field))
    for field in MAPPING_FIELDS:
        canonical[field] = _canonical_mapping(values.get(field))
    canonical[PEOPLE_FIELD] = _canonical_people(values.get(PEOPLE_FIELD))
    return canonical


def _is_absent(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, (list, dict)) and not value:
        return True
    return False


def _classify(before: Any, after: Any) -> ChangeType:
    if deep_equal(before, after):
        return "unchanged"
    if _is_absent(before):
        return "added"
    if _is_absent(after):
        return "removed"
    return "modified"


def _conflict_reason(field: str, before: Any, after: Any) -> str | None:
    if field == "type":
        return f"Changes item classification from {before} to {after}"
    if field == "provider_ids" and before and after:
        overwritten = sorted(
            key
            for key, value in before.items()
            if value and key in after and after[key] and after[key] != value
        )
        if overwritten:
            return "Overwrites existing provider ids: " + ", ".join(overwritten)
    return None


def _compare_field(field: str, before: Any, after: Any) -> FieldChange:
    change_type = _classify(before, after)
    reason = None
    if change_type != "unchanged":
        reason = _conflict_reason(field, before, after)
    return FieldChange(
        field=field,
        type=change_type,
        before=before,
        after=after,
        has_conflict=reason is not None,
        conflict_reason=reason,
    )


def compute_diff(
    current: MetadataSnapshot,
    proposed: MetadataSnapshot,
    item_id: str,
    *,
    item_name: str | None = None,
) -> ItemDiff:
    """Compare two metadata snapshots for one item."""

    before = canonicalize(current)
    after = canonicalize(proposed)
    compared = [
        _compare_field(field, before[field], after[field]) for field in DIFF_FIELDS
    ]
    changes = [change for change in compared if change.type != "unchanged"]
    return ItemDiff(
        item_id=item_id,
        item_name=item_name,
        has_changes=bool(changes),
        changes=changes,
        conflicts=[change for change in changes if change.has_conflict],
    )


def compute_bulk_diff(entries: Iterable[DiffEntry]) -> list[ItemDiff]:
    """Diff every entry independently, preserving input order."""

    return [
        compute_diff(
            entry.current, entry.proposed, entry.item_id, item_name=entry.item_name
        )
        for entry in entries
    ]


def is_no_op(diff: ItemDiff) -> bool:
    return not diff.has_changes


def get_diff_summary(diffs: Iterable[ItemDiff]) -> DiffSummary:
    """Aggregate change counts across a batch of diffs."""

    total = 0
    with_changes = 0
    with_conflicts = 0
    by_field: Counter[str] = Counter()
    for diff in diffs:
        total += 1
        if diff.has_changes:
            with_changes += 1
        if diff.conflicts:
            with_conflicts += 1
        by_field.update(change.field for change in diff.changes)
    return DiffSummary(
        total_items=total,
        items_with_changes=with_changes,
        items_with_conflicts=with_conflicts,
        changes_by_field=dict(sorted(by_field.items())),
    )


__all__ = [
    "ChangeType",
    "DIFF_FIELDS",
    "DiffEntry",
    "DiffSummary",
    "FieldChange",
    "ItemDiff",
    "MetadataSnapshot",
    "canonicalize",
    "compute_bulk_diff",
    "compute_diff",
    "deep_equal",
    "get_diff_summary",
    "is_no_op",
]
