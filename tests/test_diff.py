from __future__ import annotations

from datetime import datetime, timezone

import pytest

from metafin.common.types import ItemMetadata, Person
from metafin.curation.diff import (
    DIFF_FIELDS,
    DiffEntry,
    canonicalize,
    compute_bulk_diff,
    compute_diff,
    deep_equal,
    get_diff_summary,
    is_no_op,
)


def _snapshot(**overrides) -> ItemMetadata:
    data = {
        "name": "Pilot",
        "overview": "The first one.",
        "year": 2008,
        "type": "Episode",
        "premiere_date": datetime(2008, 1, 20, tzinfo=timezone.utc),
        "season_number": 1,
        "episode_number": 1,
        "genres": ["Drama", "Crime"],
        "tags": ["pilot"],
        "studios": ["AMC"],
        "collections": [],
        "provider_ids": {"Tvdb": "349232", "Imdb": "tt0959621"},
        "artwork": {"Primary": "abc"},
        "people": [
            Person(name="Bryan Cranston", type="Actor", role="Walter White"),
            Person(name="Aaron Paul", type="Actor", role="Jesse Pinkman"),
        ],
    }
    data.update(overrides)
    return ItemMetadata(**data)


SNAPSHOTS = [
    ItemMetadata(),
    _snapshot(),
    _snapshot(genres=None, provider_ids=None, people=None),
    {"name": "Raw mapping", "type": "Movie", "genres": ["b", "a", "a"]},
]


@pytest.mark.parametrize("snapshot", SNAPSHOTS)
def test_identical_snapshots_have_no_changes(snapshot) -> None:
    diff = compute_diff(snapshot, snapshot, "item-1")

    assert diff.has_changes is False
    assert diff.changes == []
    assert diff.conflicts == []
    assert is_no_op(diff)


def test_reversed_diff_swaps_values_and_change_types() -> None:
    before = _snapshot(overview=None, tags=[])
    after = _snapshot(
        name="Pilot (Extended)",
        overview="Now with an overview.",
        tags=["pilot", "extended"],
        studios=[],
    )

    forward = compute_diff(before, after, "item-1")
    backward = compute_diff(after, before, "item-1")

    assert [c.field for c in forward.changes] == [c.field for c in backward.changes]
    swapped = {"added": "removed", "removed": "added", "modified": "modified"}
    for ahead, behind in zip(forward.changes, backward.changes):
        assert ahead.before == behind.after
        assert ahead.after == behind.before
        assert behind.type == swapped[ahead.type]

    types = {change.field: change.type for change in forward.changes}
    assert types == {
        "name": "modified",
        "overview": "added",
        "tags": "added",
        "studios": "removed",
    }


def test_set_fields_ignore_order() -> None:
    diff = compute_diff(
        {"name": "x", "genres": ["Drama", "Action"]},
        {"name": "x", "genres": ["Action", "Drama"]},
        "item-1",
    )

    assert diff.has_changes is False


def test_set_field_extension_reports_sorted_modification() -> None:
    diff = compute_diff(
        {"name": "x", "genres": ["Drama", "Action"]},
        {"name": "x", "genres": ["Action", "Drama", "Thriller"]},
        "item-1",
    )

    assert len(diff.changes) == 1
    change = diff.changes[0]
    assert change.field == "genres"
    assert change.type == "modified"
    assert change.before == ["Action", "Drama"]
    assert change.after == ["Action", "Drama", "Thriller"]


def test_missing_set_is_treated_as_empty() -> None:
    assert compute_diff({"genres": None}, {"genres": []}, "i").has_changes is False

    added = compute_diff({"genres": None}, {"genres": ["Drama"]}, "i").changes[0]
    assert (added.type, added.before, added.after) == ("added", [], ["Drama"])


def test_people_order_is_canonical() -> None:
    cast = [
        {"name": "B", "type": "Actor", "role": "Two"},
        {"name": "A", "type": "Actor", "role": "One"},
    ]
    diff = compute_diff({"people": cast}, {"people": list(reversed(cast))}, "i")

    assert diff.has_changes is False
    assert [p["name"] for p in canonicalize({"people": cast})["people"]] == ["A", "B"]


def test_type_change_is_flagged_as_conflict() -> None:
    diff = compute_diff({"name": "x", "type": "Movie"}, {"name": "x", "type": "Episode"}, "i")

    assert diff.conflicts[0].field == "type"
    assert diff.conflicts[0].conflict_reason == (
        "Changes item classification from Movie to Episode"
    )


def test_overwriting_provider_ids_is_a_conflict_but_adding_is_not() -> None:
    current = {"provider_ids": {"Tvdb": "1"}}

    added = compute_diff(current, {"provider_ids": {"Tvdb": "1", "Imdb": "tt1"}}, "i")
    overwritten = compute_diff(current, {"provider_ids": {"Tvdb": "2"}}, "i")

    assert added.has_changes and added.conflicts == []
    assert overwritten.conflicts[0].conflict_reason == (
        "Overwrites existing provider ids: Tvdb"
    )


def test_bulk_diff_entries_are_independent() -> None:
    a = _snapshot()
    b = _snapshot(name="Renamed")
    c = _snapshot(tags=["x"])

    forward = compute_bulk_diff(
        [DiffEntry("id1", a, b), DiffEntry("id2", c, c)]
    )
    backward = compute_bulk_diff(
        [DiffEntry("id2", c, c), DiffEntry("id1", a, b)]
    )

    assert [(d.item_id, d.has_changes) for d in forward] == [("id1", True), ("id2", False)]
    assert [(d.item_id, d.has_changes) for d in backward] == [("id2", False), ("id1", True)]
    assert forward[0] == backward[1]


def test_diff_output_is_deterministic() -> None:
    first = compute_diff(_snapshot(), _snapshot(genres=["Thriller", "Drama"]), "i")
    second = compute_diff(_snapshot(), _snapshot(genres=["Drama", "Thriller"]), "i")

    assert first.model_dump_json() == second.model_dump_json()


def test_summary_counts_changes_and_conflicts() -> None:
    diffs = compute_bulk_diff(
        [
            DiffEntry("1", {"name": "a"}, {"name": "b", "genres": ["x"]}),
            DiffEntry("2", {"type": "Movie"}, {"type": "Episode"}),
            DiffEntry("3", {"name": "same"}, {"name": "same"}),
        ]
    )

    summary = get_diff_summary(diffs)

    assert summary.total_items == 3
    assert summary.items_with_changes == 2
    assert summary.items_with_conflicts == 1
    assert summary.changes_by_field == {"genres": 1, "name": 1, "type": 1}


def test_changes_follow_field_order() -> None:
    diff = compute_diff(
        {"people": [], "name": "a", "genres": []},
        {"people": [{"name": "p"}], "name": "b", "genres": ["g"]},
        "i",
    )

    fields = [change.field for change in diff.changes]
    assert fields == sorted(fields, key=DIFF_FIELDS.index)


@pytest.mark.parametrize(
    "left, right, expected",
    [
        (None, None, True),
        (None, 0, False),
        (True, 1, False),
        (1, 1.0, True),
        ({"a": [1, 2]}, {"a": [1, 2]}, True),
        ({"a": 1}, {"a": 1, "b": None}, False),
        ([1, 2], [2, 1], False),
        ([], {}, False),
    ],
)
def test_deep_equal(left, right, expected) -> None:
    assert deep_equal(left, right) is expected
