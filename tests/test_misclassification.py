from __future__ import annotations

import asyncio

import pytest

from metafin.common.errors import ItemNotFoundError
from metafin.common.types import Item, Library, Reason
from metafin.curation.detectors import (
    ChildSummary,
    ItemContext,
    detect_duration_anomaly,
    detect_metadata_inconsistency,
    detect_missing_seasons,
    detect_naming_pattern,
    detect_path_structure,
)
from metafin.curation.misclassification import (
    MisclassificationService,
    ReviewAction,
    analyze,
    load_context,
    max_severity,
    review_priority,
    suggest_type,
)
from metafin.storage.memory import InMemoryItemStore


def _item(item_id: str, name: str, item_type: str = "Movie", **extra) -> Item:
    return Item(id=item_id, name=name, type=item_type, **extra)


def _flagged(item_id: str, name: str, score: float, severity: str, **extra) -> Item:
    reason = Reason(
        type="naming_pattern",
        description="Item named like an episode but classified as Movie",
        severity=severity,
        confidence=0.8,
    )
    return _item(
        item_id,
        name,
        suspected_misclassification=True,
        misclassification_score=score,
        misclassification_reasons=[reason],
        **extra,
    )


def test_episode_named_movie_is_flagged_for_review() -> None:
    analysis = analyze(ItemContext(item=_item("m1", "Show.S01E05.mkv")))

    assert analysis.score == pytest.approx(0.8)
    assert analysis.needs_review is True
    assert analysis.suggested_type == "Episode"
    assert [(r.type, r.severity) for r in analysis.reasons] == [("naming_pattern", "high")]


def test_clean_movie_scores_zero() -> None:
    item = _item(
        "m2",
        "Inception",
        path="/movies/Inception (2010)/Inception.mkv",
        runtime_mins=148,
    )

    analysis = analyze(ItemContext(item=item))

    assert analysis.score == 0.0
    assert analysis.reasons == []
    assert analysis.needs_review is False
    assert analysis.suggested_type is None
    assert analysis.should_flag is False


def test_score_is_normalised_by_detectors_that_fired() -> None:
    item = _item(
        "m3",
        "Show S01E05",
        path="/tv/Show/Season 1/episode.mkv",
        runtime_mins=45,
    )

    analysis = analyze(ItemContext(item=item))

    assert [reason.type for reason in analysis.reasons] == [
        "naming_pattern",
        "path_structure",
        "duration_anomaly",
    ]
    expected = (0.8 * 1.0 + 0.8 * 0.6 + 0.7 * 0.6) / (1.0 + 1.0 + 0.6)
    assert analysis.score == pytest.approx(expected)
    assert 0.0 <= analysis.score <= 1.0


def test_medium_findings_below_threshold_do_not_need_review() -> None:
    episode = _item("e1", "The Movie (2010)", "Episode")

    analysis = analyze(ItemContext(item=episode))

    assert analysis.reasons[0].description == "TV content with movie-like naming"
    assert analysis.score == pytest.approx(0.36)
    assert analysis.needs_review is False
    assert analysis.suggested_type == "Movie"


@pytest.mark.parametrize(
    "name, item_type, expected",
    [
        ("Show.S01E05.mkv", "Movie", ("high", 0.8)),
        ("Pilot 1x01", "Series", ("high", 0.8)),
        ("Episode 12", "Movie", ("high", 0.8)),
        ("Season 2", "Series", ("high", 0.9)),
        ("S03", "Movie", ("high", 0.9)),
        ("Heat 1995", "Episode", ("medium", 0.6)),
        ("Special BluRay", "Season", ("medium", 0.6)),
        ("Pilot", "Episode", None),
        ("Season 2", "Season", None),
    ],
)
def test_detect_naming_pattern(name, item_type, expected) -> None:
    reason = detect_naming_pattern(ItemContext(item=_item("x", name, item_type)))

    if expected is None:
        assert reason is None
    else:
        assert (reason.severity, reason.confidence) == expected


def test_detect_path_structure() -> None:
    shallow = _item("e", "Pilot", "Episode", path="media/pilot.mkv")
    rooted = _item("e3", "Pilot", "Episode", path="/Show/pilot.mkv")
    nested = _item("e2", "Pilot", "Episode", path="/tv/Show/Season 1/pilot.mkv")
    movie_in_tv = _item("m", "Film", path="/tv/Show/Season 1/film.mkv")
    windows = _item("m2", "Film", path="D:\\TV\\Show\\S02\\film.mkv")

    reason = detect_path_structure(ItemContext(item=shallow))
    assert reason.description == "Episode not in expected Show/Season/Episode structure"
    assert detect_path_structure(ItemContext(item=nested)) is None
    assert detect_path_structure(ItemContext(item=rooted)) is None
    assert detect_path_structure(ItemContext(item=movie_in_tv)).confidence == 0.8
    assert detect_path_structure(ItemContext(item=windows)) is not None
    assert detect_path_structure(ItemContext(item=_item("n", "No path"))) is None


def test_detect_metadata_inconsistency() -> None:
    series = _item("s", "Show", "Series")
    season = _item("se", "Season 1", "Season")
    episode_child = ChildSummary(id="e", type="Episode", name="Pilot")
    season_child = ChildSummary(id="se", type="Season", name="Season 1", index_number=1)

    flat = detect_metadata_inconsistency(ItemContext(item=series, children=[episode_child]))
    assert flat.description == "Series has episodes but no seasons"
    assert flat.severity == "medium"

    healthy = ItemContext(item=series, children=[season_child, episode_child])
    assert detect_metadata_inconsistency(healthy) is None

    empty = detect_metadata_inconsistency(ItemContext(item=season))
    assert (empty.description, empty.severity) == ("Season with no episodes", "low")


def test_detect_duration_anomaly() -> None:
    long_episode = _item("e", "Pilot", "Episode", runtime_mins=150)
    short_movie = _item("m", "Short", runtime_mins=45)

    assert detect_duration_anomaly(ItemContext(item=long_episode)).description == (
        "Episode unusually long (150 minutes)"
    )
    assert detect_duration_anomaly(ItemContext(item=short_movie)).description == (
        "Movie unusually short (45 minutes)"
    )
    assert detect_duration_anomaly(ItemContext(item=_item("m2", "Film"))) is None


def test_detect_missing_seasons() -> None:
    series = _item("s", "Show", "Series")
    children = [
        ChildSummary(id=f"se{n}", type="Season", name=f"Season {n}", index_number=n)
        for n in (4, 1, 2)
    ]

    reason = detect_missing_seasons(ItemContext(item=series, children=children))

    assert reason.description == "Missing seasons between 2 and 4"
    assert detect_missing_seasons(ItemContext(item=series, children=children[1:])) is None


def test_suggest_type_skips_current_type() -> None:
    reason = Reason(
        type="duration_anomaly",
        description="Episode unusually long (150 minutes)",
        severity="medium",
        confidence=0.6,
    )

    assert suggest_type("Episode", [reason]) == "Movie"
    assert suggest_type("Movie", [reason]) is None
    assert max_severity([]) is None
    assert max_severity([reason]) == "medium"


def test_load_context_collects_children_and_parent() -> None:
    series = _item("s", "Show", "Series")
    season = _item("se1", "Season 1", "Season", parent_id="s", index_number=1)
    episode = _item("e1", "Pilot", "Episode", parent_id="se1")
    store = InMemoryItemStore([series, season, episode])

    context = asyncio.run(load_context(store, season))

    assert context.parent == series
    assert [child.id for child in context.children] == ["e1"]


def test_analyze_item_uses_store_context() -> None:
    series = _item("s", "Show", "Series")
    episodes = [
        _item(f"e{n}", f"Episode title {n}", "Episode", parent_id="s") for n in range(2)
    ]
    service = MisclassificationService(InMemoryItemStore([series, *episodes]))

    analysis = asyncio.run(service.analyze_item("s"))

    assert [reason.type for reason in analysis.reasons] == ["metadata_inconsistency"]
    assert analysis.current_type == "Series"


def test_analyze_item_unknown_id_raises() -> None:
    service = MisclassificationService(InMemoryItemStore())

    with pytest.raises(ItemNotFoundError) as excinfo:
        asyncio.run(service.analyze_item("missing"))

    assert excinfo.value.status_code == 404
    assert str(excinfo.value) == "Item missing not found"


def test_misclassified_items_are_ordered_by_score() -> None:
    store = InMemoryItemStore(
        [
            _flagged("a", "A", 0.55, "medium", library_id="lib"),
            _flagged("b", "B", 0.9, "high", library_id="lib"),
            _flagged("c", "C", 0.7, "high", library_id="other"),
            _item("d", "Clean", library_id="lib"),
        ]
    )
    asyncio.run(store.upsert_library(Library(id="lib", jellyfin_id="j", name="Films")))
    service = MisclassificationService(store)

    page = asyncio.run(service.get_misclassified_items())
    assert [entry.id for entry in page.items] == ["b", "c", "a"]
    assert page.items[0].library_name == "Films"
    assert page.items[1].library_name is None
    assert page.pagination.has_more is False

    scoped = asyncio.run(service.get_misclassified_items(library_id="lib", severity="high"))
    assert [entry.id for entry in scoped.items] == ["b"]

    first = asyncio.run(service.get_misclassified_items(limit=2))
    assert [entry.id for entry in first.items] == ["b", "c"]
    assert first.pagination.model_dump() == {"limit": 2, "offset": 0, "has_more": True}

    rest = asyncio.run(service.get_misclassified_items(limit=2, offset=2))
    assert [entry.id for entry in rest.items] == ["a"]


def test_dismiss_clears_flag_and_logs(caplog) -> None:
    store = InMemoryItemStore([_flagged("a", "A", 0.9, "high")])
    service = MisclassificationService(store)

    with caplog.at_level("INFO", logger="metafin.curation.misclassification"):
        asyncio.run(service.dismiss_misclassification("a"))

    item = asyncio.run(store.get("a"))
    assert item.suspected_misclassification is False
    assert item.misclassification_score is None
    assert item.misclassification_reasons == []
    assert "Dismissed misclassification flag for item a." in caplog.text

    with pytest.raises(ItemNotFoundError):
        asyncio.run(service.dismiss_misclassification("missing"))


def _queue() -> InMemoryItemStore:
    return InMemoryItemStore(
        [
            _flagged("a", "A", 0.85, "high", library_id="lib"),
            _flagged("b", "B", 0.8, "high", library_id="lib"),
            _flagged("c", "C", 0.6, "medium", library_id="lib"),
            _flagged("d", "D", 0.3, "low", library_id="other"),
            _item("e", "Clean", library_id="lib"),
        ]
    )


@pytest.mark.parametrize(
    "score, expected",
    [(0.95, "high"), (0.8, "high"), (0.79, "medium"), (0.5, "medium"), (0.49, "low"), (None, "low")],
)
def test_review_priority_bands(score, expected) -> None:
    assert review_priority(score) == expected


def test_review_queue_stats() -> None:
    service = MisclassificationService(_queue())

    stats = asyncio.run(service.get_review_queue_stats())
    scoped = asyncio.run(service.get_review_queue_stats("lib"))
    empty = asyncio.run(service.get_review_queue_stats("nowhere"))

    assert stats.total_items == 4
    assert (stats.high_priority_items, stats.medium_priority_items, stats.low_priority_items) == (
        2,
        1,
        1,
    )
    assert stats.average_score == pytest.approx((0.85 + 0.8 + 0.6 + 0.3) / 4)
    assert scoped.total_items == 3
    assert scoped.low_priority_items == 0
    assert empty.model_dump() == {
        "total_items": 0,
        "high_priority_items": 0,
        "medium_priority_items": 0,
        "low_priority_items": 0,
        "average_score": 0.0,
    }


def test_correct_type_sets_type_and_clears_flag(caplog) -> None:
    store = _queue()
    service = MisclassificationService(store)

    with caplog.at_level("INFO", logger="metafin.curation.misclassification"):
        updated = asyncio.run(
            service.review_item("a", {"action": "correct_type", "newType": "Episode"})
        )

    assert updated.type == "Episode"
    stored = asyncio.run(store.get("a"))
    assert stored.type == "Episode"
    assert stored.suspected_misclassification is False
    assert stored.misclassification_reasons == []
    assert "Reviewed item a with action correct_type." in caplog.text


def test_update_metadata_review_applies_fields() -> None:
    store = _queue()
    service = MisclassificationService(store)

    asyncio.run(
        service.review_item(
            "c",
            ReviewAction(
                action="update_metadata",
                metadata={"name": "Pilot", "year": 2008, "genres": ["Drama"]},
            ),
        )
    )

    stored = asyncio.run(store.get("c"))
    assert (stored.name, stored.year, stored.genres) == ("Pilot", 2008, ["Drama"])
    assert stored.type == "Movie"
    assert stored.misclassification_score is None


@pytest.mark.parametrize(
    "payload, message",
    [
        ({"action": "correct_type"}, "new_type is required for correct_type"),
        ({"action": "update_metadata"}, "metadata is required for update_metadata"),
        ({"action": "update_metadata", "metadata": {"path": "/x"}}, "unsupported metadata fields: path"),
        ({"action": "flag_for_manual"}, "Input should be"),
    ],
)
def test_review_action_validation(payload, message) -> None:
    with pytest.raises(ValueError, match=message):
        ReviewAction.model_validate(payload)


def test_bulk_review_tolerates_partial_failure(caplog) -> None:
    store = _queue()
    service = MisclassificationService(store)

    with caplog.at_level("INFO", logger="metafin.curation.misclassification"):
        result = asyncio.run(
            service.bulk_review(["a", "missing", "d"], {"action": "dismiss"})
        )

    assert (result.successful, result.failed) == (2, 1)
    assert [error.model_dump() for error in result.errors] == [
        {"item_id": "missing", "error": "Item missing not found"}
    ]
    assert asyncio.run(store.get("d")).suspected_misclassification is False
    assert asyncio.run(service.get_review_queue_stats()).total_items == 2
    assert "Failed to review item missing: Item missing not found" in caplog.text
    assert "Bulk review completed: 2 successful, 1 failed." in caplog.text


def test_mark_all_as_reviewed_by_library() -> None:
    store = _queue()
    service = MisclassificationService(store)

    assert asyncio.run(service.mark_all_as_reviewed("lib")) == 3
    assert asyncio.run(service.get_review_queue_stats()).total_items == 1
    assert asyncio.run(service.mark_all_as_reviewed()) == 1
