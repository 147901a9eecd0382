"""Tests for internal link candidate building and per-source limiting."""

import pytest

from keyword_scheduler.models.group import KeywordGroup
from keyword_scheduler.services.linking import (
    LinkCandidate,
    build_link_candidates,
    infer_link_reason,
    jaccard_similarity,
    limit_links,
    target_priority,
)


def _group(
    id: str,
    keyword_ids: list[str],
    priority: float = 0.0,
    intent: str = "info",
    size: int | None = None,
) -> KeywordGroup:
    return KeywordGroup(
        id=id,
        title=id,
        keyword_ids=keyword_ids,
        intent=intent,
        priority_score=priority,
        cluster_stats={"size": len(keyword_ids) if size is None else size},
    )


def _candidate(from_id: str, to_id: str, similarity: float) -> LinkCandidate:
    return LinkCandidate(
        from_group_id=from_id,
        to_group_id=to_id,
        reason="sibling",
        topical_similarity=similarity,
        hub_authority=1.0,
        target_priority=1.0,
    )


class TestHelpers:
    def test_jaccard(self):
        a = _group("a", ["1", "2", "3"])
        b = _group("b", ["2", "3", "4"])
        assert jaccard_similarity(a, b) == pytest.approx(0.5)
        assert jaccard_similarity(_group("x", []), _group("y", [])) == 0.0

    def test_target_priority_capped(self):
        assert target_priority(_group("a", [], priority=4)) == pytest.approx(0.4)
        assert target_priority(_group("a", [], priority=25)) == 1.0

    def test_link_reason(self):
        empty_source = _group("s", [], size=0)
        source = _group("s", ["1"])
        same = _group("t", ["1"])
        other = _group("o", ["1"], intent="trans")
        assert infer_link_reason(empty_source, same) == "hub"
        assert infer_link_reason(source, same) == "sibling"
        assert infer_link_reason(source, other) == "hierarchy"


class TestBuildLinkCandidates:
    def test_similar_targets_and_hub_links(self):
        a = _group("a", ["1", "2", "3"], priority=5)
        b = _group("b", ["1", "2", "3", "4"], priority=8)
        c = _group("c", ["9"], priority=9)

        candidates = build_link_candidates([a, b, c], [a], max_per_group=3)

        pairs = [(c.from_group_id, c.to_group_id, c.reason) for c in candidates]
        assert pairs == [("a", "b", "sibling"), ("b", "a", "hub")]
        # 0.75 similarity, lower authority 0.7, target priority 0.8
        assert candidates[0].weight == pytest.approx(0.42)
        # hub link: 0.75 similarity, authority 1, target priority 0.5
        assert candidates[1].weight == pytest.approx(0.375)

    def test_hierarchy_between_intents(self):
        a = _group("a", ["1", "2"], priority=9, intent="info")
        b = _group("b", ["1", "2"], priority=3, intent="trans")

        candidates = build_link_candidates([a, b], [a], max_per_group=3)

        assert len(candidates) == 1
        assert candidates[0].reason == "hierarchy"
        assert candidates[0].hub_authority == 1.0

    def test_fallback_to_top_priority_groups(self):
        a = _group("a", ["1"], priority=1)
        b = _group("b", ["2"], priority=6)
        c = _group("c", ["3"], priority=2)
        d = _group("d", ["4"], priority=4)

        candidates = build_link_candidates([a, b, c, d], [a], max_per_group=2)

        assert [(c.to_group_id, c.reason) for c in candidates] == [
            ("b", "sibling"),
            ("d", "sibling"),
        ]
        assert all(c.topical_similarity == 0.2 for c in candidates)
        assert candidates[0].weight == pytest.approx(0.12)

    def test_no_self_links(self):
        a = _group("a", ["1"], priority=9)
        assert build_link_candidates([a], [a], max_per_group=3) == []


class TestLimitLinks:
    def test_keeps_top_weights_per_source(self):
        candidates = [
            _candidate("a", "x", 0.1),
            _candidate("a", "y", 0.9),
            _candidate("a", "z", 0.5),
            _candidate("b", "x", 0.3),
        ]

        kept = limit_links(candidates, max_per_group=2)

        assert [(c.from_group_id, c.to_group_id) for c in kept] == [
            ("a", "y"),
            ("a", "z"),
            ("b", "x"),
        ]

    def test_ties_keep_input_order(self):
        candidates = [_candidate("a", t, 0.5) for t in ["x", "y", "z"]]
        kept = limit_links(candidates, max_per_group=2)
        assert [c.to_group_id for c in kept] == ["x", "y"]

    def test_zero_cap(self):
        assert limit_links([_candidate("a", "x", 0.5)], max_per_group=0) == []
