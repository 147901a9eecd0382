"""Internal link graph construction between keyword groups.

Candidates are scored by weight = similarity * hub authority * target
priority, then capped per source group by limit_links.
"""

from collections.abc import Sequence
from dataclasses import dataclass

from keyword_scheduler.models.group import KeywordGroup
from keyword_scheduler.models.link import LinkReason
from keyword_scheduler.services.scoring import round3

MIN_SIMILARITY = 0.4
HUB_PRIORITY = 7
FALLBACK_SIMILARITY = 0.2
LOWER_AUTHORITY = 0.7


@dataclass
class LinkCandidate:
    from_group_id: str
    to_group_id: str
    reason: str
    topical_similarity: float
    hub_authority: float
    target_priority: float

    @property
    def weight(self) -> float:
        return round3(self.topical_similarity * self.hub_authority * self.target_priority)


def jaccard_similarity(a: KeywordGroup, b: KeywordGroup) -> float:
    """Jaccard index of the two groups' keyword id sets."""
    set_a = set(a.keyword_ids or [])
    set_b = set(b.keyword_ids or [])
    union = set_a | set_b
    if not union:
        return 0.0
    return len(set_a & set_b) / len(union)


def target_priority(group: KeywordGroup) -> float:
    return min(1.0, (group.priority_score or 0) / 10)


def infer_link_reason(source: KeywordGroup, target: KeywordGroup) -> str:
    """hub for a same-intent empty source, sibling for same intent, else hierarchy."""
    if source.intent == target.intent and source.cluster_size == 0:
        return LinkReason.HUB.value
    if source.intent == target.intent:
        return LinkReason.SIBLING.value
    return LinkReason.HIERARCHY.value


def build_link_candidates(
    universe: Sequence[KeywordGroup],
    sources: Sequence[KeywordGroup],
    max_per_group: int,
) -> list[LinkCandidate]:
    """Build weighted link candidates from outlined sources into the theme.

    Args:
        universe: Every group in the theme.
        sources: Groups that were just outlined.
        max_per_group: Link cap, also used to cap extra hubs and fallback targets.

    Returns:
        Unlimited candidate list; pass through limit_links before writing.
    """
    source_ids = {group.id for group in sources}
    candidates: list[LinkCandidate] = []

    for source in sources:
        for target in universe:
            if source.id == target.id:
                continue
            similarity = jaccard_similarity(source, target)
            if similarity < MIN_SIMILARITY:
                continue
            candidates.append(
                LinkCandidate(
                    from_group_id=source.id,
                    to_group_id=target.id,
                    reason=infer_link_reason(source, target),
                    topical_similarity=similarity,
                    hub_authority=(
                        1.0 if source.priority_score >= target.priority_score else LOWER_AUTHORITY
                    ),
                    target_priority=target_priority(target),
                )
            )

    hubs = [
        group
        for group in universe
        if group.priority_score >= HUB_PRIORITY and group.id not in source_ids
    ][:max_per_group]
    for hub in hubs:
        for target in sources:
            if hub.id == target.id:
                continue
            similarity = jaccard_similarity(hub, target)
            if similarity < MIN_SIMILARITY:
                continue
            candidates.append(
                LinkCandidate(
                    from_group_id=hub.id,
                    to_group_id=target.id,
                    reason=LinkReason.HUB.value,
                    topical_similarity=similarity,
                    hub_authority=1.0,
                    target_priority=target_priority(target),
                )
            )

    if candidates:
        return candidates

    fallback_targets = sorted(
        (group for group in universe if group.id not in source_ids),
        key=lambda group: group.priority_score or 0,
        reverse=True,
    )[:max_per_group]
    for source in sources:
        for target in fallback_targets:
            candidates.append(
                LinkCandidate(
                    from_group_id=source.id,
                    to_group_id=target.id,
                    reason=LinkReason.SIBLING.value,
                    topical_similarity=FALLBACK_SIMILARITY,
                    hub_authority=1.0,
                    target_priority=target_priority(target),
                )
            )
    return candidates


def limit_links(candidates: Sequence[LinkCandidate], max_per_group: int) -> list[LinkCandidate]:
    """Keep the highest-weight candidates per source, ties in input order."""
    by_source: dict[str, list[LinkCandidate]] = {}
    for candidate in candidates:
        by_source.setdefault(candidate.from_group_id, []).append(candidate)

    kept: list[LinkCandidate] = []
    for group_candidates in by_source.values():
        ranked = sorted(group_candidates, key=lambda c: c.weight, reverse=True)
        kept.extend(ranked[:max_per_group])
    return kept
