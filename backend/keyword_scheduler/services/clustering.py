"""Greedy single-pass keyword clustering.

Keywords are visited in input order and compared with the first member of
each existing cluster (not the centroid). The first cluster with cosine
similarity >= 0.8 takes the keyword; otherwise a new cluster is started.
Five or fewer keywords always form one cluster. The result depends on
input order.
"""

import math
from collections.abc import Sequence
from typing import Protocol, TypeVar

SIMILARITY_THRESHOLD = 0.8
SINGLE_CLUSTER_MAX = 5


class Clusterable(Protocol):
    id: str
    text: str
    metrics: dict


K = TypeVar("K", bound=Clusterable)


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity; 0 for empty, mismatched or zero-norm vectors."""
    if not a or not b or len(a) != len(b):
        return 0.0
    dot = sum(x * y for x, y in zip(a, b))
    norm_a = sum(x * x for x in a)
    norm_b = sum(y * y for y in b)
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return dot / (math.sqrt(norm_a) * math.sqrt(norm_b))


def cluster_keywords(
    keywords: Sequence[K], vectors: dict[str, list[float]]
) -> list[list[K]]:
    """Group keywords by embedding similarity.

    Args:
        keywords: Keywords in the order they should be visited.
        vectors: Embedding vector per keyword id. Missing ids compare as 0.

    Returns:
        Clusters in creation order, members in visiting order.
    """
    if not keywords:
        return []
    if len(keywords) <= SINGLE_CLUSTER_MAX:
        return [list(keywords)]

    clusters: list[list[K]] = []
    for keyword in keywords:
        vector = vectors.get(keyword.id, [])
        for cluster in clusters:
            anchor = vectors.get(cluster[0].id, [])
            if cosine_similarity(vector, anchor) >= SIMILARITY_THRESHOLD:
                cluster.append(keyword)
                break
        else:
            clusters.append([keyword])
    return clusters


def clusters_from_ids(
    keywords: Sequence[K], cluster_ids: Sequence[Sequence[str]]
) -> list[list[K]]:
    """Map model-proposed id clusters back onto keywords.

    Unknown ids are skipped and a keyword joins only the first cluster that
    names it. Keywords no cluster names stay unassigned.
    """
    by_id = {keyword.id: keyword for keyword in keywords}
    assigned: set[str] = set()
    clusters: list[list[K]] = []
    for ids in cluster_ids:
        members = []
        for keyword_id in ids:
            if keyword_id in by_id and keyword_id not in assigned:
                assigned.add(keyword_id)
                members.append(by_id[keyword_id])
        if members:
            clusters.append(members)
    return clusters


def _avg_monthly(keyword: Clusterable) -> float:
    return (keyword.metrics or {}).get("avg_monthly") or 0


def select_representative(keywords: Sequence[K]) -> K:
    """Highest monthly volume; ties go to the shorter text, then the earlier one."""
    representative = keywords[0]
    for keyword in keywords[1:]:
        volume = _avg_monthly(keyword)
        best = _avg_monthly(representative)
        if volume > best or (volume == best and len(keyword.text) < len(representative.text)):
            representative = keyword
    return representative


def coalesce_intent(keywords: Sequence[Clusterable]) -> str:
    """Intent assigned to a new cluster.

    Every cluster is currently classified as informational.
    """
    return "info"
