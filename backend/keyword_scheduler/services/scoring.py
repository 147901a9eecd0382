"""Priority scoring for keyword groups.

score = volume * w_volume + competition * w_competition
        + intent * w_intent + novelty * w_novelty

Each term lies in [0, 1], so the score lies in [0, sum(weights)]. The score
is rounded to 3 decimals.
"""

import math
from dataclasses import dataclass

from keyword_scheduler.schemas.settings import ScoreWeights

VOLUME_SCALE_FLOOR = 10_000
NOVELTY_CLUSTER_SIZE = 20
DEFAULT_COMPETITION_TERM = 0.5

_INTENT_AFFINITY: dict[str, frozenset[str]] = {
    "info": frozenset({"trans", "local"}),
    "trans": frozenset({"info", "local"}),
    "local": frozenset({"info", "trans"}),
    "mixed": frozenset({"info", "trans", "local"}),
}


@dataclass
class ScoringInput:
    """Aggregated metrics for one group.

    Attributes:
        avg_monthly_volumes: Positive monthly volumes of the member keywords.
        competition: Competition of the first keyword that has one.
        group_intent: Intent of the group.
        node_intent: Intent of the node the group's keywords came from.
        novelty: 1 - cluster size / 20, clamped by the scorer.
        weights: Weights for the four terms.
    """

    avg_monthly_volumes: list[float]
    competition: float | None
    group_intent: str
    node_intent: str
    novelty: float
    weights: ScoreWeights


def round3(value: float) -> float:
    """Round half up to 3 decimals."""
    return math.floor(value * 1000 + 0.5) / 1000


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, value))


def volume_term(volumes: list[float]) -> float:
    positive = [v for v in volumes if v > 0]
    if not positive:
        return 0.0
    top = max(positive)
    return min(1.0, math.log1p(top) / math.log1p(max(top, VOLUME_SCALE_FLOOR)))


def competition_term(competition: float | None) -> float:
    if competition is None or math.isnan(competition):
        return DEFAULT_COMPETITION_TERM
    return _clamp(1 - competition)


def intent_term(group_intent: str, node_intent: str) -> float:
    if group_intent == node_intent:
        return 1.0
    if group_intent == "mixed" or node_intent == "mixed":
        return 0.7
    if node_intent in _INTENT_AFFINITY.get(group_intent, frozenset()):
        return 0.4
    return 0.1


def novelty_for_size(cluster_size: int) -> float:
    return _clamp(1 - cluster_size / NOVELTY_CLUSTER_SIZE)


def compute_priority_score(scoring: ScoringInput) -> float:
    """Compute the weighted priority score for a group."""
    weights = scoring.weights
    score = (
        volume_term(scoring.avg_monthly_volumes) * weights.volume
        + competition_term(scoring.competition) * weights.competition
        + intent_term(scoring.group_intent, scoring.node_intent) * weights.intent
        + _clamp(scoring.novelty) * weights.novelty
    )
    return round3(score)
