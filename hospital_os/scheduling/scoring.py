"""Slot scoring and ranking."""

import logging
import math
from dataclasses import dataclass
from typing import Optional

from hospital_os.scheduling.base import InvalidScoreError, Scorer
from hospital_os.scheduling.candidates import SlotCandidate
from hospital_os.scheduling.features import SlotFeatures

logger = logging.getLogger(__name__)

DEFAULT_WEIGHTS: dict[str, float] = {
    "load_headroom": 0.20,
    "demand_headroom": 0.15,
    "specialization": 0.20,
    "break_proximity": 0.15,
    "resource_availability": 0.10,
    "preferred_type": 0.05,
    "earliness": 0.15,
}


@dataclass(frozen=True)
class ScoredCandidate:
    candidate: SlotCandidate
    score: float


class HeuristicScorer(Scorer):
    """Deterministic weighted mean of bounded "goodness" terms.

    Earliness (closeness to the preferred date) is weighted up with urgency,
    and slots on public holidays are halved.
    """

    def __init__(self, weights: Optional[dict[str, float]] = None) -> None:
        self.weights = {**DEFAULT_WEIGHTS, **(weights or {})}
        unknown = set(self.weights) - set(DEFAULT_WEIGHTS)
        if unknown:
            raise ValueError(f"Unknown scoring weights: {sorted(unknown)}")
        if any(w < 0 for w in self.weights.values()) or sum(self.weights.values()) <= 0:
            raise ValueError("Scoring weights must be non-negative with a positive sum")

    def score(self, features: SlotFeatures) -> float:
        terms = {
            "load_headroom": 1.0 - features.load_ratio,
            "demand_headroom": 1.0 - features.demand,
            "specialization": features.specialization_match,
            "break_proximity": features.break_proximity,
            "resource_availability": features.resource_availability,
            "preferred_type": features.preferred_type_match,
            "earliness": 1.0 - features.days_out,
        }
        weights = dict(self.weights)
        weights["earliness"] *= 1.0 + 2.0 * features.urgency

        total = sum(weights[k] * terms[k] for k in terms) / sum(weights.values())
        if features.holiday:
            total *= 0.5
        return min(max(total, 0.0), 1.0)


def validate_score(value: float, scorer: Scorer) -> float:
    """Reject scores outside [0, 1]; a broken scorer must not silently mis-rank."""
    try:
        value = float(value)
    except (TypeError, ValueError) as e:
        raise InvalidScoreError(f"{scorer.name} returned a non-numeric score: {value!r}") from e
    if math.isnan(value) or not 0.0 <= value <= 1.0:
        raise InvalidScoreError(f"{scorer.name} returned score {value} outside [0, 1]")
    return value


def rank_candidates(
    scored: list[ScoredCandidate],
    threshold: float = 0.6,
    limit: int = 10,
) -> list[ScoredCandidate]:
    """Keep scores above *threshold*, best first, earlier start on ties."""
    kept = [s for s in scored if s.score > threshold]
    kept.sort(key=lambda s: (-s.score, s.candidate.start_time, s.candidate.provider_id))
    if len(kept) < len(scored):
        logger.debug("Discarded %d candidates at or below %.2f", len(scored) - len(kept), threshold)
    return kept[:limit]
