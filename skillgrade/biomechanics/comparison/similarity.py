"""Candidate-vs-reference similarity for pose sequences.

Both sequences are hip-centred independently in frame-relative unit space,
split into phases, and compared phase by phase:
- pose similarity: mean of ``max(0, 1 - dist / radius)`` over jointly usable joints
- phase similarity: mean pose similarity over resampled frame pairs
- overall: weighted sum of phase similarities (0.2 / 0.6 / 0.2 by default)
- timing: ratio of sequence lengths
- key-point deviations: joints ranked by mean positional displacement
"""

from __future__ import annotations

import math
from typing import Dict, List, Mapping, Optional, Protocol, Sequence, Tuple

import numpy as np

from skillgrade.biomechanics import config
from skillgrade.biomechanics.config import BIOMECHANICS_LOGGER as logger, ComparisonWeights
from skillgrade.biomechanics.metrics.normalization import normalize_sequence
from skillgrade.biomechanics.metrics.phase_detection import segment_phases
from skillgrade.models import ComparisonResult, Frame, Joint, NormalizedFrame

PHASE_NAMES = ("preparation", "execution", "follow_through")


class Resampler(Protocol):
    """Maps two phase lengths onto the index pairs to compare."""

    def pairs(self, n_a: int, n_b: int) -> List[Tuple[int, int]]:
        ...


class NearestProportionalResampler:
    """Index ``i`` of the shorter phase pairs with ``floor(i / n_short * n_long)`` of the longer."""

    def pairs(self, n_a: int, n_b: int) -> List[Tuple[int, int]]:
        if n_a <= 0 or n_b <= 0:
            return []
        n_short, n_long = min(n_a, n_b), max(n_a, n_b)
        mapped = [(i, int(math.floor(i / n_short * n_long))) for i in range(n_short)]
        if n_a <= n_b:
            return mapped
        return [(j, i) for i, j in mapped]


def _joint_masks(a: NormalizedFrame, b: NormalizedFrame) -> np.ndarray:
    return a.usable & b.usable


def pose_similarity(a: NormalizedFrame, b: NormalizedFrame, radius: Optional[float] = None) -> float:
    """Similarity in [0, 1] of two body-centred frames.

    Exactly 0 when fewer than ``MIN_SIMILARITY_JOINTS`` joints are usable in both.
    """
    d = config.SIMILARITY_RADIUS if radius is None else float(radius)
    both = _joint_masks(a, b)
    if int(both.sum()) < max(1, int(config.MIN_SIMILARITY_JOINTS)):
        return 0.0
    dist = np.hypot(*(a.xy[both] - b.xy[both]).T)
    return float(np.mean(np.maximum(0.0, 1.0 - dist / d)))


def phase_similarity(
    candidate: Sequence[NormalizedFrame],
    reference: Sequence[NormalizedFrame],
    *,
    resampler: Optional[Resampler] = None,
    radius: Optional[float] = None,
) -> float:
    """Mean pose similarity over resampled pairs; neutral when either side is empty."""
    if not candidate or not reference:
        return float(config.NEUTRAL_PHASE_SCORE)
    pairs = (resampler or NearestProportionalResampler()).pairs(len(candidate), len(reference))
    scores = [pose_similarity(candidate[i], reference[j], radius) for i, j in pairs]
    return float(np.mean(scores)) if scores else float(config.NEUTRAL_PHASE_SCORE)


def timing_score(n_candidate: int, n_reference: int) -> float:
    if n_candidate <= 0 or n_reference <= 0:
        return 0.0
    return min(n_candidate, n_reference) / max(n_candidate, n_reference)


def key_point_deviations(
    candidate: Sequence[NormalizedFrame],
    reference: Sequence[NormalizedFrame],
    top_n: Optional[int] = None,
) -> List[Tuple[str, float]]:
    """Joints ranked by mean displacement over positionally paired frames."""
    limit = config.TOP_DEVIATIONS if top_n is None else int(top_n)
    n = min(len(candidate), len(reference))
    totals = np.zeros(len(Joint), dtype=float)
    counts = np.zeros(len(Joint), dtype=int)
    for idx in range(n):
        a, b = candidate[idx], reference[idx]
        both = _joint_masks(a, b)
        if not both.any():
            continue
        totals[both] += np.hypot(*(a.xy[both] - b.xy[both]).T)
        counts[both] += 1
    ranked = [
        (Joint(i).label, float(totals[i] / counts[i])) for i in range(len(Joint)) if counts[i] > 0
    ]
    ranked.sort(key=lambda item: item[1], reverse=True)
    return ranked[: max(0, limit)]


def _weighted_overall(phase_scores: Mapping[str, float], weights: ComparisonWeights) -> float:
    weight_map = weights.as_dict()
    return float(sum(weight_map[name] * phase_scores[name] for name in PHASE_NAMES))


def compare_sequences(
    candidate: Sequence[Frame],
    reference: Sequence[Frame],
    *,
    resampler: Optional[Resampler] = None,
    threshold: Optional[float] = None,
    radius: Optional[float] = None,
    weights: Optional[ComparisonWeights] = None,
) -> ComparisonResult:
    """Compare a candidate performance against an expert reference.

    Neither input sequence is mutated. The overall score is the fixed
    weighted sum of the three phase scores.
    """
    thr = config.COMPARISON_CONFIDENCE_THRESHOLD if threshold is None else float(threshold)
    cand_norm = normalize_sequence(candidate, thr, units="unit")
    ref_norm = normalize_sequence(reference, thr, units="unit")

    cand_split = segment_phases(cand_norm, thr).phases()
    ref_split = segment_phases(ref_norm, thr).phases()

    phase_scores: Dict[str, float] = {
        name: phase_similarity(cand_split[name], ref_split[name], resampler=resampler, radius=radius)
        for name in PHASE_NAMES
    }
    overall = _weighted_overall(phase_scores, weights or config.PHASE_WEIGHTS)
    timing = timing_score(len(cand_norm), len(ref_norm))
    deviations = key_point_deviations(cand_norm, ref_norm)

    logger.debug(
        "Comparison: overall=%.3f timing=%.3f phases=%s",
        overall,
        timing,
        {k: round(v, 3) for k, v in phase_scores.items()},
    )
    return ComparisonResult(
        overall_similarity=overall,
        phase_scores=phase_scores,
        timing_score=timing,
        key_point_deviations=tuple(deviations),
    )


__all__ = [
    "PHASE_NAMES",
    "Resampler",
    "NearestProportionalResampler",
    "pose_similarity",
    "phase_similarity",
    "timing_score",
    "key_point_deviations",
    "compare_sequences",
]
