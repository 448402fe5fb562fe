from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, replace
from functools import cmp_to_key
from typing import Any

from src.models import CandidateFrame, PixelBuffer, SelectionPreferences
from src.sampling.similarity import SELECTION_THRESHOLD, is_similar_to_any

logger = logging.getLogger(__name__)

NeighborAnalyzer = Callable[[list[int]], list[CandidateFrame]]

BALANCED_WEIGHTS = {"static": 0.3, "subtitle": 0.25, "people": 0.25, "empty": 0.2}
FACE_BOOST_THRESHOLD = 0.6


@dataclass(frozen=True, slots=True)
class SelectionPolicy:
    """Thresholds for the substitution and diversity passes."""

    similarity_threshold: float = SELECTION_THRESHOLD
    neighborhood: int = 5
    people_threshold: float = 0.6
    subtitle_threshold: float = 0.3
    people_retention: float = 0.7
    people_blend: float = 0.9
    extra_neighbor_analyses: int = 3

    @classmethod
    def from_settings(cls, settings: Any) -> SelectionPolicy:
        return cls(
            similarity_threshold=float(settings.selection_threshold),
            neighborhood=int(settings.neighborhood),
            people_threshold=float(settings.people_threshold),
            subtitle_threshold=float(settings.subtitle_threshold),
            people_retention=float(settings.people_retention),
            people_blend=float(settings.people_blend),
            extra_neighbor_analyses=int(settings.extra_neighbor_analyses),
        )


def compute_total_score(candidate: CandidateFrame, preferences: SelectionPreferences) -> float:
    """Weighted sum of the active preference terms, plus diversity when known."""

    scores = candidate.scores
    total = 0.0
    if preferences.any_active:
        if preferences.prioritize_static:
            total += scores.static_score * 2.0
        if preferences.avoid_subtitles:
            total += (1.0 - scores.subtitle_score) * 3.0
        if preferences.prefer_people:
            total += scores.people_score * 2.0
        if preferences.prefer_faces and scores.people_score > FACE_BOOST_THRESHOLD:
            total += scores.people_score * 1.5
        if preferences.avoid_empty_frames and scores.empty_frame_score is not None:
            total += (1.0 - scores.empty_frame_score) * 2.0
    else:
        total += (
            scores.static_score * BALANCED_WEIGHTS["static"]
            + (1.0 - scores.subtitle_score) * BALANCED_WEIGHTS["subtitle"]
            + scores.people_score * BALANCED_WEIGHTS["people"]
            + (1.0 - scores.empty_frame_score) * BALANCED_WEIGHTS["empty"]
        )
    if scores.diversity_score is not None:
        total += scores.diversity_score * 3.0
    return total


def prefilter_indices(frame_total: int, max_candidates: int = 40) -> list[int]:
    """Evenly strided subset of frame indices when there are too many to analyse."""

    if frame_total <= max_candidates or max_candidates <= 0:
        return list(range(frame_total))
    step = -(-frame_total // max_candidates)
    return list(range(0, frame_total, step))


def select_optimal_frames(
    candidates: Sequence[CandidateFrame],
    count: int,
    preferences: SelectionPreferences,
    *,
    policy: SelectionPolicy | None = None,
    frames: Sequence[PixelBuffer] | None = None,
    neighbor_analyzer: NeighborAnalyzer | None = None,
    frame_total: int | None = None,
) -> list[CandidateFrame]:
    """Pick up to ``count`` candidates, returned in chronological order.

    People-heavy frames with likely subtitles are first swapped for a nearby
    subtitle-free frame that keeps most of the people score. The remaining
    slots are filled by total score, skipping frames too similar to ones
    already admitted when ``frames`` is given, then backfilled without the
    similarity check.
    """

    if count < 0:
        raise ValueError(f"count must be non-negative, got {count}")
    policy = policy or SelectionPolicy()
    scored = [replace(candidate, total_score=compute_total_score(candidate, preferences)) for candidate in candidates]
    if count == 0 or not scored:
        return []

    indices = [candidate.index for candidate in scored]
    if len(set(indices)) != len(indices):
        raise ValueError("Candidate indices must be unique within one selection.")

    total = frame_total if frame_total is not None else (len(frames) if frames is not None else max(indices) + 1)
    substituted = _substitution_pass(scored, preferences, policy, neighbor_analyzer, total)

    admitted: list[CandidateFrame] = substituted[:count]
    admitted_indices = {candidate.index for candidate in admitted}
    ranked = sorted(scored, key=lambda candidate: candidate.total_score, reverse=True)

    for candidate in ranked:
        if len(admitted) >= count:
            break
        if candidate.index in admitted_indices:
            continue
        if frames is not None and _too_similar(candidate, admitted, frames, policy.similarity_threshold):
            continue
        admitted.append(candidate)
        admitted_indices.add(candidate.index)

    for candidate in ranked:
        if len(admitted) >= count:
            break
        if candidate.index not in admitted_indices:
            admitted.append(candidate)
            admitted_indices.add(candidate.index)

    return sorted(admitted, key=lambda candidate: candidate.index)


def _substitution_pass(
    scored: list[CandidateFrame],
    preferences: SelectionPreferences,
    policy: SelectionPolicy,
    neighbor_analyzer: NeighborAnalyzer | None,
    frame_total: int,
) -> list[CandidateFrame]:
    by_index = {candidate.index: candidate for candidate in scored}
    people_frames = sorted(
        (candidate for candidate in scored if candidate.scores.people_score > policy.people_threshold),
        key=lambda candidate: candidate.scores.people_score,
        reverse=True,
    )

    chosen: list[CandidateFrame] = []
    consumed: set[int] = set()
    for original in people_frames:
        if original.index in consumed:
            continue
        if original.scores.subtitle_score < policy.subtitle_threshold:
            chosen.append(original)
            consumed.add(original.index)
            continue

        window = [
            original.index + offset
            for offset in range(-policy.neighborhood, policy.neighborhood + 1)
            if offset != 0 and 0 <= original.index + offset < frame_total
        ]
        neighbors = [by_index[index] for index in window if index in by_index and index not in consumed]
        if not neighbors and neighbor_analyzer is not None:
            neighbors = _analyze_neighbors(window, consumed, neighbor_analyzer, policy, preferences)

        alternative = _best_alternative(original, neighbors, policy)
        if alternative is None:
            chosen.append(original)
            consumed.add(original.index)
            continue

        blended_people = max(alternative.scores.people_score, original.scores.people_score * policy.people_blend)
        substitute = replace(alternative, scores=replace(alternative.scores, people_score=blended_people))
        logger.debug(
            "Substituted frame %s (subtitle %.2f) with frame %s (subtitle %.2f).",
            original.index,
            original.scores.subtitle_score,
            alternative.index,
            alternative.scores.subtitle_score,
        )
        chosen.append(substitute)
        consumed.update((original.index, alternative.index))
    return chosen


def _analyze_neighbors(
    window: list[int],
    consumed: set[int],
    neighbor_analyzer: NeighborAnalyzer,
    policy: SelectionPolicy,
    preferences: SelectionPreferences,
) -> list[CandidateFrame]:
    wanted = [index for index in window if index not in consumed][: policy.extra_neighbor_analyses]
    if not wanted:
        return []
    try:
        analyzed = neighbor_analyzer(wanted)
    except (RuntimeError, ValueError) as exc:
        logger.warning("Neighbour analysis for frames %s failed: %s", wanted, exc)
        return []
    return [replace(candidate, total_score=compute_total_score(candidate, preferences)) for candidate in analyzed]


def _best_alternative(
    original: CandidateFrame,
    neighbors: list[CandidateFrame],
    policy: SelectionPolicy,
) -> CandidateFrame | None:
    ordered = sorted(neighbors, key=cmp_to_key(_compare_alternatives))
    minimum_people = original.scores.people_score * policy.people_retention
    for candidate in ordered:
        if candidate.scores.subtitle_score < policy.subtitle_threshold and candidate.scores.people_score >= minimum_people:
            return candidate
    return None


def _compare_alternatives(first: CandidateFrame, second: CandidateFrame) -> float:
    subtitle_diff = first.scores.subtitle_score - second.scores.subtitle_score
    if abs(subtitle_diff) > 0.2:
        return subtitle_diff
    people_diff = second.scores.people_score - first.scores.people_score
    if abs(people_diff) > 0.1:
        return people_diff
    return second.scores.static_score - first.scores.static_score


def _too_similar(
    candidate: CandidateFrame,
    admitted: list[CandidateFrame],
    frames: Sequence[PixelBuffer],
    threshold: float,
) -> bool:
    if not 0 <= candidate.index < len(frames):
        return False
    others = [frames[other.index] for other in admitted if 0 <= other.index < len(frames)]
    return is_similar_to_any(frames[candidate.index], others, threshold)
