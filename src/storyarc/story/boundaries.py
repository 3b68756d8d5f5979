"""Chapter boundary detection.

Scores every transition between adjacent events with four independent
signals and selects the cut points the chapter assembler slices on.

Signals, in evaluation order (strength is the maximum, reason the first hit):

1. Time gap: more than 90 days apart → ``min(gap / 365, 1.0)``
2. Category shift: categories differ and either is major → at least 0.7
3. Year boundary: calendar year changes → at least 0.5
4. Cluster: gap strictly inside the chapter-duration window → at least 0.4

Candidates below 0.4 are dropped. The survivors are thinned by walking them
strongest-first and keeping one only if it sits at least
``min_boundary_distance`` events away from the last boundary kept in that
walk. The distance check is against the previous kept candidate in strength
order, not against its chronological neighbours, so two close boundaries can
both survive when a stronger one between them was already kept elsewhere.

Pure computation: no I/O, no model calls.

Example:
    >>> detector = BoundaryDetector()
    >>> boundaries = detector.detect(timeline.events)
    >>> [(b.index, b.reason) for b in boundaries]
    [(14, 'Significant time gap: 142 days'), (31, 'Year boundary: 2019 → 2020')]
"""

from __future__ import annotations

import logging
import math
from typing import Sequence

from storyarc.core.models import MAJOR_CATEGORIES, ChapterBoundary, TimelineEvent

logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

SECONDS_PER_DAY = 86_400

TIME_GAP_THRESHOLD_DAYS = 90
TIME_GAP_SCALE_DAYS = 365
CATEGORY_SHIFT_STRENGTH = 0.7
YEAR_BOUNDARY_STRENGTH = 0.5
CLUSTER_STRENGTH = 0.4
MIN_BOUNDARY_STRENGTH = 0.4


def gap_days(prev: TimelineEvent, current: TimelineEvent) -> float:
    """Fractional days between two events."""
    return (current.timestamp - prev.timestamp).total_seconds() / SECONDS_PER_DAY


# =============================================================================
# Detector
# =============================================================================


class BoundaryDetector:
    """Finds chapter cut points in a sorted event sequence.

    Args:
        min_chapter_duration_days: Lower (exclusive) bound of the cluster window.
        max_chapter_duration_days: Upper (exclusive) bound of the cluster window.
        min_boundary_distance: Minimum index distance between kept boundaries.
    """

    def __init__(
        self,
        min_chapter_duration_days: float = 7,
        max_chapter_duration_days: float = 365,
        min_boundary_distance: int = 5,
    ) -> None:
        self.min_chapter_duration_days = min_chapter_duration_days
        self.max_chapter_duration_days = max_chapter_duration_days
        self.min_boundary_distance = min_boundary_distance

    def score_transition(self, prev: TimelineEvent, current: TimelineEvent) -> tuple[float, str]:
        """Return ``(strength, reason)`` for one adjacent pair.

        ``reason`` is empty when no signal fired.
        """
        gap = gap_days(prev, current)
        strength = 0.0
        reason = ""

        if gap > TIME_GAP_THRESHOLD_DAYS:
            strength = min(gap / TIME_GAP_SCALE_DAYS, 1.0)
            reason = f"Significant time gap: {math.floor(gap)} days"

        a, b = prev.category, current.category
        if a is not None and b is not None and a != b and (a in MAJOR_CATEGORIES or b in MAJOR_CATEGORIES):
            strength = max(strength, CATEGORY_SHIFT_STRENGTH)
            reason = reason or f"Major category change: {a.value} → {b.value}"

        if prev.timestamp.year != current.timestamp.year:
            strength = max(strength, YEAR_BOUNDARY_STRENGTH)
            reason = reason or f"Year boundary: {prev.timestamp.year} → {current.timestamp.year}"

        if self.min_chapter_duration_days < gap < self.max_chapter_duration_days:
            strength = max(strength, CLUSTER_STRENGTH)
            reason = reason or "Natural cluster boundary"

        return strength, reason

    def find_candidates(self, events: Sequence[TimelineEvent]) -> list[ChapterBoundary]:
        """Every transition scoring at least ``MIN_BOUNDARY_STRENGTH``, in index order."""
        candidates = []
        for i in range(1, len(events)):
            strength, reason = self.score_transition(events[i - 1], events[i])
            if strength >= MIN_BOUNDARY_STRENGTH:
                candidates.append(
                    ChapterBoundary(
                        index=i,
                        timestamp=events[i].timestamp,
                        reason=reason,
                        strength=strength,
                    )
                )
        return candidates

    def select(self, candidates: Sequence[ChapterBoundary]) -> list[ChapterBoundary]:
        """Apply the strength-ordered spacing filter and return survivors by index."""
        ranked = sorted(candidates, key=lambda c: c.strength, reverse=True)

        kept: list[ChapterBoundary] = []
        for candidate in ranked:
            if kept and abs(candidate.index - kept[-1].index) < self.min_boundary_distance:
                continue
            kept.append(candidate)

        return sorted(kept, key=lambda c: c.index)

    def detect(self, events: Sequence[TimelineEvent]) -> list[ChapterBoundary]:
        """Detect boundaries in ``events``, which must already be sorted ascending.

        Returns:
            Boundaries ordered by ascending index. Empty for fewer than two events.
        """
        candidates = self.find_candidates(events)
        boundaries = self.select(candidates)
        logger.debug(
            f"Boundary detection: {len(events)} events, "
            f"{len(candidates)} candidates, {len(boundaries)} kept"
        )
        return boundaries
