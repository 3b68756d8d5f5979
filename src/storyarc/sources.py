"""Event sources and enrichment.

The pipeline's first two stages depend on a ``TimelineSource``: something that
can load a user's events and fill in missing categories. Collection and
normalization from external providers is out of scope; this module provides
a JSON file adapter, an in-memory source, and a keyword categorizer used for
enrichment by both.

JSON layout for ``JsonTimelineSource`` (``<root>/<user_id>.json``)::

    {"events": [
        {"id": "e1", "timestamp": "2021-06-01T09:00:00Z",
         "content": "Started at Acme", "category": "career"},
        ...
    ]}

A bare list of event objects is accepted too.
"""

from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from typing import Any, Iterable, Protocol, Sequence, runtime_checkable

from pydantic import ValidationError

from storyarc.core.models import BiographyCategory, TimelineEvent
from storyarc.core.timeline import Timeline

logger = logging.getLogger(__name__)


class SourceError(Exception):
    """A timeline could not be loaded."""


@runtime_checkable
class TimelineSource(Protocol):
    """Anything that can supply and enrich a user's timeline."""

    def load_timeline(self, user_id: str) -> Timeline: ...

    def enrich(self, timeline: Timeline) -> Timeline: ...


# =============================================================================
# Keyword Categorizer
# =============================================================================


DEFAULT_RULES: list[tuple[BiographyCategory, tuple[str, ...]]] = [
    (BiographyCategory.EDUCATION, ("school", "university", "college", "graduat", "exam", "class", "degree", "course")),
    (BiographyCategory.CAREER, ("job", "work", "hired", "promot", "office", "interview", "career", "colleague")),
    (BiographyCategory.FAMILY, ("mom", "dad", "mother", "father", "sister", "brother", "baby", "family", "grandm", "grandp")),
    (BiographyCategory.RELATIONSHIPS, ("friend", "girlfriend", "boyfriend", "wedding", "married", "first date", "partner")),
    (BiographyCategory.TRAVEL, ("trip", "flight", "travel", "vacation", "holiday", "airport", "hotel", "beach")),
    (BiographyCategory.ACHIEVEMENTS, ("award", "won the", "finished", "marathon", "certif", "milestone", "published")),
    (BiographyCategory.HEALTH, ("hospital", "doctor", "surgery", "sick", "diagnos", "therapy", "gym")),
    (BiographyCategory.HOBBIES, ("guitar", "painting", "hiking", "cooking", "gaming", "reading", "photography")),
    (BiographyCategory.SIGNIFICANT_EVENTS, ("moved", "funeral", "passed away", "born", "bought a house", "divorce")),
]


class KeywordCategorizer:
    """Assigns a category to uncategorized events from keyword rules.

    Rules are checked in declaration order and the first rule with a matching
    keyword wins. Keywords match at word starts, case-insensitively, so
    ``"graduat"`` matches "graduated" and "graduation". Events that already
    have a category are left alone.
    """

    def __init__(self, rules: Sequence[tuple[BiographyCategory, Iterable[str]]] | None = None) -> None:
        self._rules = [
            (category, re.compile(r"\b(?:" + "|".join(re.escape(k) for k in keywords) + ")", re.IGNORECASE))
            for category, keywords in (rules or DEFAULT_RULES)
        ]

    def categorize(self, text: str) -> BiographyCategory | None:
        for category, pattern in self._rules:
            if pattern.search(text):
                return category
        return None

    def enrich(self, timeline: Timeline) -> Timeline:
        """Return a timeline whose uncategorized events have a category where one matched."""
        enriched = []
        assigned = 0
        for event in timeline:
            if event.category is None:
                category = self.categorize(event.content)
                if category is not None:
                    event = event.model_copy(update={"category": category})
                    assigned += 1
            enriched.append(event)

        logger.debug(f"Categorized {assigned} of {len(timeline)} events for {timeline.user_id}")
        return timeline.with_events(enriched)


# =============================================================================
# Sources
# =============================================================================


def parse_events(records: Iterable[Any], user_id: str, origin: str = "input") -> list[TimelineEvent]:
    """Validate raw event dicts, skipping (and logging) invalid ones."""
    events = []
    for i, record in enumerate(records):
        if not isinstance(record, dict):
            logger.warning(f"Skipping record {i} in {origin}: not an object")
            continue
        data = dict(record)
        if not data.get("user_id") and not data.get("userId"):
            data["user_id"] = user_id
        try:
            events.append(TimelineEvent.model_validate(data))
        except ValidationError as e:
            logger.warning(f"Skipping record {i} in {origin}: {e.error_count()} validation error(s)")
    return events


class JsonTimelineSource:
    """Loads ``<root>/<user_id>.json`` and enriches with a ``KeywordCategorizer``."""

    def __init__(self, root: Path | str, categorizer: KeywordCategorizer | None = None) -> None:
        self.root = Path(root)
        self.categorizer = categorizer or KeywordCategorizer()

    def path_for(self, user_id: str) -> Path:
        if not user_id or "/" in user_id or "\\" in user_id or user_id.startswith("."):
            raise SourceError(f"Invalid user id: {user_id!r}")
        return self.root / f"{user_id}.json"

    def load_timeline(self, user_id: str) -> Timeline:
        """Read and validate a user's events.

        Raises:
            SourceError: If the file is missing, unreadable or not JSON.
        """
        path = self.path_for(user_id)
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError as e:
            raise SourceError(f"No events file for user {user_id}: {path}") from e
        except (OSError, json.JSONDecodeError) as e:
            raise SourceError(f"Failed to read events for user {user_id}: {e}") from e

        return load_timeline_data(data, user_id, origin=str(path))

    def enrich(self, timeline: Timeline) -> Timeline:
        return self.categorizer.enrich(timeline)


def load_timeline_data(data: Any, user_id: str = "", origin: str = "input") -> Timeline:
    """Build a timeline from decoded JSON: a list or an ``{"events": [...]}`` object.

    Raises:
        SourceError: If ``data`` has neither shape.
    """
    if isinstance(data, dict):
        user_id = user_id or str(data.get("user_id") or data.get("userId") or "")
        records = data.get("events")
    else:
        records = data
    if not isinstance(records, list):
        raise SourceError(f"Expected a list of events in {origin}")

    events = parse_events(records, user_id, origin)
    logger.info(f"Loaded {len(events)} events from {origin}")
    return Timeline(user_id, events)


class InMemoryTimelineSource:
    """Serves timelines from a dict of ``user_id -> events``."""

    def __init__(
        self,
        events_by_user: dict[str, Iterable[TimelineEvent]] | None = None,
        categorizer: KeywordCategorizer | None = None,
    ) -> None:
        self._events = {uid: list(evts) for uid, evts in (events_by_user or {}).items()}
        self.categorizer = categorizer or KeywordCategorizer()

    def add(self, user_id: str, events: Iterable[TimelineEvent]) -> None:
        self._events.setdefault(user_id, []).extend(events)

    def load_timeline(self, user_id: str) -> Timeline:
        if user_id not in self._events:
            raise SourceError(f"Unknown user: {user_id}")
        return Timeline(user_id, self._events[user_id])

    def enrich(self, timeline: Timeline) -> Timeline:
        return self.categorizer.enrich(timeline)
