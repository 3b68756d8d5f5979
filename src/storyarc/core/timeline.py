"""Chronologically ordered event container.

Every algorithm in ``storyarc.story`` assumes ascending timestamps. A
``Timeline`` guarantees that ordering on construction so callers never have to
remember to sort.
"""

from __future__ import annotations

from datetime import datetime
from typing import Iterable, Iterator

from pydantic import BaseModel, computed_field

from storyarc.core.models import TimelineEvent


class DateRange(BaseModel):
    """Inclusive span between two instants.

    Attributes:
        start: Earliest timestamp.
        end: Latest timestamp.
    """

    start: datetime
    end: datetime

    @computed_field
    @property
    def days(self) -> int:
        """Whole days between start and end."""
        return (self.end - self.start).days

    def contains(self, moment: datetime) -> bool:
        return self.start <= moment <= self.end


class Timeline:
    """A user's events, sorted ascending by timestamp.

    The sort is stable, so events sharing a timestamp keep their input order.

    Example:
        >>> timeline = Timeline("u1", events)
        >>> len(timeline)
        42
        >>> timeline.date_range.days
        1095
    """

    def __init__(self, user_id: str = "", events: Iterable[TimelineEvent] | None = None) -> None:
        self.user_id = user_id
        self._events: list[TimelineEvent] = sorted(events or [], key=lambda e: e.timestamp)
        self._by_id: dict[str, TimelineEvent] = {e.id: e for e in self._events}
        if not self.user_id and self._events:
            self.user_id = self._events[0].user_id

    @property
    def events(self) -> list[TimelineEvent]:
        """A copy of the sorted event list."""
        return list(self._events)

    @property
    def date_range(self) -> DateRange | None:
        """Span from first to last event, or None when empty."""
        if not self._events:
            return None
        return DateRange(start=self._events[0].timestamp, end=self._events[-1].timestamp)

    def get_event(self, event_id: str) -> TimelineEvent | None:
        return self._by_id.get(event_id)

    def with_events(self, events: Iterable[TimelineEvent]) -> "Timeline":
        """A new timeline for the same user holding ``events``."""
        return Timeline(self.user_id, events)

    def __len__(self) -> int:
        return len(self._events)

    def __iter__(self) -> Iterator[TimelineEvent]:
        return iter(self._events)

    def __bool__(self) -> bool:
        return bool(self._events)

    def __repr__(self) -> str:
        return f"Timeline(user_id={self.user_id!r}, events={len(self._events)})"
