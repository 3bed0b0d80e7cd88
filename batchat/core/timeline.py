"""
Date-grouped message timeline.
"""

from datetime import date, datetime, timezone, tzinfo
from typing import Iterator, Optional, Sequence, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from batchat.models.schemas import DateSeparator, Message, TimelineMessage

TimelineEntry = Union[DateSeparator, TimelineMessage]


def format_day_label(day: date) -> str:
    """Separator label, e.g. "March 5"."""
    return f"{day.strftime('%B')} {day.day}"


def resolve_timezone(name: Optional[str]) -> tzinfo:
    if not name:
        return timezone.utc
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        return timezone.utc


class MessageTimeline:
    """
    Renderable view of a conversation's messages.

    Iterating yields ``TimelineMessage`` entries in the given order, with a
    ``DateSeparator`` wherever the calendar day changes between two
    consecutive messages. The first message gets no separator.
    Messages without a timestamp are not committed yet and are skipped.

    The view holds no derived state: each iteration walks ``messages`` from
    the start, so a new instance (or a new pass) always reflects the list
    it was built from.
    """

    def __init__(self, messages: Sequence[Message], tz: Optional[tzinfo] = None):
        self.messages = messages
        self.tz = tz or timezone.utc

    def __iter__(self) -> Iterator[TimelineEntry]:
        last_day: Optional[date] = None
        for message in self.messages:
            if not message.timestamp:
                continue
            day = datetime.fromtimestamp(message.timestamp / 1000, tz=self.tz).date()
            if last_day is not None and day != last_day:
                yield DateSeparator(label=format_day_label(day))
            last_day = day
            yield TimelineMessage(message=message)


def build_timeline(messages: Sequence[Message], tz_name: Optional[str] = None) -> MessageTimeline:
    """Build a timeline for ``messages`` (ascending by timestamp)."""
    return MessageTimeline(messages, resolve_timezone(tz_name))
