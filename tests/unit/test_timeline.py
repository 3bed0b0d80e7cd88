"""
Unit tests for the date-grouped message timeline.
"""

from datetime import date, timedelta, timezone

from batchat.core.timeline import MessageTimeline, build_timeline, format_day_label, resolve_timezone
from batchat.models.schemas import DateSeparator, Message, TimelineMessage

DAY_MS = 24 * 60 * 60 * 1000
MARCH_5_NOON = 1_709_640_000_000


def make_message(message_id: str, timestamp, text: str = "hi") -> Message:
    return Message(
        id=message_id,
        text=text,
        senderId="alice",
        senderName="Alice",
        timestamp=timestamp,
    )


def kinds(timeline) -> list:
    return [item.kind for item in timeline]


class TestFormatDayLabel:
    def test_month_and_day(self):
        assert format_day_label(date(2024, 3, 5)) == "March 5"

    def test_no_zero_padding(self):
        assert format_day_label(date(2024, 12, 1)) == "December 1"


class TestMessageTimeline:
    """Tests for separator insertion."""

    def test_empty(self):
        assert list(MessageTimeline([])) == []

    def test_single_day_has_no_separator(self):
        messages = [make_message("m1", MARCH_5_NOON), make_message("m2", MARCH_5_NOON + 60_000)]

        assert kinds(MessageTimeline(messages)) == ["message", "message"]

    def test_separator_on_day_change(self):
        messages = [
            make_message("m1", MARCH_5_NOON),
            make_message("m2", MARCH_5_NOON + 60_000),
            make_message("m3", MARCH_5_NOON + DAY_MS),
        ]

        items = list(MessageTimeline(messages))

        assert kinds(items) == ["message", "message", "date", "message"]
        assert items[2] == DateSeparator(label="March 6")

    def test_three_days_two_separators(self):
        messages = [make_message(f"m{day}", MARCH_5_NOON + day * DAY_MS) for day in range(3)]

        items = list(MessageTimeline(messages))

        separators = [index for index, item in enumerate(items) if isinstance(item, DateSeparator)]
        assert separators == [1, 3]
        assert [items[i].label for i in separators] == ["March 6", "March 7"]
        assert [items[i + 1].message.id for i in separators] == ["m1", "m2"]

    def test_messages_keep_order(self):
        messages = [make_message(f"m{i}", MARCH_5_NOON + i) for i in range(3)]

        items = [item for item in MessageTimeline(messages) if isinstance(item, TimelineMessage)]

        assert [item.message.id for item in items] == ["m0", "m1", "m2"]

    def test_untimestamped_messages_skipped(self):
        messages = [
            make_message("m1", MARCH_5_NOON),
            make_message("pending", None),
            make_message("m2", MARCH_5_NOON + DAY_MS),
        ]

        items = list(MessageTimeline(messages))

        assert kinds(items) == ["message", "date", "message"]
        assert [item.message.id for item in items if isinstance(item, TimelineMessage)] == ["m1", "m2"]

    def test_iterating_twice_gives_same_result(self):
        timeline = MessageTimeline([make_message("m1", MARCH_5_NOON), make_message("m2", MARCH_5_NOON + DAY_MS)])

        assert list(timeline) == list(timeline)

    def test_new_view_reflects_new_list(self):
        messages = [make_message("m1", MARCH_5_NOON)]
        first = list(MessageTimeline(messages))

        messages.append(make_message("m2", MARCH_5_NOON + DAY_MS))
        second = list(MessageTimeline(messages))

        assert kinds(first) == ["message"]
        assert kinds(second) == ["message", "date", "message"]

    def test_day_boundary_follows_timezone(self):
        # 2024-03-05 23:30 UTC is already March 6 at UTC+9
        late = 1_709_681_400_000
        messages = [make_message("m1", MARCH_5_NOON), make_message("m2", late)]

        utc_items = list(MessageTimeline(messages, timezone.utc))
        plus_nine = list(MessageTimeline(messages, timezone(timedelta(hours=9))))

        assert kinds(utc_items) == ["message", "message"]
        assert kinds(plus_nine) == ["message", "date", "message"]
        assert plus_nine[1].label == "March 6"

    def test_build_timeline_uses_named_zone(self):
        items = list(build_timeline([make_message("m1", MARCH_5_NOON), make_message("m2", MARCH_5_NOON + DAY_MS)], "UTC"))

        assert kinds(items) == ["message", "date", "message"]


class TestResolveTimezone:
    def test_unknown_zone_falls_back_to_utc(self):
        assert resolve_timezone("Not/AZone") == timezone.utc

    def test_empty_is_utc(self):
        assert resolve_timezone(None) == timezone.utc
