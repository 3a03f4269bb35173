"""Tests for the sponsored segment timeline and splice."""

from __future__ import annotations

import pytest

from domain.chat_script import (
    INVALID_MONETIZATION_CODE,
    Message,
    MonetizationSegment,
    ScheduleValidationError,
    SegmentLine,
    SegmentMode,
    Sender,
)
from service.monetization import build_segment_timeline, splice_segment
from service.timing import TimedMessage, assign_timing


def conversation(*texts: str) -> list[Message]:
    """Build a single conversation from plain texts."""
    return [
        Message(
            message_id=index,
            text=text_value,
            sender=Sender.ME if index % 2 else Sender.THEM,
            conversation_id=0,
            starts_conversation=index == 0,
        )
        for index, text_value in enumerate(texts)
    ]


def single_reply_segment(insert_after_index: int) -> MonetizationSegment:
    """A 1.5s intro with a 1.0s reply fixed 3.0s after segment start."""
    return MonetizationSegment(
        mode=SegmentMode.SINGLE_REPLY,
        intro=SegmentLine(text="Today's sponsor", clip_duration_seconds=1.5),
        lines=(SegmentLine(text="Nice", sender=Sender.ME, clip_duration_seconds=1.0),),
        insert_after_index=insert_after_index,
        reply_start_seconds=3.0,
    )


def test_single_reply_uses_fixed_reply_start() -> None:
    """The segment lasts until the reply fixed after the segment start ends."""
    timeline = build_segment_timeline(
        single_reply_segment(0), start_frame=100, fps=30, chars_per_second=18.0
    )

    assert timeline.intro.duration_frames == 45
    assert timeline.reply_start_frame == 90
    assert timeline.lines[0].offset_frame == 90
    assert timeline.duration_frames == 3 * 30 + 30
    assert timeline.end_frame == 220


def test_single_reply_defaults_to_after_intro() -> None:
    """Without a fixed start the reply follows the intro and the gap."""
    segment = MonetizationSegment(
        mode=SegmentMode.SINGLE_REPLY,
        intro=SegmentLine(text="intro", clip_duration_seconds=1.0),
        lines=(SegmentLine(text="reply", clip_duration_seconds=1.0),),
        insert_after_index=0,
        exchange_gap_frames=6,
    )
    timeline = build_segment_timeline(segment, 0, fps=30, chars_per_second=18.0)

    assert timeline.reply_start_frame == 36
    assert timeline.duration_frames == 66


def test_exchange_lines_follow_intro() -> None:
    """Exchange lines play one after another behind the intro."""
    segment = MonetizationSegment(
        mode=SegmentMode.EXCHANGE,
        intro=SegmentLine(text="Sponsor"),
        lines=(
            SegmentLine(text="a", clip_duration_seconds=1.0),
            SegmentLine(text="b", sender=Sender.ME, clip_duration_seconds=1.0),
        ),
        insert_after_index=0,
        exchange_gap_frames=5,
    )
    timeline = build_segment_timeline(segment, 0, fps=30, chars_per_second=18.0)

    assert timeline.intro.duration_frames == 12
    assert [line.offset_frame for line in timeline.lines] == [17, 52]
    assert timeline.duration_frames == 82
    assert timeline.reply_start_frame is None


def test_splice_shifts_following_messages() -> None:
    """Messages after the insert point start once the segment has ended."""
    messages = conversation("Hi", "How are you", "Good")
    timed = assign_timing(messages, fps=30, chars_per_second=18.0).timed_messages
    result = splice_segment(
        timed, single_reply_segment(2), gap_frames=0, fps=30, chars_per_second=18.0
    )

    assert result.segment is not None
    assert result.segment.start_frame == 23
    assert result.segment.duration_frames == 120
    assert [item.appear_frame for item in result.timed_messages] == [0, 4, 143]


def test_splice_before_first_message_anchors_on_initial_delay() -> None:
    """Inserting ahead of everything starts the segment at the initial delay."""
    messages = conversation("Hi")
    timed = assign_timing(
        messages, fps=30, chars_per_second=18.0, initial_delay_frames=10
    ).timed_messages
    result = splice_segment(
        timed,
        single_reply_segment(0),
        gap_frames=5,
        fps=30,
        chars_per_second=18.0,
        initial_delay_frames=10,
    )

    assert result.segment is not None
    assert result.segment.start_frame == 15
    assert result.timed_messages[0].appear_frame == 15 + 120 + 5


def test_empty_segment_is_not_spliced() -> None:
    """A segment with no duration leaves the timeline untouched."""
    messages = conversation("Hi", "Yo")
    timed = assign_timing(messages, fps=30, chars_per_second=18.0).timed_messages
    segment = MonetizationSegment(
        mode=SegmentMode.EXCHANGE,
        intro=SegmentLine(text=""),
        lines=(),
        insert_after_index=1,
    )
    result = splice_segment(timed, segment, gap_frames=0, fps=30, chars_per_second=18.0)

    assert result.segment is None
    assert result.timed_messages == timed


def test_splice_rejects_index_past_end() -> None:
    """The insert index cannot exceed the message count."""
    timed = assign_timing(conversation("Hi"), fps=30, chars_per_second=18.0).timed_messages

    with pytest.raises(ScheduleValidationError) as excinfo:
        splice_segment(
            timed, single_reply_segment(5), gap_frames=0, fps=30, chars_per_second=18.0
        )
    assert excinfo.value.code == INVALID_MONETIZATION_CODE


def test_splice_waits_for_clip_still_playing() -> None:
    """The segment starts after the longest-running message before it."""
    clip = Message(0, "first", Sender.THEM, 0, True, clip_duration_seconds=2.0)
    text_message = Message(1, "hi", Sender.ME, 0, False)
    timed = (
        TimedMessage(message=clip, appear_frame=0, duration_frames=60),
        TimedMessage(message=text_message, appear_frame=0, duration_frames=4),
    )
    result = splice_segment(
        timed, single_reply_segment(2), gap_frames=0, fps=30, chars_per_second=18.0
    )

    assert result.segment is not None
    assert result.segment.start_frame == 60
