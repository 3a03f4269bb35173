"""Sponsored segment timeline and splicing into the main schedule."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence, Tuple

from domain.chat_script import (
    INVALID_MONETIZATION_CODE,
    MonetizationSegment,
    ScheduleValidationError,
    SegmentLine,
    SegmentMode,
)
from service.estimates import estimate_text_frames
from service.timing import TimedMessage, assign_timing


@dataclass(frozen=True)
class TimedSegmentLine:
    """A segment line placed relative to the segment start."""

    line: SegmentLine
    offset_frame: int
    duration_frames: int


@dataclass(frozen=True)
class SegmentTimeline:
    """Computed placement of the sponsored segment."""

    mode: SegmentMode
    start_frame: int
    duration_frames: int
    intro: TimedSegmentLine
    lines: Tuple[TimedSegmentLine, ...]
    reply_start_frame: int | None = None

    @property
    def end_frame(self) -> int:
        return self.start_frame + self.duration_frames


@dataclass(frozen=True)
class SpliceResult:
    """Main timeline after splicing, plus the segment when one was inserted."""

    timed_messages: Tuple[TimedMessage, ...]
    segment: SegmentTimeline | None


def _line_frames(line: SegmentLine, fps: int, chars_per_second: float) -> int:
    return estimate_text_frames(
        line.text, line.clip_duration_seconds, fps, chars_per_second, True
    )


def build_segment_timeline(
    segment: MonetizationSegment,
    start_frame: int,
    fps: int,
    chars_per_second: float,
) -> SegmentTimeline:
    """Lay out the intro and replies of a segment starting at ``start_frame``."""
    intro_frames = _line_frames(segment.intro, fps, chars_per_second)
    intro = TimedSegmentLine(
        line=segment.intro, offset_frame=0, duration_frames=intro_frames
    )

    if segment.mode == SegmentMode.SINGLE_REPLY:
        reply = segment.lines[0]
        if segment.reply_start_seconds is not None:
            reply_start = int(round(segment.reply_start_seconds * fps))
        else:
            reply_start = intro_frames + segment.exchange_gap_frames
        reply_frames = _line_frames(reply, fps, chars_per_second)
        return SegmentTimeline(
            mode=segment.mode,
            start_frame=start_frame,
            duration_frames=reply_start + reply_frames,
            intro=intro,
            lines=(
                TimedSegmentLine(
                    line=reply, offset_frame=reply_start, duration_frames=reply_frames
                ),
            ),
            reply_start_frame=reply_start,
        )

    timed_lines: list[TimedSegmentLine] = []
    line_end = intro_frames
    cursor = intro_frames + segment.exchange_gap_frames if intro_frames > 0 else 0
    for line in segment.lines:
        frames = _line_frames(line, fps, chars_per_second)
        timed_lines.append(
            TimedSegmentLine(line=line, offset_frame=cursor, duration_frames=frames)
        )
        line_end = cursor + frames
        cursor = line_end + segment.exchange_gap_frames

    return SegmentTimeline(
        mode=segment.mode,
        start_frame=start_frame,
        duration_frames=line_end,
        intro=intro,
        lines=tuple(timed_lines),
    )


def splice_segment(
    timed_messages: Sequence[TimedMessage],
    segment: MonetizationSegment,
    gap_frames: int,
    fps: int,
    chars_per_second: float,
    initial_delay_frames: int = 0,
    inter_message_gap_frames: int = 0,
    prefer_clip_duration: bool = False,
) -> SpliceResult:
    """Insert the segment and re-time every message that follows it."""
    insert_index = segment.insert_after_index
    if insert_index > len(timed_messages):
        raise ScheduleValidationError(
            INVALID_MONETIZATION_CODE,
            f"insert_after_index {insert_index} exceeds {len(timed_messages)} messages",
        )

    before = tuple(timed_messages[:insert_index])
    after = timed_messages[insert_index:]
    # A carried text message can end while an earlier clip still plays.
    anchor_frame = (
        max(timed.end_frame for timed in before) if before else initial_delay_frames
    )
    timeline = build_segment_timeline(
        segment, anchor_frame + gap_frames, fps, chars_per_second
    )
    if timeline.duration_frames <= 0:
        return SpliceResult(timed_messages=tuple(timed_messages), segment=None)

    retimed = assign_timing(
        [timed.message for timed in after],
        fps=fps,
        chars_per_second=chars_per_second,
        initial_delay_frames=timeline.end_frame + gap_frames,
        inter_message_gap_frames=inter_message_gap_frames,
        prefer_clip_duration=prefer_clip_duration,
    )
    return SpliceResult(
        timed_messages=before + retimed.timed_messages, segment=timeline
    )
