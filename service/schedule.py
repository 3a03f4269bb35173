"""Schedule construction: timing, pagination and screen frame ranges."""

from __future__ import annotations

from dataclasses import dataclass, field
import logging
from typing import Any, Mapping, Sequence, Tuple

from domain.chat_script import (
    INVALID_MONETIZATION_CODE,
    SCREEN_RANGE_CODE,
    Message,
    MonetizationSegment,
    ScheduleConfig,
    ScheduleInvariantError,
    ScheduleValidationError,
    validate_message_stream,
)
from service.monetization import SegmentTimeline, TimedSegmentLine, splice_segment
from service.pagination import Screen, paginate, single_screen_fallback
from service.schedule_cache import ScheduleCache
from service.timing import (
    TimedMessage,
    assign_timing,
    check_monotonic,
    check_no_audio_overlap,
    resolve_audio_overlap,
)

LOGGER = logging.getLogger("chat_schedule.schedule")


@dataclass(frozen=True)
class ScreenFrameRange:
    """Frames during which a screen is on display."""

    start_frame: int
    end_frame: int
    plays_intro: bool
    plays_outro: bool


@dataclass(frozen=True)
class ScheduleDiagnostic:
    """A self-healed internal failure reported alongside the schedule."""

    code: str
    message: str
    context: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Schedule:
    """Authoritative render plan for a chat video."""

    timed_messages: Tuple[TimedMessage, ...]
    screens: Tuple[Screen, ...]
    screen_ranges: Tuple[ScreenFrameRange, ...]
    segment: SegmentTimeline | None
    total_frames: int
    diagnostics: Tuple[ScheduleDiagnostic, ...] = ()


def compute_screen_ranges(
    screens: Sequence[Screen],
    timed_messages: Sequence[TimedMessage],
    trailing_buffer_frames: int,
    outro_frames: int = 0,
    intro_frames: int = 0,
    segment: SegmentTimeline | None = None,
    min_terminal_screen_frames: int = 0,
) -> Tuple[ScreenFrameRange, ...]:
    """Derive each screen's frame range from its messages' timing.

    Screens are matched to timing by message id. A screen plays its outro
    when it is the last one or the next screen opens a conversation, unless
    it hands over to the sponsored segment instead.
    """
    timed_by_id = {timed.message.message_id: timed for timed in timed_messages}
    ranges: list[ScreenFrameRange] = []

    for index, screen in enumerate(screens):
        first = timed_by_id[screen.messages[0].message_id]
        last = timed_by_id[screen.messages[-1].message_id]
        start_frame = first.appear_frame
        last_end_frame = last.end_frame
        is_last = index == len(screens) - 1

        next_start: int | None = None
        next_starts_conversation = False
        if not is_last:
            next_first = screens[index + 1].messages[0]
            next_start = timed_by_id[next_first.message_id].appear_frame
            next_starts_conversation = next_first.starts_conversation

        hands_over_to_segment = (
            segment is not None
            and last_end_frame + trailing_buffer_frames <= segment.start_frame
            and (next_start is None or next_start >= segment.start_frame)
        )
        plays_outro = (
            (is_last or next_starts_conversation)
            and outro_frames > 0
            and not hands_over_to_segment
        )

        if plays_outro:
            end_frame = last_end_frame + outro_frames
        elif next_start is not None:
            end_frame = next_start
        else:
            end_frame = last_end_frame + trailing_buffer_frames
        if is_last:
            end_frame = max(
                end_frame,
                last_end_frame + trailing_buffer_frames,
                start_frame + min_terminal_screen_frames,
            )

        ranges.append(
            ScreenFrameRange(
                start_frame=start_frame,
                end_frame=end_frame,
                plays_intro=intro_frames > 0
                and (index == 0 or screen.messages[0].starts_conversation),
                plays_outro=plays_outro,
            )
        )

    return tuple(ranges)


def check_screen_ranges(ranges: Sequence[ScreenFrameRange]) -> None:
    """Raise on negative, inverted or out-of-order screen ranges."""
    previous_start = 0
    for index, frame_range in enumerate(ranges):
        if (
            frame_range.start_frame < previous_start
            or frame_range.end_frame < frame_range.start_frame
        ):
            raise ScheduleInvariantError(
                SCREEN_RANGE_CODE,
                f"screen {index} has invalid frame range "
                f"{frame_range.start_frame}..{frame_range.end_frame}",
                {
                    "screen_count": len(ranges),
                    "screen_index": index,
                    "start_frame": frame_range.start_frame,
                    "end_frame": frame_range.end_frame,
                    "previous_start_frame": previous_start,
                },
            )
        previous_start = frame_range.start_frame


def finalize_total_frames(
    timed_messages: Sequence[TimedMessage],
    screen_ranges: Sequence[ScreenFrameRange],
    segment_end_frame: int,
    outro_frames: int,
    trailing_buffer_frames: int,
    timeline_total_frames: int = 0,
) -> int:
    """Reconcile message, segment and screen timing into one frame count."""
    if timed_messages:
        natural_end = timed_messages[-1].end_frame + trailing_buffer_frames
    else:
        natural_end = trailing_buffer_frames
    total_frames = max(timeline_total_frames, natural_end, segment_end_frame)

    terminal = screen_ranges[-1] if screen_ranges else None
    if terminal is not None and terminal.plays_outro:
        total_frames += outro_frames

    floor = natural_end if terminal is None else max(natural_end, terminal.end_frame)
    return max(total_frames, floor)


def _record(
    diagnostics: list[ScheduleDiagnostic], exc: ScheduleInvariantError
) -> None:
    LOGGER.error("%s: %s", exc.code, str(exc).strip())
    diagnostics.append(
        ScheduleDiagnostic(code=exc.code, message=str(exc), context=exc.context)
    )


def _fallback_ranges(
    timed_messages: Sequence[TimedMessage],
    trailing_buffer_frames: int,
    intro_frames: int,
) -> Tuple[ScreenFrameRange, ...]:
    if not timed_messages:
        return ()
    start_frame = min(timed.appear_frame for timed in timed_messages)
    end_frame = max(timed.end_frame for timed in timed_messages)
    return (
        ScreenFrameRange(
            start_frame=start_frame,
            end_frame=end_frame + trailing_buffer_frames,
            plays_intro=intro_frames > 0,
            plays_outro=False,
        ),
    )


def _build_schedule(
    messages: Tuple[Message, ...],
    config: ScheduleConfig,
    segment: MonetizationSegment | None,
) -> Schedule:
    validate_message_stream(messages)
    if segment is not None and segment.insert_after_index > len(messages):
        raise ScheduleValidationError(
            INVALID_MONETIZATION_CODE,
            f"insert_after_index {segment.insert_after_index} exceeds "
            f"{len(messages)} messages",
        )

    has_clips = any(message.has_clip for message in messages)
    prefer_clip = (
        has_clips if config.prefer_clip_duration is None else config.prefer_clip_duration
    )
    outro_frames = config.outro_frames
    diagnostics: list[ScheduleDiagnostic] = []

    timing = assign_timing(
        messages,
        fps=config.fps,
        chars_per_second=config.chars_per_second,
        initial_delay_frames=config.initial_delay_frames,
        inter_message_gap_frames=config.inter_message_gap_frames,
        prefer_clip_duration=prefer_clip,
        trailing_buffer_frames=config.trailing_buffer_frames,
    )
    timed = timing.timed_messages
    timeline_total = timing.total_frames
    if has_clips:
        timed = resolve_audio_overlap(
            timed, config.fps, config.chars_per_second, outro_frames
        )

    segment_timeline: SegmentTimeline | None = None
    if segment is not None:
        spliced = splice_segment(
            timed,
            segment,
            gap_frames=config.monetization_gap_frames,
            fps=config.fps,
            chars_per_second=config.chars_per_second,
            initial_delay_frames=config.initial_delay_frames,
            inter_message_gap_frames=config.inter_message_gap_frames,
            prefer_clip_duration=prefer_clip,
        )
        segment_timeline = spliced.segment
        timed = spliced.timed_messages
        insert_index = segment.insert_after_index
        if segment_timeline is not None and has_clips:
            tail = resolve_audio_overlap(
                timed[insert_index:],
                config.fps,
                config.chars_per_second,
                outro_frames,
                initial_audio_end_frame=segment_timeline.end_frame,
                continues_timeline=config.outro_after_monetization,
            )
            timed = timed[:insert_index] + tail
        if segment_timeline is not None and insert_index == len(messages):
            timeline_total = max(
                timeline_total,
                segment_timeline.end_frame + config.trailing_buffer_frames,
            )

    check_monotonic(timed)
    if has_clips:
        check_no_audio_overlap(timed)

    try:
        screens = paginate(
            messages,
            config.screen_height_budget,
            config.header_once_per_conversation,
            config.metrics,
        )
    except ScheduleInvariantError as exc:
        _record(diagnostics, exc)
        screens = single_screen_fallback(messages)

    try:
        screen_ranges = compute_screen_ranges(
            screens,
            timed,
            config.trailing_buffer_frames,
            outro_frames=outro_frames,
            intro_frames=config.intro_frames,
            segment=segment_timeline,
            min_terminal_screen_frames=config.min_terminal_screen_frames,
        )
        check_screen_ranges(screen_ranges)
    except ScheduleInvariantError as exc:
        _record(diagnostics, exc)
        screens = single_screen_fallback(messages)
        screen_ranges = _fallback_ranges(
            timed, config.trailing_buffer_frames, config.intro_frames
        )

    total_frames = finalize_total_frames(
        timed,
        screen_ranges,
        segment_end_frame=segment_timeline.end_frame if segment_timeline else 0,
        outro_frames=outro_frames,
        trailing_buffer_frames=config.trailing_buffer_frames,
        timeline_total_frames=timeline_total,
    )

    return Schedule(
        timed_messages=tuple(timed),
        screens=screens,
        screen_ranges=screen_ranges,
        segment=segment_timeline,
        total_frames=total_frames,
        diagnostics=tuple(diagnostics),
    )


def build_schedule(
    messages: Sequence[Message],
    config: ScheduleConfig | None = None,
    segment: MonetizationSegment | None = None,
    cache: ScheduleCache | None = None,
) -> Schedule:
    """Build the full schedule for a resolved message stream.

    When a caller-owned ``cache`` is supplied, identical requests return the
    previously built schedule.
    """
    message_tuple = tuple(messages)
    resolved_config = config if config is not None else ScheduleConfig()
    if cache is None:
        return _build_schedule(message_tuple, resolved_config, segment)
    return cache.get_or_build(
        (message_tuple, resolved_config, segment),
        lambda: _build_schedule(message_tuple, resolved_config, segment),
    )


def _message_payload(timed: TimedMessage) -> dict[str, Any]:
    message = timed.message
    return {
        "message_id": message.message_id,
        "text": message.text,
        "sender": message.sender.value,
        "speaker": message.speaker,
        "kind": message.kind.value,
        "conversation_id": message.conversation_id,
        "starts_conversation": message.starts_conversation,
        "recipient_name": message.recipient_name,
        "theme": message.theme,
        "show_arrow": message.show_arrow,
        "clip_duration_seconds": message.clip_duration_seconds,
        "clip_path": message.clip_path,
        "appear_frame": timed.appear_frame,
        "duration_frames": timed.duration_frames,
    }


def _segment_line_payload(timed_line: TimedSegmentLine) -> dict[str, Any]:
    return {
        "text": timed_line.line.text,
        "sender": timed_line.line.sender.value,
        "clip_duration_seconds": timed_line.line.clip_duration_seconds,
        "offset_frame": timed_line.offset_frame,
        "duration_frames": timed_line.duration_frames,
    }


def schedule_to_payload(schedule: Schedule) -> dict[str, Any]:
    """Convert a schedule into a JSON-serialisable mapping."""
    segment_payload = None
    if schedule.segment is not None:
        segment_payload = {
            "mode": schedule.segment.mode.value,
            "start_frame": schedule.segment.start_frame,
            "duration_frames": schedule.segment.duration_frames,
            "end_frame": schedule.segment.end_frame,
            "reply_start_frame": schedule.segment.reply_start_frame,
            "intro": _segment_line_payload(schedule.segment.intro),
            "lines": [_segment_line_payload(line) for line in schedule.segment.lines],
        }
    return {
        "total_frames": schedule.total_frames,
        "messages": [_message_payload(timed) for timed in schedule.timed_messages],
        "screens": [
            {
                "message_ids": [message.message_id for message in screen.messages],
                "show_header": screen.show_header,
                "theme": screen.theme,
                "conversation_id": screen.conversation_id,
                "recipient_name": screen.recipient_name,
                "start_frame": frame_range.start_frame,
                "end_frame": frame_range.end_frame,
                "plays_intro": frame_range.plays_intro,
                "plays_outro": frame_range.plays_outro,
            }
            for screen, frame_range in zip(schedule.screens, schedule.screen_ranges)
        ],
        "monetization": segment_payload,
        "diagnostics": [
            {
                "code": diagnostic.code,
                "message": diagnostic.message,
                "context": dict(diagnostic.context),
            }
            for diagnostic in schedule.diagnostics
        ],
    }
