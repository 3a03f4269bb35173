"""Frame timing for chat messages and speech clips."""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Sequence, Tuple

from domain.chat_script import (
    INVALID_MESSAGE_CODE,
    TIMING_ORDER_CODE,
    Message,
    ScheduleInvariantError,
    ScheduleValidationError,
)
from service.estimates import estimate_duration_frames


@dataclass(frozen=True)
class TimedMessage:
    """A message stamped with its appearance frame."""

    message: Message
    appear_frame: int
    duration_frames: int

    def __post_init__(self) -> None:
        if self.appear_frame < 0:
            raise ScheduleValidationError(
                INVALID_MESSAGE_CODE, "appear_frame must be non-negative"
            )
        if self.duration_frames < 0:
            raise ScheduleValidationError(
                INVALID_MESSAGE_CODE, "duration_frames must be non-negative"
            )

    @property
    def end_frame(self) -> int:
        return self.appear_frame + self.duration_frames


@dataclass(frozen=True)
class TimingResult:
    """Timed messages and the frame count they need."""

    timed_messages: Tuple[TimedMessage, ...]
    total_frames: int


def assign_timing(
    messages: Sequence[Message],
    fps: int,
    chars_per_second: float,
    initial_delay_frames: int = 0,
    inter_message_gap_frames: int = 0,
    prefer_clip_duration: bool = False,
    trailing_buffer_frames: int = 0,
) -> TimingResult:
    """Stamp each message with a monotonically increasing appear frame."""
    timed: list[TimedMessage] = []
    cursor: float = initial_delay_frames
    last_index = len(messages) - 1

    for index, message in enumerate(messages):
        appear_frame = int(round(cursor))
        duration = estimate_duration_frames(
            message, fps, chars_per_second, prefer_clip_duration
        )
        timed.append(
            TimedMessage(
                message=message, appear_frame=appear_frame, duration_frames=duration
            )
        )
        gap = 0 if index == last_index else inter_message_gap_frames
        cursor = appear_frame + duration + gap

    return TimingResult(
        timed_messages=tuple(timed),
        total_frames=int(round(cursor)) + trailing_buffer_frames,
    )


def resolve_audio_overlap(
    timed_messages: Sequence[TimedMessage],
    fps: int,
    chars_per_second: float,
    outro_frames: int = 0,
    initial_audio_end_frame: int = 0,
    continues_timeline: bool = False,
) -> Tuple[TimedMessage, ...]:
    """Shift clip-bearing messages so that no two clips play at once.

    A clip that opens a new conversation also waits ``outro_frames`` for the
    outgoing screen's exit animation, except for the very first clip of the
    timeline. Pass ``continues_timeline`` when resolving a tail whose first
    clip follows earlier audio. Messages without a clip keep their frame,
    unless the message before them was pushed past it; they then appear
    together with that message, whatever its conversation.
    """
    audio_end_frame = initial_audio_end_frame
    seen_clip = continues_timeline
    previous: TimedMessage | None = None
    resolved: list[TimedMessage] = []

    for timed in timed_messages:
        message = timed.message
        if message.has_clip:
            start_frame = max(timed.appear_frame, audio_end_frame)
            if message.starts_conversation and seen_clip and outro_frames > 0:
                start_frame += outro_frames
            duration = estimate_duration_frames(message, fps, chars_per_second, True)
            adjusted = replace(timed, appear_frame=start_frame, duration_frames=duration)
            audio_end_frame = start_frame + duration
            seen_clip = True
        elif previous is not None and previous.appear_frame > timed.appear_frame:
            adjusted = replace(timed, appear_frame=previous.appear_frame)
        else:
            adjusted = timed
        resolved.append(adjusted)
        previous = adjusted

    return tuple(resolved)


def check_monotonic(timed_messages: Sequence[TimedMessage]) -> None:
    """Raise when appear frames go backwards inside a conversation."""
    for previous, current in zip(timed_messages, timed_messages[1:]):
        same_conversation = (
            previous.message.conversation_id == current.message.conversation_id
        )
        if same_conversation and current.appear_frame < previous.appear_frame:
            raise ScheduleInvariantError(
                TIMING_ORDER_CODE,
                f"message {current.message.message_id} appears before "
                f"message {previous.message.message_id}",
                {
                    "input_count": len(timed_messages),
                    "message_id": current.message.message_id,
                    "appear_frame": current.appear_frame,
                    "previous_appear_frame": previous.appear_frame,
                },
            )


def check_no_audio_overlap(timed_messages: Sequence[TimedMessage]) -> None:
    """Raise when two clips overlap in playback time."""
    audio_end_frame = 0
    previous_id: int | None = None
    for timed in timed_messages:
        if not timed.message.has_clip:
            continue
        if timed.appear_frame < audio_end_frame:
            raise ScheduleInvariantError(
                TIMING_ORDER_CODE,
                f"clip of message {timed.message.message_id} overlaps "
                f"clip of message {previous_id}",
                {
                    "input_count": len(timed_messages),
                    "message_id": timed.message.message_id,
                    "appear_frame": timed.appear_frame,
                    "audio_end_frame": audio_end_frame,
                },
            )
        audio_end_frame = timed.end_frame
        previous_id = timed.message.message_id
