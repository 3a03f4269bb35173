"""Tests for duration and height estimates."""

from __future__ import annotations

from domain.chat_script import BubbleMetrics, Message, Sender
from service.estimates import (
    available_screen_height,
    estimate_duration_frames,
    estimate_group_height,
    estimate_message_height,
    estimate_text_frames,
)


def make_message(text_value: str, clip_duration_seconds: float | None = None) -> Message:
    """Build a single-message conversation."""
    return Message(
        message_id=0,
        text=text_value,
        sender=Sender.ME,
        conversation_id=0,
        starts_conversation=True,
        clip_duration_seconds=clip_duration_seconds,
    )


def test_reading_speed_estimate_rounds_up() -> None:
    """Text-only durations use the ceiling of the reading time."""
    assert estimate_text_frames("Hi", None, 30, 18.0, False) == 4
    assert estimate_text_frames("How are you", None, 30, 18.0, False) == 19
    assert estimate_text_frames("Good", None, 30, 18.0, False) == 7
    assert estimate_text_frames("", None, 30, 18.0, False) == 0


def test_clip_duration_preferred_when_requested() -> None:
    """Clip durations win only when preferred and positive."""
    message = make_message("Hi", clip_duration_seconds=2.0)

    assert estimate_duration_frames(message, 30, 18.0, True) == 60
    assert estimate_duration_frames(message, 30, 18.0, False) == 4
    assert estimate_duration_frames(make_message("Hi", 0.0), 30, 18.0, True) == 4


def test_message_height_counts_wrapped_lines() -> None:
    """Height grows by one line per chars_per_line characters."""
    metrics = BubbleMetrics(
        bubble_padding=10, line_height=20, chars_per_line=10, tail_height=2
    )

    assert estimate_message_height(make_message("short"), metrics) == 32
    assert estimate_message_height(make_message("x" * 25), metrics) == 72
    assert estimate_message_height(make_message(""), metrics) == 12


def test_group_height_adds_gaps_and_margin() -> None:
    """A group adds message gaps between bubbles plus one margin."""
    metrics = BubbleMetrics(
        bubble_padding=10,
        line_height=20,
        chars_per_line=10,
        tail_height=2,
        message_gap=5,
        group_margin=7,
    )
    messages = [make_message("a"), make_message("b")]

    assert estimate_group_height(messages, metrics) == 32 + 5 + 32 + 7
    assert estimate_group_height([], metrics) == 0


def test_available_height_reserves_header() -> None:
    """Header chrome is only reserved when the header is shown."""
    metrics = BubbleMetrics(header_height=90, list_padding=20)

    assert available_screen_height(1000, True, metrics) == 890
    assert available_screen_height(1000, False, metrics) == 980
