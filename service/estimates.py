"""Duration and height estimates for chat messages."""

from __future__ import annotations

import math
from typing import Sequence

from domain.chat_script import DEFAULT_BUBBLE_METRICS, BubbleMetrics, Message


def estimate_text_frames(
    text_value: str,
    clip_duration_seconds: float | None,
    fps: int,
    chars_per_second: float,
    prefer_clip_duration: bool,
) -> int:
    """Estimate display frames from a clip length or from reading speed."""
    if (
        prefer_clip_duration
        and clip_duration_seconds is not None
        and math.isfinite(clip_duration_seconds)
        and clip_duration_seconds > 0
    ):
        return int(math.ceil(clip_duration_seconds * fps))
    return int(math.ceil(len(text_value) / chars_per_second * fps))


def estimate_duration_frames(
    message: Message, fps: int, chars_per_second: float, prefer_clip_duration: bool
) -> int:
    """Estimate how many frames a message stays in focus."""
    return estimate_text_frames(
        message.text,
        message.clip_duration_seconds,
        fps,
        chars_per_second,
        prefer_clip_duration,
    )


def estimate_message_height(
    message: Message, metrics: BubbleMetrics = DEFAULT_BUBBLE_METRICS
) -> int:
    """Estimate the pixel height of a single bubble."""
    text_lines = math.ceil(len(message.text) / metrics.chars_per_line)
    return metrics.bubble_padding + text_lines * metrics.line_height + metrics.tail_height


def estimate_group_height(
    messages: Sequence[Message], metrics: BubbleMetrics = DEFAULT_BUBBLE_METRICS
) -> int:
    """Estimate the pixel height of a same-sender bubble group."""
    if not messages:
        return 0
    bubbles = sum(estimate_message_height(message, metrics) for message in messages)
    return bubbles + (len(messages) - 1) * metrics.message_gap + metrics.group_margin


def available_screen_height(
    screen_height_budget: int,
    with_header: bool,
    metrics: BubbleMetrics = DEFAULT_BUBBLE_METRICS,
) -> int:
    """Return the height left for bubbles once chrome is reserved."""
    chrome = metrics.header_height if with_header else 0
    return screen_height_budget - chrome - metrics.list_padding
