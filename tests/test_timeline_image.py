"""Tests for the timeline overview image."""

from __future__ import annotations

from pathlib import Path

import pytest
from PIL import Image

from domain.chat_script import (
    INVALID_CONFIG_CODE,
    Message,
    MonetizationSegment,
    ScheduleValidationError,
    SegmentLine,
    SegmentMode,
    Sender,
)
from service.schedule import Schedule, build_schedule
from service.timeline_image import (
    BACKGROUND_RGBA,
    OUTRO_RGBA,
    SCREEN_LIGHT_RGBA,
    SEGMENT_RGBA,
    frame_to_x,
    render_timeline_image,
    save_timeline_image,
)


def sponsored_schedule() -> Schedule:
    """Three messages with a single-reply segment before the last one."""
    messages = [
        Message(index, text_value, Sender.ME if index % 2 else Sender.THEM, 0, index == 0)
        for index, text_value in enumerate(["Hi", "How are you", "Good"])
    ]
    segment = MonetizationSegment(
        mode=SegmentMode.SINGLE_REPLY,
        intro=SegmentLine(text="Today's sponsor", clip_duration_seconds=1.5),
        lines=(SegmentLine(text="Nice", sender=Sender.ME, clip_duration_seconds=1.0),),
        insert_after_index=2,
        reply_start_seconds=3.0,
    )
    return build_schedule(messages, segment=segment)


def test_frame_to_x_clamps_to_width() -> None:
    """Frames map proportionally and never past the last column."""
    assert frame_to_x(0, 100, 50) == 0
    assert frame_to_x(50, 100, 50) == 25
    assert frame_to_x(100, 100, 50) == 49
    assert frame_to_x(10, 0, 50) == 0


def test_render_draws_screen_outro_and_segment_lanes() -> None:
    """Each lane carries its own bars in its own colour."""
    schedule = sponsored_schedule()
    assert schedule.total_frames == 310

    image = render_timeline_image(schedule, width=100, lane_height=24)

    assert image.size == (100, 96)
    assert image.getpixel((20, 10)) == SCREEN_LIGHT_RGBA
    assert image.getpixel((60, 10)) == OUTRO_RGBA
    assert image.getpixel((20, 82)) == SEGMENT_RGBA
    assert image.getpixel((95, 82)) == BACKGROUND_RGBA


def test_render_empty_schedule() -> None:
    """An empty plan renders as background only."""
    image = render_timeline_image(build_schedule([]), width=40, lane_height=8)

    assert image.size == (40, 32)
    assert image.getcolors() == [(40 * 32, BACKGROUND_RGBA)]


def test_render_rejects_tiny_canvas() -> None:
    """Width and lane height must leave room to draw."""
    with pytest.raises(ScheduleValidationError) as excinfo:
        render_timeline_image(build_schedule([]), width=0)
    assert excinfo.value.code == INVALID_CONFIG_CODE


def test_save_writes_png(tmp_path: Path) -> None:
    """The overview is written as a PNG file."""
    output_path = tmp_path / "timeline.png"
    save_timeline_image(sponsored_schedule(), str(output_path), width=120)

    with Image.open(output_path) as image:
        assert image.format == "PNG"
        assert image.size == (120, 96)
