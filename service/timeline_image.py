"""Timeline overview image for a built schedule."""

from __future__ import annotations

from typing import Tuple

from PIL import Image, ImageDraw

from domain.chat_script import INVALID_CONFIG_CODE, ScheduleValidationError, Sender
from service.schedule import Schedule

LANE_COUNT = 4
BACKGROUND_RGBA = (24, 24, 28, 255)
SCREEN_LIGHT_RGBA = (220, 220, 225, 255)
SCREEN_DARK_RGBA = (90, 90, 105, 255)
SCREEN_BORDER_RGBA = (0, 0, 0, 255)
OUTRO_RGBA = (255, 170, 60, 255)
ME_RGBA = (10, 132, 255, 255)
THEM_RGBA = (120, 200, 120, 255)
SEGMENT_RGBA = (230, 80, 160, 255)
MIN_BAR_WIDTH = 1


def frame_to_x(frame: int, total_frames: int, width: int) -> int:
    """Map a frame index onto the horizontal pixel axis."""
    if total_frames <= 0:
        return 0
    return min(width - 1, int(frame * width / total_frames))


def _lane_box(
    lane: int, start_x: int, end_x: int, lane_height: int
) -> Tuple[int, int, int, int]:
    top = lane * lane_height + 1
    bottom = (lane + 1) * lane_height - 2
    return (start_x, top, max(start_x + MIN_BAR_WIDTH - 1, end_x), bottom)


def render_timeline_image(
    schedule: Schedule, width: int = 1200, lane_height: int = 24
) -> Image.Image:
    """Draw screens, message bars and the sponsored segment over frames.

    Lanes from top to bottom: screens (with their outro tail), messages from
    ``me``, messages from ``them``, the sponsored segment.
    """
    if width <= 0 or lane_height < 4:
        raise ScheduleValidationError(
            INVALID_CONFIG_CODE, "timeline width and lane height are too small"
        )
    image = Image.new("RGBA", (width, lane_height * LANE_COUNT), BACKGROUND_RGBA)
    draw = ImageDraw.Draw(image)
    total = schedule.total_frames
    end_by_id = {
        timed.message.message_id: timed.end_frame for timed in schedule.timed_messages
    }

    for screen, frame_range in zip(schedule.screens, schedule.screen_ranges):
        start_x = frame_to_x(frame_range.start_frame, total, width)
        end_x = frame_to_x(frame_range.end_frame, total, width)
        fill = SCREEN_DARK_RGBA if screen.theme == "dark" else SCREEN_LIGHT_RGBA
        draw.rectangle(
            _lane_box(0, start_x, end_x, lane_height),
            fill=fill,
            outline=SCREEN_BORDER_RGBA,
        )
        if frame_range.plays_outro:
            outro_x = frame_to_x(
                end_by_id[screen.messages[-1].message_id], total, width
            )
            if outro_x < end_x:
                draw.rectangle(
                    _lane_box(0, outro_x, end_x, lane_height), fill=OUTRO_RGBA
                )

    for timed in schedule.timed_messages:
        lane = 1 if timed.message.sender == Sender.ME else 2
        fill = ME_RGBA if timed.message.sender == Sender.ME else THEM_RGBA
        start_x = frame_to_x(timed.appear_frame, total, width)
        end_x = frame_to_x(timed.end_frame, total, width)
        draw.rectangle(_lane_box(lane, start_x, end_x, lane_height), fill=fill)

    if schedule.segment is not None:
        start_x = frame_to_x(schedule.segment.start_frame, total, width)
        end_x = frame_to_x(schedule.segment.end_frame, total, width)
        draw.rectangle(_lane_box(3, start_x, end_x, lane_height), fill=SEGMENT_RGBA)

    return image


def save_timeline_image(
    schedule: Schedule, output_path: str, width: int = 1200, lane_height: int = 24
) -> None:
    """Render the timeline overview and write it as PNG."""
    image = render_timeline_image(schedule, width=width, lane_height=lane_height)
    image.save(output_path, format="PNG")
