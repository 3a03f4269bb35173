#!/usr/bin/env -S uv run
# /// script
# requires-python = ">=3.11"
# dependencies = [
#   "pillow>=10"
# ]
# ///
"""Plan a chat-story video: message timing, screens and total length."""

from __future__ import annotations

import argparse
import json
import logging
import os
import shutil
import subprocess
import sys
from dataclasses import dataclass, replace
from typing import Any, Mapping, Sequence, Tuple

from domain.chat_script import (
    CLIP_FILE_CODE,
    DEFAULT_CHARS_PER_SECOND,
    DEFAULT_FPS,
    DEFAULT_MARGIN_BOTTOM,
    DEFAULT_MARGIN_TOP,
    DEFAULT_THEME,
    DEFAULT_TRAILING_BUFFER_FRAMES,
    DEFAULT_VIDEO_HEIGHT,
    INPUT_FILE_CODE,
    INVALID_CONFIG_CODE,
    INVALID_MONETIZATION_CODE,
    INVALID_SCRIPT_CODE,
    ScheduleConfig,
    ScheduleInvariantError,
    ScheduleValidationError,
    ScriptLine,
    parse_animation,
    parse_monetization_payload,
    parse_script_payload,
    parse_script_text,
)
from service.directives import resolve_directives
from service.schedule import Schedule, build_schedule, schedule_to_payload
from service.timeline_image import save_timeline_image

LOGGER = logging.getLogger("chat_schedule")

FFPROBE_NOT_FOUND_CODE = "chat_schedule.ffprobe.not_found"
FFPROBE_EXEC_CODE = "chat_schedule.ffprobe.exec_error"
FFPROBE_PROBE_CODE = "chat_schedule.ffprobe.probe_error"
OUTPUT_FILE_CODE = "chat_schedule.output.file_error"


class SchedulePipelineError(RuntimeError):
    """Runtime error with a stable error code."""

    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code


@dataclass(frozen=True)
class ScheduleRequest:
    """Parsed CLI request and runtime options."""

    config: ScheduleConfig
    input_script_file: str
    monetization_file: str | None
    output_plan_file: str | None
    timeline_image_file: str | None
    timeline_width: int
    probe_clips: bool
    theme: str
    recipient_name: str


def configure_logging() -> None:
    """Configure logging for CLI output."""
    logging.basicConfig(level=logging.INFO, format="%(message)s")


def read_utf8_text_strict(file_path: str) -> str:
    """Read a UTF-8 file with strict decoding."""
    try:
        with open(file_path, "rb") as file_handle:
            file_bytes = file_handle.read()
    except FileNotFoundError as exc:
        raise ScheduleValidationError(
            INPUT_FILE_CODE, f"input file not found: {file_path}"
        ) from exc

    try:
        return file_bytes.decode("utf-8", errors="strict")
    except UnicodeDecodeError as exc:
        raise ScheduleValidationError(
            INPUT_FILE_CODE,
            f"input file is not valid UTF-8 at byte offset {exc.start}",
        ) from exc


def read_json_file(file_path: str) -> Any:
    """Read and decode a JSON file."""
    text_value = read_utf8_text_strict(file_path)
    try:
        return json.loads(text_value)
    except json.JSONDecodeError as exc:
        raise ScheduleValidationError(
            INVALID_SCRIPT_CODE,
            f"invalid JSON in {file_path} at line {exc.lineno}: {exc.msg}",
        ) from exc


def ensure_ffprobe_available() -> None:
    """Ensure ffprobe is installed and executable."""
    ffprobe_path = shutil.which("ffprobe")
    if not ffprobe_path:
        raise SchedulePipelineError(FFPROBE_NOT_FOUND_CODE, "ffprobe not on PATH")
    try:
        subprocess.run(
            [ffprobe_path, "-version"],
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            check=True,
        )
    except Exception as exc:
        raise SchedulePipelineError(
            FFPROBE_EXEC_CODE, "ffprobe exists but could not be executed"
        ) from exc


def get_clip_duration_seconds(clip_path: str) -> float:
    """Return the duration in seconds of a speech clip file."""
    if not os.path.isfile(clip_path):
        raise ScheduleValidationError(CLIP_FILE_CODE, f"clip not found: {clip_path}")
    result = subprocess.run(
        [
            "ffprobe",
            "-v",
            "error",
            "-show_entries",
            "format=duration",
            "-of",
            "default=noprint_wrappers=1:nokey=1",
            clip_path,
        ],
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        text=True,
        check=False,
    )
    if result.returncode != 0:
        stderr_text = result.stderr.strip()
        raise SchedulePipelineError(
            FFPROBE_PROBE_CODE, f"ffprobe failed for clip: {stderr_text}"
        )
    try:
        duration_seconds = float(result.stdout.strip())
    except ValueError as exc:
        raise ScheduleValidationError(
            CLIP_FILE_CODE, f"clip duration unavailable: {clip_path}"
        ) from exc
    if duration_seconds <= 0:
        raise ScheduleValidationError(
            CLIP_FILE_CODE, f"clip duration invalid: {clip_path}"
        )
    return duration_seconds


def probe_clip_durations(
    lines: Sequence[ScriptLine], base_dir: str
) -> Tuple[ScriptLine, ...]:
    """Fill missing clip durations from clip files next to the script."""
    if not any(line.clip_path and line.clip_duration_seconds is None for line in lines):
        return tuple(lines)
    ensure_ffprobe_available()
    probed: list[ScriptLine] = []
    for line in lines:
        if line.clip_path and line.clip_duration_seconds is None:
            clip_path = os.path.join(base_dir, line.clip_path)
            line = replace(line, clip_duration_seconds=get_clip_duration_seconds(clip_path))
        probed.append(line)
    return tuple(probed)


def load_script(
    script_path: str,
) -> Tuple[Tuple[ScriptLine, ...], Mapping[str, Any] | None]:
    """Load raw script lines and any embedded monetization object."""
    if script_path.lower().endswith(".json"):
        return parse_script_payload(read_json_file(script_path))
    return parse_script_text(read_utf8_text_strict(script_path)), None


def parse_args(argv: Sequence[str]) -> ScheduleRequest:
    """Parse CLI arguments into a ScheduleRequest."""
    parser = argparse.ArgumentParser(prog="render_chat_schedule.py", add_help=True)
    parser.add_argument("--input-script-file", required=True)
    parser.add_argument("--monetization-file", default=None)
    parser.add_argument("--output-plan-file", default=None)
    parser.add_argument("--fps", type=int, default=DEFAULT_FPS)
    parser.add_argument(
        "--chars-per-second", type=float, default=DEFAULT_CHARS_PER_SECOND
    )
    parser.add_argument("--video-height", type=int, default=DEFAULT_VIDEO_HEIGHT)
    parser.add_argument("--margin-top", type=int, default=DEFAULT_MARGIN_TOP)
    parser.add_argument("--margin-bottom", type=int, default=DEFAULT_MARGIN_BOTTOM)
    parser.add_argument("--header-every-screen", action="store_true")
    parser.add_argument("--initial-delay-frames", type=int, default=0)
    parser.add_argument("--inter-message-gap-frames", type=int, default=0)
    parser.add_argument(
        "--trailing-frames", type=int, default=DEFAULT_TRAILING_BUFFER_FRAMES
    )
    parser.add_argument("--monetization-gap-frames", type=int, default=0)
    parser.add_argument("--intro-animation", default="none")
    parser.add_argument("--intro-duration-ms", type=float, default=600)
    parser.add_argument("--outro-animation", default="slide_in_fade")
    parser.add_argument("--outro-duration-ms", type=float, default=2000)
    parser.add_argument("--no-outro-after-monetization", action="store_true")
    parser.add_argument("--min-terminal-screen-frames", type=int, default=0)
    parser.add_argument("--theme", default=DEFAULT_THEME)
    parser.add_argument("--recipient-name", default="")
    parser.add_argument("--probe-clips", action="store_true")
    parser.add_argument("--timeline-image", default=None)
    parser.add_argument("--timeline-width", type=int, default=1200)

    parsed = parser.parse_args(argv)
    if parsed.theme not in ("light", "dark"):
        raise ScheduleValidationError(
            INVALID_CONFIG_CODE, f"invalid theme: {parsed.theme!r}"
        )
    if parsed.timeline_image is not None and not parsed.timeline_image.lower().endswith(
        ".png"
    ):
        raise ScheduleValidationError(
            INVALID_CONFIG_CODE, "timeline-image must end with .png"
        )
    screen_height_budget = parsed.video_height - parsed.margin_top - parsed.margin_bottom
    if screen_height_budget < 0:
        raise ScheduleValidationError(
            INVALID_CONFIG_CODE, "margins exceed the video height"
        )

    config = ScheduleConfig(
        fps=parsed.fps,
        chars_per_second=parsed.chars_per_second,
        initial_delay_frames=parsed.initial_delay_frames,
        inter_message_gap_frames=parsed.inter_message_gap_frames,
        trailing_buffer_frames=parsed.trailing_frames,
        screen_height_budget=screen_height_budget,
        header_once_per_conversation=not parsed.header_every_screen,
        intro_animation=parse_animation(parsed.intro_animation),
        intro_duration_ms=parsed.intro_duration_ms,
        outro_animation=parse_animation(parsed.outro_animation),
        outro_duration_ms=parsed.outro_duration_ms,
        monetization_gap_frames=parsed.monetization_gap_frames,
        outro_after_monetization=not parsed.no_outro_after_monetization,
        min_terminal_screen_frames=parsed.min_terminal_screen_frames,
    )

    return ScheduleRequest(
        config=config,
        input_script_file=parsed.input_script_file,
        monetization_file=parsed.monetization_file,
        output_plan_file=parsed.output_plan_file,
        timeline_image_file=parsed.timeline_image,
        timeline_width=parsed.timeline_width,
        probe_clips=parsed.probe_clips,
        theme=parsed.theme,
        recipient_name=parsed.recipient_name,
    )


def plan_from_request(request: ScheduleRequest) -> Schedule:
    """Load, resolve and schedule the requested script."""
    lines, monetization_payload = load_script(request.input_script_file)
    if request.monetization_file is not None:
        monetization_payload = read_json_file(request.monetization_file)
        if not isinstance(monetization_payload, Mapping):
            raise ScheduleValidationError(
                INVALID_MONETIZATION_CODE, "monetization file must hold an object"
            )
    if request.probe_clips:
        base_dir = os.path.dirname(os.path.abspath(request.input_script_file))
        lines = probe_clip_durations(lines, base_dir)

    resolved = resolve_directives(
        lines, theme=request.theme, recipient_name=request.recipient_name
    )
    segment = None
    if monetization_payload is not None:
        segment = parse_monetization_payload(
            monetization_payload, resolved.monetization_insert_index
        )
    elif resolved.monetization_insert_index is not None:
        LOGGER.warning(
            "%s: monetization marker present but no segment configured",
            INVALID_MONETIZATION_CODE,
        )
    return build_schedule(resolved.messages, request.config, segment)


def write_plan(payload: Mapping[str, Any], output_path: str | None) -> None:
    """Write the plan JSON to a file, or to stdout when no path is given."""
    text_value = json.dumps(payload, ensure_ascii=True, indent=2, sort_keys=True)
    if output_path is None:
        sys.stdout.write(text_value + "\n")
        return
    try:
        with open(output_path, "w", encoding="utf-8") as file_handle:
            file_handle.write(text_value + "\n")
    except OSError as exc:
        raise SchedulePipelineError(
            OUTPUT_FILE_CODE, f"cannot write plan file: {output_path}"
        ) from exc


def main() -> int:
    """CLI entrypoint."""
    configure_logging()

    try:
        request = parse_args(sys.argv[1:])
        schedule = plan_from_request(request)
        for diagnostic in schedule.diagnostics:
            LOGGER.warning("%s: %s", diagnostic.code, diagnostic.message)
        write_plan(schedule_to_payload(schedule), request.output_plan_file)
        if request.timeline_image_file is not None:
            save_timeline_image(
                schedule, request.timeline_image_file, width=request.timeline_width
            )
        LOGGER.info(
            "chat_schedule.plan: %d messages, %d screens, %d frames",
            len(schedule.timed_messages),
            len(schedule.screens),
            schedule.total_frames,
        )
        return 0
    except ScheduleValidationError as exc:
        LOGGER.error("%s: %s", exc.code, str(exc).strip())
        return 1
    except ScheduleInvariantError as exc:
        LOGGER.error("%s: %s", exc.code, str(exc).strip())
        return 1
    except SchedulePipelineError as exc:
        LOGGER.error("%s: %s", exc.code, str(exc).strip())
        return 1
    except Exception as exc:
        LOGGER.error("chat_schedule.unhandled_error: %s", str(exc).strip())
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
