"""Domain types and parsing for chat schedule planning."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
import math
import re
from typing import Any, Mapping, Sequence, Tuple

INVALID_CONFIG_CODE = "chat_schedule.input.invalid_config"
INVALID_MESSAGE_CODE = "chat_schedule.input.invalid_message"
INVALID_STREAM_CODE = "chat_schedule.input.invalid_stream"
INVALID_SCRIPT_CODE = "chat_schedule.input.invalid_script"
INVALID_MONETIZATION_CODE = "chat_schedule.input.invalid_monetization"
INPUT_FILE_CODE = "chat_schedule.input.file_error"
CLIP_FILE_CODE = "chat_schedule.input.clip_file"
PAGINATION_MISMATCH_CODE = "chat_schedule.internal.pagination_mismatch"
EMPTY_SCREEN_CODE = "chat_schedule.internal.empty_screen"
SCREEN_RANGE_CODE = "chat_schedule.internal.invalid_screen_range"
TIMING_ORDER_CODE = "chat_schedule.internal.timing_order"

DEFAULT_FPS = 30
DEFAULT_CHARS_PER_SECOND = 18.0
DEFAULT_TRAILING_BUFFER_FRAMES = 100
DEFAULT_VIDEO_HEIGHT = 1920
DEFAULT_MARGIN_TOP = 200
DEFAULT_MARGIN_BOTTOM = 200
DEFAULT_SCREEN_HEIGHT_BUDGET = DEFAULT_VIDEO_HEIGHT - DEFAULT_MARGIN_TOP - DEFAULT_MARGIN_BOTTOM
DEFAULT_THEME = "light"

THEME_COMMAND_PATTERN = re.compile(
    r">\s*change\s+theme\s+to\s+(light|dark)\s*<", re.IGNORECASE
)
CONVERSATION_COMMAND_PATTERN = re.compile(
    r">\s*conversation\s+with\s+(.+?)\s*<", re.IGNORECASE
)
ARROW_COMMAND_PATTERN = re.compile(r">\s*(arrow\s*down|show\s*arrow)\s*<", re.IGNORECASE)
MONETIZATION_COMMAND_PATTERN = re.compile(
    r">\s*insert\s+monetization\s*<", re.IGNORECASE
)
SPEAKER_LINE_PATTERN = re.compile(r"^([^:]+):\s*(.+)$")
INLINE_IMAGE_PATTERNS = (
    re.compile(r">\s*image\s+(.+?)\s*<", re.IGNORECASE),
    re.compile(r"\{image:\s*(.+?)\s*\}", re.IGNORECASE),
)


class ScheduleValidationError(ValueError):
    """Validation error with a stable error code."""

    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code


class ScheduleInvariantError(RuntimeError):
    """Internal post-condition failure with diagnostic context."""

    def __init__(
        self, code: str, message: str, context: Mapping[str, Any] | None = None
    ) -> None:
        super().__init__(message)
        self.code = code
        self.context = dict(context or {})


class Sender(str, Enum):
    """The two parties of a conversation."""

    ME = "me"
    THEM = "them"


class MessageKind(str, Enum):
    """Renderable message kinds reaching the scheduler."""

    CONTENT = "content"
    MEDIA = "media"


class LineKind(str, Enum):
    """Kinds of raw script lines before directive resolution."""

    TEXT = "text"
    IMAGE = "image"
    COMMAND = "command"


class ChatAnimation(str, Enum):
    """Screen entrance and exit animations."""

    NONE = "none"
    FADE_IN = "fade_in"
    SCALE_DOWN = "scale_down"
    SLIDE_DOWN = "slide_down"
    SLIDE_IN_FADE = "slide_in_fade"
    BLUR_IN = "blur_in"


class SegmentMode(str, Enum):
    """Shapes of the sponsored segment timeline."""

    EXCHANGE = "exchange"
    SINGLE_REPLY = "single_reply"


def _normalize_clip_duration(value: float | None, code: str) -> float | None:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ScheduleValidationError(code, "clip_duration_seconds must be a number")
    if not math.isfinite(value) or value < 0:
        raise ScheduleValidationError(
            code, "clip_duration_seconds must be finite and non-negative"
        )
    return float(value)


@dataclass(frozen=True)
class Message:
    """A resolved, renderable script message."""

    message_id: int
    text: str
    sender: Sender
    conversation_id: int
    starts_conversation: bool
    theme: str = DEFAULT_THEME
    kind: MessageKind = MessageKind.CONTENT
    clip_duration_seconds: float | None = None
    speaker: str = ""
    recipient_name: str = ""
    show_arrow: bool = False
    clip_path: str | None = None

    def __post_init__(self) -> None:
        if self.message_id < 0:
            raise ScheduleValidationError(
                INVALID_MESSAGE_CODE, "message_id must be non-negative"
            )
        if not isinstance(self.text, str):
            raise ScheduleValidationError(INVALID_MESSAGE_CODE, "text must be a string")
        if not isinstance(self.sender, Sender):
            raise ScheduleValidationError(INVALID_MESSAGE_CODE, "sender is invalid")
        if not isinstance(self.kind, MessageKind):
            raise ScheduleValidationError(INVALID_MESSAGE_CODE, "kind is invalid")
        if self.conversation_id < 0:
            raise ScheduleValidationError(
                INVALID_MESSAGE_CODE, "conversation_id must be non-negative"
            )
        if not self.theme.strip():
            raise ScheduleValidationError(INVALID_MESSAGE_CODE, "theme must be non-empty")
        # Durations are always stored as float.
        object.__setattr__(
            self,
            "clip_duration_seconds",
            _normalize_clip_duration(self.clip_duration_seconds, INVALID_MESSAGE_CODE),
        )

    @property
    def has_clip(self) -> bool:
        """Return True when a positive clip duration is known."""
        return (
            self.clip_duration_seconds is not None and self.clip_duration_seconds > 0
        )


@dataclass(frozen=True)
class ScriptLine:
    """A raw script line prior to directive resolution."""

    kind: LineKind
    text: str
    sender: Sender = Sender.THEM
    speaker: str = ""
    clip_duration_seconds: float | None = None
    clip_path: str | None = None
    image_name: str | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.kind, LineKind):
            raise ScheduleValidationError(INVALID_SCRIPT_CODE, "line kind is invalid")
        if not isinstance(self.sender, Sender):
            raise ScheduleValidationError(INVALID_SCRIPT_CODE, "line sender is invalid")
        object.__setattr__(
            self,
            "clip_duration_seconds",
            _normalize_clip_duration(self.clip_duration_seconds, INVALID_SCRIPT_CODE),
        )


@dataclass(frozen=True)
class BubbleMetrics:
    """Pixel metrics used by the bubble height estimate."""

    bubble_padding: int = 24
    line_height: int = 60
    chars_per_line: int = 42
    tail_height: int = 6
    message_gap: int = 6
    group_margin: int = 12
    group_gap: int = 14
    header_height: int = 90
    list_padding: int = 20

    def __post_init__(self) -> None:
        if self.chars_per_line <= 0:
            raise ScheduleValidationError(
                INVALID_CONFIG_CODE, "chars_per_line must be positive"
            )
        for name in (
            "bubble_padding",
            "line_height",
            "tail_height",
            "message_gap",
            "group_margin",
            "group_gap",
            "header_height",
            "list_padding",
        ):
            if getattr(self, name) < 0:
                raise ScheduleValidationError(
                    INVALID_CONFIG_CODE, f"{name} must be non-negative"
                )


DEFAULT_BUBBLE_METRICS = BubbleMetrics()


@dataclass(frozen=True)
class ScheduleConfig:
    """Validated configuration for schedule planning."""

    fps: int = DEFAULT_FPS
    chars_per_second: float = DEFAULT_CHARS_PER_SECOND
    initial_delay_frames: int = 0
    inter_message_gap_frames: int = 0
    trailing_buffer_frames: int = DEFAULT_TRAILING_BUFFER_FRAMES
    screen_height_budget: int = DEFAULT_SCREEN_HEIGHT_BUDGET
    header_once_per_conversation: bool = True
    intro_animation: ChatAnimation = ChatAnimation.NONE
    intro_duration_ms: float = 600
    outro_animation: ChatAnimation = ChatAnimation.SLIDE_IN_FADE
    outro_duration_ms: float = 2000
    monetization_gap_frames: int = 0
    outro_after_monetization: bool = True
    min_terminal_screen_frames: int = 0
    prefer_clip_duration: bool | None = None
    metrics: BubbleMetrics = DEFAULT_BUBBLE_METRICS

    def __post_init__(self) -> None:
        if self.fps <= 0:
            raise ScheduleValidationError(INVALID_CONFIG_CODE, "fps must be positive")
        if not math.isfinite(self.chars_per_second) or self.chars_per_second <= 0:
            raise ScheduleValidationError(
                INVALID_CONFIG_CODE, "chars_per_second must be positive"
            )
        for name in (
            "initial_delay_frames",
            "inter_message_gap_frames",
            "trailing_buffer_frames",
            "screen_height_budget",
            "monetization_gap_frames",
            "min_terminal_screen_frames",
        ):
            if getattr(self, name) < 0:
                raise ScheduleValidationError(
                    INVALID_CONFIG_CODE, f"{name} must be non-negative"
                )
        if self.intro_duration_ms < 0 or self.outro_duration_ms < 0:
            raise ScheduleValidationError(
                INVALID_CONFIG_CODE, "animation durations must be non-negative"
            )
        if not isinstance(self.intro_animation, ChatAnimation):
            raise ScheduleValidationError(
                INVALID_CONFIG_CODE, "intro_animation is invalid"
            )
        if not isinstance(self.outro_animation, ChatAnimation):
            raise ScheduleValidationError(
                INVALID_CONFIG_CODE, "outro_animation is invalid"
            )

    @property
    def intro_frames(self) -> int:
        """Intro animation length in frames, 0 when disabled."""
        if self.intro_animation == ChatAnimation.NONE:
            return 0
        return ms_to_frames(self.intro_duration_ms, self.fps)

    @property
    def outro_frames(self) -> int:
        """Outro animation length in frames, 0 when disabled."""
        if self.outro_animation == ChatAnimation.NONE:
            return 0
        return ms_to_frames(self.outro_duration_ms, self.fps)


@dataclass(frozen=True)
class SegmentLine:
    """One line of the sponsored segment."""

    text: str
    sender: Sender = Sender.THEM
    clip_duration_seconds: float | None = None

    def __post_init__(self) -> None:
        object.__setattr__(
            self,
            "clip_duration_seconds",
            _normalize_clip_duration(self.clip_duration_seconds, INVALID_MONETIZATION_CODE),
        )


@dataclass(frozen=True)
class MonetizationSegment:
    """Sponsored sub-timeline spliced into the main schedule.

    ``insert_after_index`` counts the main messages that play before the
    segment, so ``0`` places it ahead of the whole conversation.
    """

    mode: SegmentMode
    intro: SegmentLine
    lines: Tuple[SegmentLine, ...]
    insert_after_index: int
    reply_start_seconds: float | None = None
    exchange_gap_frames: int = 0

    def __post_init__(self) -> None:
        if not isinstance(self.mode, SegmentMode):
            raise ScheduleValidationError(
                INVALID_MONETIZATION_CODE, "segment mode is invalid"
            )
        if self.insert_after_index < 0:
            raise ScheduleValidationError(
                INVALID_MONETIZATION_CODE, "insert_after_index must be non-negative"
            )
        if self.exchange_gap_frames < 0:
            raise ScheduleValidationError(
                INVALID_MONETIZATION_CODE, "exchange_gap_frames must be non-negative"
            )
        if self.mode == SegmentMode.SINGLE_REPLY and len(self.lines) != 1:
            raise ScheduleValidationError(
                INVALID_MONETIZATION_CODE, "single_reply segment needs exactly one reply"
            )
        if self.reply_start_seconds is not None:
            if self.mode != SegmentMode.SINGLE_REPLY:
                raise ScheduleValidationError(
                    INVALID_MONETIZATION_CODE,
                    "reply_start_seconds is only valid for single_reply",
                )
            if not math.isfinite(self.reply_start_seconds) or self.reply_start_seconds < 0:
                raise ScheduleValidationError(
                    INVALID_MONETIZATION_CODE,
                    "reply_start_seconds must be non-negative",
                )


def ms_to_frames(milliseconds: float, fps: int) -> int:
    """Convert milliseconds to a rounded frame count."""
    return int(round(milliseconds / 1000.0 * fps))


def validate_message_stream(messages: Sequence[Message]) -> None:
    """Reject message streams that break ordering or identity rules."""
    seen_ids: set[int] = set()
    previous_conversation = -1
    for message in messages:
        if message.message_id in seen_ids:
            raise ScheduleValidationError(
                INVALID_STREAM_CODE, f"duplicate message_id: {message.message_id}"
            )
        seen_ids.add(message.message_id)
        if message.conversation_id < previous_conversation:
            raise ScheduleValidationError(
                INVALID_STREAM_CODE,
                f"conversation_id decreases at message {message.message_id}",
            )
        previous_conversation = message.conversation_id


def parse_sender(value: str) -> Sender:
    """Parse a sender token into a Sender."""
    normalized = value.strip().lower()
    try:
        return Sender(normalized)
    except ValueError as exc:
        raise ScheduleValidationError(
            INVALID_SCRIPT_CODE, f"invalid sender: {value!r}"
        ) from exc


def parse_animation(value: str) -> ChatAnimation:
    """Parse an animation name into a ChatAnimation."""
    normalized = value.strip().lower()
    try:
        return ChatAnimation(normalized)
    except ValueError as exc:
        raise ScheduleValidationError(
            INVALID_CONFIG_CODE, f"invalid animation: {value!r}"
        ) from exc


def find_inline_image(text_value: str) -> str | None:
    """Return the image name of an inline image marker, if present."""
    for pattern in INLINE_IMAGE_PATTERNS:
        match = pattern.search(text_value)
        if match and match.group(1).strip():
            return match.group(1).strip()
    return None


def parse_script_text(text_value: str) -> Tuple[ScriptLine, ...]:
    """Parse ``Speaker: text`` script content into raw script lines."""
    lines: list[ScriptLine] = []
    current_recipient = ""

    for raw_line in text_value.replace("\ufeff", "").splitlines():
        stripped = raw_line.strip()
        if not stripped:
            continue

        if stripped.startswith(">") and stripped.endswith("<"):
            match = CONVERSATION_COMMAND_PATTERN.search(stripped)
            if match and match.group(1).strip():
                current_recipient = match.group(1).strip()
            lines.append(ScriptLine(kind=LineKind.COMMAND, text=stripped))
            continue

        match = SPEAKER_LINE_PATTERN.match(stripped)
        if not match:
            if not lines or lines[-1].kind == LineKind.COMMAND:
                raise ScheduleValidationError(
                    INVALID_SCRIPT_CODE, f"line has no speaker: {stripped!r}"
                )
            previous = lines[-1]
            lines[-1] = ScriptLine(
                kind=previous.kind,
                text=previous.text + "\n" + stripped,
                sender=previous.sender,
                speaker=previous.speaker,
                image_name=previous.image_name,
            )
            continue

        speaker_token, message_text = match.group(1).strip(), match.group(2).strip()
        is_me = speaker_token.lower() == Sender.ME.value
        sender = Sender.ME if is_me else Sender.THEM
        speaker = "Me" if is_me else (current_recipient or "Them")
        image_name = find_inline_image(message_text)
        if image_name is not None:
            lines.append(
                ScriptLine(
                    kind=LineKind.IMAGE,
                    text=f"> Image {image_name} <",
                    sender=sender,
                    speaker=speaker,
                    image_name=image_name,
                )
            )
            continue
        lines.append(
            ScriptLine(
                kind=LineKind.TEXT, text=message_text, sender=sender, speaker=speaker
            )
        )

    if not lines:
        raise ScheduleValidationError(INVALID_SCRIPT_CODE, "script contains no lines")
    return tuple(lines)


def _optional_number(entry: Mapping[str, Any], key: str, code: str) -> float | None:
    value = entry.get(key)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ScheduleValidationError(code, f"{key} must be a number")
    return float(value)


def _parse_line_entry(entry: Any, index: int) -> ScriptLine:
    if not isinstance(entry, Mapping):
        raise ScheduleValidationError(
            INVALID_SCRIPT_CODE, f"message {index} must be an object"
        )
    text_value = entry.get("text", "")
    if not isinstance(text_value, str):
        raise ScheduleValidationError(
            INVALID_SCRIPT_CODE, f"message {index} text must be a string"
        )
    kind_value = str(entry.get("type", LineKind.TEXT.value)).strip().lower()
    try:
        kind = LineKind(kind_value)
    except ValueError as exc:
        raise ScheduleValidationError(
            INVALID_SCRIPT_CODE, f"message {index} has invalid type: {kind_value!r}"
        ) from exc
    sender = parse_sender(str(entry.get("sender", Sender.THEM.value)))
    clip_path = entry.get("clip_path")
    if clip_path is not None and (not isinstance(clip_path, str) or not clip_path.strip()):
        raise ScheduleValidationError(
            INVALID_SCRIPT_CODE, f"message {index} clip_path must be non-empty"
        )
    return ScriptLine(
        kind=kind,
        text=text_value,
        sender=sender,
        speaker=str(entry.get("speaker", "")),
        clip_duration_seconds=_optional_number(
            entry, "clip_duration_seconds", INVALID_SCRIPT_CODE
        ),
        clip_path=clip_path,
        image_name=entry.get("image_name"),
    )


def _parse_segment_line(entry: Any, label: str) -> SegmentLine:
    if not isinstance(entry, Mapping):
        raise ScheduleValidationError(
            INVALID_MONETIZATION_CODE, f"{label} must be an object"
        )
    text_value = entry.get("text", "")
    if not isinstance(text_value, str):
        raise ScheduleValidationError(
            INVALID_MONETIZATION_CODE, f"{label} text must be a string"
        )
    return SegmentLine(
        text=text_value,
        sender=parse_sender(str(entry.get("sender", Sender.THEM.value))),
        clip_duration_seconds=_optional_number(
            entry, "clip_duration_seconds", INVALID_MONETIZATION_CODE
        ),
    )


def parse_monetization_payload(
    payload: Mapping[str, Any], default_insert_index: int | None
) -> MonetizationSegment | None:
    """Parse a monetization object; returns None when disabled or unplaced."""
    if not payload.get("enabled", True):
        return None
    insert_index = payload.get("insert_after_index", default_insert_index)
    if insert_index is None:
        return None
    if isinstance(insert_index, bool) or not isinstance(insert_index, int):
        raise ScheduleValidationError(
            INVALID_MONETIZATION_CODE, "insert_after_index must be an integer"
        )
    mode_value = str(payload.get("mode", SegmentMode.EXCHANGE.value)).strip().lower()
    try:
        mode = SegmentMode(mode_value)
    except ValueError as exc:
        raise ScheduleValidationError(
            INVALID_MONETIZATION_CODE, f"invalid segment mode: {mode_value!r}"
        ) from exc

    intro = _parse_segment_line(payload.get("intro", {}), "intro")
    if mode == SegmentMode.SINGLE_REPLY:
        lines: Tuple[SegmentLine, ...] = (
            _parse_segment_line(payload.get("reply"), "reply"),
        )
    else:
        raw_lines = payload.get("lines", [])
        if not isinstance(raw_lines, list):
            raise ScheduleValidationError(
                INVALID_MONETIZATION_CODE, "lines must be a list"
            )
        lines = tuple(
            _parse_segment_line(entry, f"line {index}")
            for index, entry in enumerate(raw_lines)
        )
    exchange_gap = payload.get("exchange_gap_frames", 0)
    if isinstance(exchange_gap, bool) or not isinstance(exchange_gap, int):
        raise ScheduleValidationError(
            INVALID_MONETIZATION_CODE, "exchange_gap_frames must be an integer"
        )
    return MonetizationSegment(
        mode=mode,
        intro=intro,
        lines=lines,
        insert_after_index=insert_index,
        reply_start_seconds=_optional_number(
            payload, "reply_start_seconds", INVALID_MONETIZATION_CODE
        ),
        exchange_gap_frames=exchange_gap,
    )


def parse_script_payload(payload: Any) -> Tuple[Tuple[ScriptLine, ...], Mapping[str, Any] | None]:
    """Parse the JSON script form into raw lines and a monetization object."""
    if not isinstance(payload, Mapping):
        raise ScheduleValidationError(INVALID_SCRIPT_CODE, "script must be an object")
    raw_messages = payload.get("messages")
    if not isinstance(raw_messages, list):
        raise ScheduleValidationError(INVALID_SCRIPT_CODE, "messages must be a list")
    lines = tuple(
        _parse_line_entry(entry, index) for index, entry in enumerate(raw_messages)
    )
    monetization = payload.get("monetization")
    if monetization is not None and not isinstance(monetization, Mapping):
        raise ScheduleValidationError(
            INVALID_MONETIZATION_CODE, "monetization must be an object"
        )
    return lines, monetization
