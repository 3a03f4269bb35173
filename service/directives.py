"""Directive resolution: raw script lines into the resolved message stream."""

from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Sequence, Tuple

from domain.chat_script import (
    ARROW_COMMAND_PATTERN,
    CONVERSATION_COMMAND_PATTERN,
    DEFAULT_THEME,
    MONETIZATION_COMMAND_PATTERN,
    THEME_COMMAND_PATTERN,
    LineKind,
    Message,
    MessageKind,
    ScriptLine,
)

LOGGER = logging.getLogger("chat_schedule.directives")
UNKNOWN_DIRECTIVE_CODE = "chat_schedule.input.unknown_directive"


@dataclass(frozen=True)
class ResolvedScript:
    """Resolved messages plus the state left after the last directive."""

    messages: Tuple[Message, ...]
    monetization_insert_index: int | None
    theme: str
    recipient_name: str


def resolve_directives(
    lines: Sequence[ScriptLine],
    theme: str = DEFAULT_THEME,
    recipient_name: str = "",
    restart_after_monetization: bool = True,
) -> ResolvedScript:
    """Expand directive lines into per-message conversation and theme flags.

    Directive lines never reach the output. The first renderable message
    always opens a conversation. A monetization marker records how many
    messages precede it; only the first marker counts. When
    ``restart_after_monetization`` is set, the message following the marker
    opens a new conversation, since the chat is hidden while the segment
    plays.
    """
    messages: list[Message] = []
    current_theme = theme
    current_recipient = recipient_name
    pending_start = True
    conversation_id = -1
    mark_next_with_arrow = False
    insert_index: int | None = None

    for line in lines:
        if line.kind == LineKind.COMMAND:
            directive = line.text.strip()
            recognized = False

            theme_match = THEME_COMMAND_PATTERN.search(directive)
            if theme_match:
                current_theme = theme_match.group(1).lower()
                recognized = True

            conversation_match = CONVERSATION_COMMAND_PATTERN.search(directive)
            if conversation_match and conversation_match.group(1).strip():
                current_recipient = conversation_match.group(1).strip()
                pending_start = True
                recognized = True

            if ARROW_COMMAND_PATTERN.search(directive):
                mark_next_with_arrow = True
                recognized = True

            if MONETIZATION_COMMAND_PATTERN.search(directive):
                recognized = True
                if insert_index is None:
                    insert_index = len(messages)
                    if restart_after_monetization:
                        pending_start = True
                else:
                    LOGGER.warning(
                        "%s: ignoring repeated monetization marker", UNKNOWN_DIRECTIVE_CODE
                    )

            if not recognized:
                LOGGER.warning("%s: %s", UNKNOWN_DIRECTIVE_CODE, directive)
            continue

        if pending_start:
            conversation_id += 1

        messages.append(
            Message(
                message_id=len(messages),
                text=line.text,
                sender=line.sender,
                conversation_id=conversation_id,
                starts_conversation=pending_start,
                theme=current_theme,
                kind=MessageKind.MEDIA if line.kind == LineKind.IMAGE else MessageKind.CONTENT,
                clip_duration_seconds=line.clip_duration_seconds,
                speaker=line.speaker,
                recipient_name=current_recipient,
                show_arrow=mark_next_with_arrow,
                clip_path=line.clip_path,
            )
        )
        pending_start = False
        mark_next_with_arrow = False

    return ResolvedScript(
        messages=tuple(messages),
        monetization_insert_index=insert_index,
        theme=current_theme,
        recipient_name=current_recipient,
    )
