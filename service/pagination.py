"""Greedy pagination of chat messages into fixed-height screens."""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Sequence, Tuple

from domain.chat_script import (
    DEFAULT_BUBBLE_METRICS,
    EMPTY_SCREEN_CODE,
    PAGINATION_MISMATCH_CODE,
    BubbleMetrics,
    Message,
    ScheduleInvariantError,
)
from service.estimates import (
    available_screen_height,
    estimate_group_height,
    estimate_message_height,
)


@dataclass(frozen=True)
class Screen:
    """Contiguous run of messages shown together on one screen."""

    messages: Tuple[Message, ...]
    show_header: bool
    theme: str
    conversation_id: int
    recipient_name: str = ""


@dataclass(frozen=True)
class _PageState:
    closed: Tuple[Screen, ...] = ()
    current: Screen | None = None
    used_height: int = 0


def collect_bubble_groups(
    messages: Sequence[Message],
) -> Tuple[Tuple[Message, ...], ...]:
    """Split messages into same-sender runs that never cross a screen boundary."""
    groups: list[Tuple[Message, ...]] = []
    current: list[Message] = []
    for message in messages:
        if current and _breaks_group(current[-1], message):
            groups.append(tuple(current))
            current = []
        current.append(message)
    if current:
        groups.append(tuple(current))
    return tuple(groups)


def _breaks_group(previous: Message, message: Message) -> bool:
    return (
        message.sender != previous.sender
        or message.starts_conversation
        or message.theme != previous.theme
        or message.conversation_id != previous.conversation_id
    )


def _starts_new_screen(screen: Screen, message: Message) -> bool:
    return bool(screen.messages) and (
        message.starts_conversation
        or message.theme != screen.theme
        or message.conversation_id != screen.conversation_id
    )


def _emit(screen: Screen) -> Screen:
    if not screen.messages:
        raise ScheduleInvariantError(
            EMPTY_SCREEN_CODE,
            "pagination attempted to emit an empty screen",
            {"conversation_id": screen.conversation_id},
        )
    return screen


def _open(
    closed: Tuple[Screen, ...], first: Message, header_once_per_conversation: bool
) -> Screen:
    show_header = (
        not header_once_per_conversation or first.starts_conversation or not closed
    )
    return Screen(
        messages=(),
        show_header=show_header,
        theme=first.theme,
        conversation_id=first.conversation_id,
        recipient_name=first.recipient_name,
    )


def _extend(screen: Screen, messages: Sequence[Message]) -> Screen:
    return replace(screen, messages=screen.messages + tuple(messages))


def _split_group(
    closed: Tuple[Screen, ...],
    screen: Screen,
    group: Sequence[Message],
    screen_height_budget: int,
    header_once_per_conversation: bool,
    metrics: BubbleMetrics,
) -> _PageState:
    chunk_height = 0
    for message in group:
        message_height = estimate_message_height(message, metrics)
        if screen.messages:
            available = available_screen_height(
                screen_height_budget, screen.show_header, metrics
            )
            candidate = chunk_height + metrics.message_gap + message_height
            if candidate + metrics.group_margin <= available:
                screen = _extend(screen, (message,))
                chunk_height = candidate
                continue
            closed = closed + (_emit(screen),)
            screen = _open(closed, message, header_once_per_conversation)
        # A fresh chunk always takes its first message, even an oversized one.
        screen = _extend(screen, (message,))
        chunk_height = message_height
    return _PageState(
        closed=closed, current=screen, used_height=chunk_height + metrics.group_margin
    )


def _place_group(
    state: _PageState,
    group: Sequence[Message],
    screen_height_budget: int,
    header_once_per_conversation: bool,
    metrics: BubbleMetrics,
) -> _PageState:
    first = group[0]
    closed = state.closed
    screen = state.current
    used_height = state.used_height
    if screen is not None and _starts_new_screen(screen, first):
        closed = closed + (_emit(screen),)
        screen = None
    if screen is None:
        screen = _open(closed, first, header_once_per_conversation)
        used_height = 0

    group_height = estimate_group_height(group, metrics)
    available = available_screen_height(
        screen_height_budget, screen.show_header, metrics
    )
    gap = metrics.group_gap if screen.messages else 0
    if used_height + gap + group_height <= available:
        return _PageState(
            closed=closed,
            current=_extend(screen, group),
            used_height=used_height + gap + group_height,
        )

    if screen.messages:
        closed = closed + (_emit(screen),)
        screen = _open(closed, first, header_once_per_conversation)
        available = available_screen_height(
            screen_height_budget, screen.show_header, metrics
        )
    if group_height <= available:
        return _PageState(
            closed=closed, current=_extend(screen, group), used_height=group_height
        )
    return _split_group(
        closed, screen, group, screen_height_budget, header_once_per_conversation, metrics
    )


def check_partition(messages: Sequence[Message], screens: Sequence[Screen]) -> None:
    """Raise when screens do not reproduce the input messages exactly."""
    paged_ids = [message.message_id for screen in screens for message in screen.messages]
    input_ids = [message.message_id for message in messages]
    if paged_ids != input_ids:
        raise ScheduleInvariantError(
            PAGINATION_MISMATCH_CODE,
            f"pagination lost or reordered messages: "
            f"expected {len(input_ids)}, got {len(paged_ids)}",
            {
                "input_count": len(input_ids),
                "paginated_count": len(paged_ids),
                "screen_count": len(screens),
            },
        )


def paginate(
    messages: Sequence[Message],
    screen_height_budget: int,
    header_once_per_conversation: bool = True,
    metrics: BubbleMetrics = DEFAULT_BUBBLE_METRICS,
) -> Tuple[Screen, ...]:
    """Pack bubble groups greedily into screens of a fixed pixel budget."""
    state = _PageState()
    for group in collect_bubble_groups(messages):
        state = _place_group(
            state, group, screen_height_budget, header_once_per_conversation, metrics
        )
    screens = state.closed
    if state.current is not None:
        screens = screens + (_emit(state.current),)
    check_partition(messages, screens)
    return screens


def single_screen_fallback(messages: Sequence[Message]) -> Tuple[Screen, ...]:
    """Return one unpaginated screen holding every message."""
    if not messages:
        return ()
    first = messages[0]
    return (
        Screen(
            messages=tuple(messages),
            show_header=True,
            theme=first.theme,
            conversation_id=first.conversation_id,
            recipient_name=first.recipient_name,
        ),
    )
