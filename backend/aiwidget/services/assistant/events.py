from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, Protocol, Union

from aiwidget.services.assistant.errors import ProviderError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TextDelta:
    text: str


@dataclass(frozen=True)
class ToolEvent:
    info: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class RunCompleted:
    full_text: str


@dataclass(frozen=True)
class RunFailed:
    error: ProviderError

    @property
    def message(self) -> str:
        return self.error.message


RunEvent = Union[TextDelta, ToolEvent, RunCompleted, RunFailed]
TERMINAL_EVENTS = (RunCompleted, RunFailed)


def is_terminal(event: RunEvent) -> bool:
    return isinstance(event, TERMINAL_EVENTS)


class RunSink(Protocol):
    async def on_text_delta(self, text: str) -> None: ...

    async def on_tool_event(self, info: Dict[str, Any]) -> None: ...

    async def on_complete(self, full_text: str) -> None: ...

    async def on_failure(self, error: ProviderError) -> None: ...


async def dispatch_to_sink(events: AsyncIterator[RunEvent], sink: RunSink) -> RunEvent:
    """
    Drive a sink from a run event sequence.

    The sequence already guarantees a single terminal event; the sink receives
    exactly one of on_complete/on_failure. Returns the terminal event.
    """
    async for event in events:
        if isinstance(event, TextDelta):
            await sink.on_text_delta(event.text)
        elif isinstance(event, ToolEvent):
            await sink.on_tool_event(event.info)
        elif isinstance(event, RunCompleted):
            await sink.on_complete(event.full_text)
            return event
        elif isinstance(event, RunFailed):
            await sink.on_failure(event.error)
            return event
    # run_turn never ends without a terminal event; guard for foreign iterators
    terminal = RunFailed(ProviderError("Run ended without a terminal status"))
    await sink.on_failure(terminal.error)
    return terminal
