"""
Run transport strategies.

Both strategies take an already-populated thread (the user message has been
appended) and turn one assistant run into RunEvents. Which one is used is a
configuration decision (``ASSISTANT_TRANSPORT``), never SDK introspection.
"""
from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, AsyncIterator, Awaitable, Callable, Iterable, List, Optional

from aiwidget.services.assistant.errors import (
    ProviderError,
    RunFailedStatus,
    RunTimeout,
)
from aiwidget.services.assistant.events import (
    RunCompleted,
    RunEvent,
    RunFailed,
    TextDelta,
    ToolEvent,
)

logger = logging.getLogger(__name__)

FAILED_RUN_STATUSES = ("failed", "cancelled", "expired")
_FAILED_RUN_EVENTS = {f"thread.run.{status}": status for status in FAILED_RUN_STATUSES}


def message_text(message: Any) -> str:
    parts: List[str] = []
    for block in getattr(message, "content", None) or []:
        text = getattr(block, "text", None)
        value = getattr(text, "value", None)
        if value:
            parts.append(value)
    return "".join(parts)


def latest_assistant_text(messages: Iterable[Any], run_id: Optional[str] = None) -> str:
    """
    Body of the newest assistant-authored message.

    ``messages`` must be newest first. When ``run_id`` is given, messages
    produced by that run win over older assistant entries such as injected
    operator turns.
    """
    assistant_messages = [m for m in messages if getattr(m, "role", None) == "assistant"]
    if run_id:
        for message in assistant_messages:
            if getattr(message, "run_id", None) == run_id:
                return message_text(message)
    return message_text(assistant_messages[0]) if assistant_messages else ""


def _last_error_detail(run: Any) -> Optional[str]:
    last_error = getattr(run, "last_error", None)
    return getattr(last_error, "message", None) if last_error else None


class RunStrategy:
    name = "base"

    def execute(
        self,
        client: Any,
        thread_ref: str,
        assistant_ref: str,
        instructions: str,
    ) -> AsyncIterator[RunEvent]:
        raise NotImplementedError


class StreamingRunStrategy(RunStrategy):
    """Consume the provider's server-sent run events."""

    name = "stream"

    async def execute(self, client, thread_ref, assistant_ref, instructions):
        streamed: List[str] = []
        async with client.beta.threads.runs.stream(
            thread_id=thread_ref,
            assistant_id=assistant_ref,
            additional_instructions=instructions,
        ) as stream:
            async for event in stream:
                name = getattr(event, "event", "") or ""
                if name == "thread.message.delta":
                    for block in getattr(event.data.delta, "content", None) or []:
                        value = getattr(getattr(block, "text", None), "value", None)
                        if value:
                            streamed.append(value)
                            yield TextDelta(value)
                elif name.startswith("thread.run.step"):
                    yield ToolEvent({"event": name})
                elif name in _FAILED_RUN_EVENTS:
                    yield RunFailed(RunFailedStatus(_FAILED_RUN_EVENTS[name], _last_error_detail(event.data)))
                    return
                elif name == "error":
                    yield RunFailed(ProviderError(str(getattr(event, "data", "")) or "Provider stream error"))
                    return

            full_text = "".join(streamed)
            final_messages = await stream.get_final_messages()
            # final messages are in creation order
            authoritative = latest_assistant_text(list(reversed(final_messages)))
            if authoritative:
                full_text = authoritative

        yield RunCompleted(full_text)


class PollingRunStrategy(RunStrategy):
    """Create the run and poll its status until terminal or the deadline."""

    name = "poll"

    def __init__(
        self,
        interval: float = 0.8,
        timeout: float = 120.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.interval = interval
        self.timeout = timeout
        self._sleep = sleep
        self._clock = clock

    async def execute(self, client, thread_ref, assistant_ref, instructions):
        run = await client.beta.threads.runs.create(
            thread_id=thread_ref,
            assistant_id=assistant_ref,
            additional_instructions=instructions,
        )
        started = self._clock()
        last_status = None

        while True:
            current = await client.beta.threads.runs.retrieve(run.id, thread_id=thread_ref)
            status = current.status
            if status == "completed":
                break
            if status in FAILED_RUN_STATUSES:
                yield RunFailed(RunFailedStatus(status, _last_error_detail(current)))
                return
            if self._clock() - started > self.timeout:
                await self._cancel(client, thread_ref, run.id)
                yield RunFailed(RunTimeout(self.timeout))
                return
            if status != last_status:
                last_status = status
                yield ToolEvent({"event": f"thread.run.{status}"})
            await self._sleep(self.interval)

        page = await client.beta.threads.messages.list(thread_ref, limit=20, order="desc")
        text = latest_assistant_text(page.data, run_id=run.id)
        if text:
            yield TextDelta(text)
        yield RunCompleted(text)

    async def _cancel(self, client, thread_ref: str, run_id: str) -> None:
        try:
            await client.beta.threads.runs.cancel(run_id, thread_id=thread_ref)
        except Exception as exc:
            logger.warning(f"Failed to cancel timed out run {run_id}: {exc}")


def build_run_strategy(transport: str, poll_interval: float = 0.8, run_timeout: float = 120.0) -> RunStrategy:
    if transport == StreamingRunStrategy.name:
        return StreamingRunStrategy()
    if transport == PollingRunStrategy.name:
        return PollingRunStrategy(interval=poll_interval, timeout=run_timeout)
    raise ValueError(f"Unknown assistant transport: {transport!r} (expected 'stream' or 'poll')")
