"""
Assistant Bridge.

Thin async adapter over the OpenAI Assistants API. Callers never see SDK
objects: thread creation returns an opaque reference and a run is exposed as a
sequence of RunEvents that always ends in exactly one terminal event.
"""
from __future__ import annotations

import logging
from contextlib import aclosing, asynccontextmanager
from typing import Any, AsyncIterator, Callable, Dict, Optional

from openai import AsyncOpenAI

from aiwidget.services.assistant.errors import (
    ProviderAuthError,
    ProviderError,
    ProviderRateLimited,
    ProviderUnavailable,
    classify_provider_error,
)
from aiwidget.services.assistant.events import (
    RunEvent,
    RunFailed,
    RunSink,
    dispatch_to_sink,
    is_terminal,
)
from aiwidget.services.assistant.strategies import RunStrategy, build_run_strategy
from aiwidget.utils.retry import with_retry

logger = logging.getLogger(__name__)

OPERATOR_PREFIX = "[OPERATOR] "

ClientFactory = Callable[[str], Any]


def openai_client_factory(credential: str) -> AsyncOpenAI:
    return AsyncOpenAI(api_key=credential)


class AssistantBridge:
    def __init__(self, strategy: RunStrategy, client_factory: ClientFactory = openai_client_factory):
        self.strategy = strategy
        self._client_factory = client_factory

    @classmethod
    def from_settings(cls, settings, client_factory: ClientFactory = openai_client_factory) -> "AssistantBridge":
        strategy = build_run_strategy(
            settings.ASSISTANT_TRANSPORT,
            poll_interval=settings.ASSISTANT_POLL_INTERVAL_SECONDS,
            run_timeout=settings.ASSISTANT_RUN_TIMEOUT_SECONDS,
        )
        return cls(strategy, client_factory=client_factory)

    @asynccontextmanager
    async def _client(self, credential: Optional[str]):
        if not credential:
            raise ProviderAuthError("Project has no provider API key configured", provider_status=None)
        client = self._client_factory(credential)
        try:
            yield client
        finally:
            await client.close()

    @with_retry(max_attempts=3, exception_types=(ProviderUnavailable, ProviderRateLimited))
    async def create_thread(self, credential: Optional[str]) -> str:
        """Create an empty upstream thread and return its reference."""
        async with self._client(credential) as client:
            try:
                thread = await client.beta.threads.create()
            except Exception as exc:
                raise classify_provider_error(exc) from exc
        logger.info(f"Created provider thread {thread.id}", extra={"event": "thread_created"})
        return thread.id

    async def inject_operator_turn(self, credential: Optional[str], thread_ref: str, text: str) -> None:
        """
        Record a human operator's reply in the thread so the assistant sees it
        as context once it resumes. Does not start a run.
        """
        async with self._client(credential) as client:
            try:
                await client.beta.threads.messages.create(
                    thread_ref,
                    role="assistant",
                    content=f"{OPERATOR_PREFIX}{text}",
                )
            except Exception as exc:
                raise classify_provider_error(exc) from exc

    async def run_turn(
        self,
        credential: Optional[str],
        thread_ref: str,
        assistant_ref: str,
        user_text: str,
        instructions: str = "",
    ) -> AsyncIterator[RunEvent]:
        """
        Append ``user_text`` to the thread, run the assistant and yield its
        events.

        Exactly one terminal event (RunCompleted or RunFailed) is yielded and
        nothing follows it. Provider exceptions are reported as RunFailed,
        never raised.
        """
        terminal_seen = False
        try:
            async with self._client(credential) as client:
                await client.beta.threads.messages.create(thread_ref, role="user", content=user_text)
                events = self.strategy.execute(client, thread_ref, assistant_ref, instructions)
                async with aclosing(events):
                    async for event in events:
                        terminal_seen = is_terminal(event)
                        yield event
                        if terminal_seen:
                            return
        except Exception as exc:
            if terminal_seen:
                # consumer already has its terminal event; only teardown failed
                logger.warning(f"Provider client teardown failed: {exc}")
                return
            error = classify_provider_error(exc)
            logger.warning(
                f"Assistant run failed on thread {thread_ref}: {error.message}",
                extra={"event": "run_failed", "error_code": error.error_code},
            )
            terminal_seen = True
            yield RunFailed(error)
            return

        if not terminal_seen:
            yield RunFailed(ProviderError("Run ended without a terminal status"))

    async def run_turn_with_sink(
        self,
        sink: RunSink,
        credential: Optional[str],
        thread_ref: str,
        assistant_ref: str,
        user_text: str,
        instructions: str = "",
    ) -> RunEvent:
        """Callback flavour of run_turn for consumers that prefer a sink."""
        events = self.run_turn(credential, thread_ref, assistant_ref, user_text, instructions)
        async with aclosing(events):
            return await dispatch_to_sink(events, sink)

    async def fetch_assistant_config(self, credential: Optional[str], assistant_ref: str) -> Dict[str, Any]:
        async with self._client(credential) as client:
            try:
                assistant = await client.beta.assistants.retrieve(assistant_ref)
            except Exception as exc:
                raise classify_provider_error(exc) from exc
        return {
            "assistant_id": assistant.id,
            "name": getattr(assistant, "name", None),
            "model": getattr(assistant, "model", None),
            "instructions": assistant.instructions or "",
        }

    async def update_assistant_config(
        self, credential: Optional[str], assistant_ref: str, instructions: str
    ) -> Dict[str, Any]:
        async with self._client(credential) as client:
            try:
                assistant = await client.beta.assistants.update(assistant_ref, instructions=instructions)
            except Exception as exc:
                raise classify_provider_error(exc) from exc
        logger.info(f"Updated instructions for assistant {assistant_ref}", extra={"event": "assistant_updated"})
        return {
            "assistant_id": assistant.id,
            "name": getattr(assistant, "name", None),
            "model": getattr(assistant, "model", None),
            "instructions": assistant.instructions or "",
        }
