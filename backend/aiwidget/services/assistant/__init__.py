from aiwidget.services.assistant.bridge import OPERATOR_PREFIX, AssistantBridge, openai_client_factory
from aiwidget.services.assistant.errors import (
    ProviderAuthError,
    ProviderError,
    ProviderNotFound,
    ProviderRateLimited,
    ProviderUnavailable,
    RunFailedStatus,
    RunTimeout,
    classify_provider_error,
)
from aiwidget.services.assistant.events import (
    RunCompleted,
    RunEvent,
    RunFailed,
    RunSink,
    TextDelta,
    ToolEvent,
    dispatch_to_sink,
    is_terminal,
)
from aiwidget.services.assistant.strategies import (
    PollingRunStrategy,
    RunStrategy,
    StreamingRunStrategy,
    build_run_strategy,
)

__all__ = [
    "OPERATOR_PREFIX",
    "AssistantBridge",
    "openai_client_factory",
    "ProviderAuthError",
    "ProviderError",
    "ProviderNotFound",
    "ProviderRateLimited",
    "ProviderUnavailable",
    "RunFailedStatus",
    "RunTimeout",
    "classify_provider_error",
    "RunCompleted",
    "RunEvent",
    "RunFailed",
    "RunSink",
    "TextDelta",
    "ToolEvent",
    "dispatch_to_sink",
    "is_terminal",
    "PollingRunStrategy",
    "RunStrategy",
    "StreamingRunStrategy",
    "build_run_strategy",
]
