"""Python client runtime for the Hustle agent chat service."""

from hustle.client import HustleClient
from hustle.config import ClientConfig, load_config
from hustle.errors import (
    HustleError,
    PluginConflictError,
    PluginNotFoundError,
    PluginValidationError,
    PluginVerificationError,
    StreamTimeoutError,
    TransportError,
)
from hustle.events import ClientEvent, EventBus
from hustle.orchestrator.core import ChatStream, Orchestrator
from hustle.plugins import PluginBundle, PluginHooks, PluginRegistry, ToolSchema
from hustle.stream import EventKind, RawFrame, StreamEvent
from hustle.types import AggregatedResponse, ChatMessage, ToolCall, ToolResult

__version__ = "0.2.0"

__all__ = [
    "AggregatedResponse",
    "ChatMessage",
    "ChatStream",
    "ClientConfig",
    "ClientEvent",
    "EventBus",
    "EventKind",
    "HustleClient",
    "HustleError",
    "Orchestrator",
    "PluginBundle",
    "PluginConflictError",
    "PluginHooks",
    "PluginNotFoundError",
    "PluginRegistry",
    "PluginValidationError",
    "PluginVerificationError",
    "RawFrame",
    "StreamEvent",
    "StreamTimeoutError",
    "ToolCall",
    "ToolResult",
    "ToolSchema",
    "TransportError",
    "load_config",
]
