from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable


# Callbacks and hooks may be plain functions or coroutine functions.
ToolCallback = Callable[[dict], Any]
BeforeRequestHook = Callable[[dict], "dict | Awaitable[dict]"]
AfterResponseHook = Callable[[Any], Any]
LifecycleHook = Callable[[], Any]


def normalize_schema(schema: dict) -> dict:
    s = dict(schema or {})
    s.setdefault("type", "object")
    return s


@dataclass
class ToolSchema:
    """A client tool advertised to the agent with every request."""

    name: str
    description: str
    parameters: dict = field(default_factory=lambda: {"type": "object", "properties": {}})

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "description": self.description,
            "parameters": self.parameters,
        }


@dataclass
class PluginHooks:
    on_register: LifecycleHook | None = None
    before_request: BeforeRequestHook | None = None
    after_response: AfterResponseHook | None = None
    on_unregister: LifecycleHook | None = None


@dataclass
class PluginBundle:
    """
    An installable unit of client tools.

    Attributes
    ----------
    name, version:
        Identity of the bundle.  ``name`` is unique within a registry.
    tools:
        Tool schemas contributed to every outbound request.
    executors:
        Tool name -> callback.  Every key must have a matching schema in
        ``tools``; a schema without a callback is advertised but executed
        server side.
    hooks:
        Optional lifecycle hooks.
    signature:
        Signature over the canonical plugin code, checked at registration time.
    """

    name: str
    version: str
    tools: list[ToolSchema] = field(default_factory=list)
    executors: dict[str, ToolCallback] = field(default_factory=dict)
    hooks: PluginHooks = field(default_factory=PluginHooks)
    signature: str | None = None

    def tool_names(self) -> list[str]:
        return [t.name for t in self.tools]

    def get_tool(self, name: str) -> ToolSchema | None:
        for tool in self.tools:
            if tool.name == name:
                return tool
        return None
