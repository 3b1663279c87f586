"""Sample plugin bundles for testing."""

from __future__ import annotations

from hustle.plugins.base import PluginBundle, PluginHooks, ToolSchema


def echo(args: dict) -> dict:
    return {"echo": args.get("message", "")}


async def add(args: dict) -> int:
    return args["a"] + args["b"]


def explode(args: dict):
    raise RuntimeError("boom")


ECHO_TOOL = ToolSchema(
    name="echo",
    description="Echoes the input message back.",
    parameters={
        "type": "object",
        "properties": {"message": {"type": "string"}},
        "required": ["message"],
    },
)

ADD_TOOL = ToolSchema(
    name="add",
    description="Adds two integers.",
    parameters={
        "type": "object",
        "properties": {"a": {"type": "integer"}, "b": {"type": "integer"}},
        "required": ["a", "b"],
    },
)

EXPLODE_TOOL = ToolSchema(
    name="explode",
    description="Always fails.",
    parameters={"type": "object", "properties": {}},
)

SERVER_TOOL = ToolSchema(
    name="price_lookup",
    description="Executed by the server; advertised only.",
    parameters={"type": "object", "properties": {"symbol": {"type": "string"}}},
)


def make_echo_bundle(name: str = "echoer", hooks: PluginHooks | None = None, **kwargs) -> PluginBundle:
    return PluginBundle(
        name=name,
        version="1.0.0",
        tools=[ECHO_TOOL],
        executors={"echo": echo},
        hooks=hooks or PluginHooks(),
        **kwargs,
    )


def make_math_bundle(name: str = "math") -> PluginBundle:
    return PluginBundle(
        name=name,
        version="0.3.1",
        tools=[ADD_TOOL, EXPLODE_TOOL],
        executors={"add": add, "explode": explode},
    )


def make_server_bundle(name: str = "market") -> PluginBundle:
    return PluginBundle(name=name, version="2.0.0", tools=[SERVER_TOOL])
