from __future__ import annotations

import re

import jsonschema

from hustle.errors import PluginValidationError
from hustle.plugins.base import PluginBundle, ToolSchema, normalize_schema


TOOL_NAME_RE = re.compile(r"^[A-Za-z][A-Za-z0-9_]{0,63}$")


def is_valid_tool_name(name: object) -> bool:
    return isinstance(name, str) and TOOL_NAME_RE.match(name) is not None


def validate_bundle(bundle: PluginBundle) -> None:
    """Raise ``PluginValidationError`` on the first structural violation."""
    if not bundle.name or not isinstance(bundle.name, str):
        raise PluginValidationError("Plugin must have a name")
    if not bundle.version or not isinstance(bundle.version, str):
        raise PluginValidationError(f'Plugin "{bundle.name}" must have a version')

    seen: set[str] = set()
    for tool in bundle.tools:
        if not is_valid_tool_name(tool.name):
            raise PluginValidationError(
                f'Plugin "{bundle.name}": Invalid tool name "{tool.name}". '
                "Must start with a letter and contain only alphanumeric characters "
                "and underscores (max 64 chars)."
            )
        if tool.name in seen:
            raise PluginValidationError(
                f'Plugin "{bundle.name}": Tool "{tool.name}" is defined more than once'
            )
        seen.add(tool.name)

        if not tool.description or not isinstance(tool.description, str):
            raise PluginValidationError(
                f'Plugin "{bundle.name}": Tool "{tool.name}" must have a description'
            )
        if not isinstance(tool.parameters, dict) or tool.parameters.get("type") != "object":
            raise PluginValidationError(
                f'Plugin "{bundle.name}": Tool "{tool.name}" parameters must be an object schema'
            )
        try:
            jsonschema.validators.validator_for(tool.parameters).check_schema(tool.parameters)
        except jsonschema.SchemaError as e:
            raise PluginValidationError(
                f'Plugin "{bundle.name}": Tool "{tool.name}" has an invalid parameter schema: {e.message}'
            ) from e

    for executor_name, executor in bundle.executors.items():
        if executor_name not in seen:
            raise PluginValidationError(
                f'Plugin "{bundle.name}": Executor "{executor_name}" has no matching tool definition'
            )
        if not callable(executor):
            raise PluginValidationError(
                f'Plugin "{bundle.name}": Executor "{executor_name}" is not callable'
            )


class ArgumentValidator:
    @staticmethod
    def validate(tool: ToolSchema, arguments: dict) -> tuple[bool, str | None]:
        try:
            jsonschema.validate(
                instance=arguments,
                schema=normalize_schema(tool.parameters),
            )
            return True, None
        except jsonschema.ValidationError as e:
            return False, str(e.message)
