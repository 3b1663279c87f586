"""Output formatting utilities for the CLI."""

from __future__ import annotations

import json
from typing import Any

from rich.console import Console
from rich.panel import Panel
from rich.syntax import Syntax
from rich.table import Table
from rich.text import Text

from hustle.events import ClientEvent
from hustle.plugins.registry import PluginRegistry
from hustle.stream.interpreter import EventKind, StreamEvent
from hustle.types import AggregatedResponse

REASON_COLORS = {
    "skip_verification": "yellow",
    "trusted_builtin": "green",
    "signature_valid": "green",
    "custom_verifier": "green",
    "signature_invalid": "red",
    "no_signature": "red",
    "verification_error": "bold red",
}


class OutputFormatter:
    """Rich-based output formatting for the hustle CLI."""

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console()

    def format_plugin_list(self, registry: PluginRegistry) -> None:
        if not registry.plugin_count:
            self.console.print("[dim]No plugins registered.[/dim]")
            return

        table = Table(title="Registered Plugins", show_lines=True)
        table.add_column("Plugin", style="cyan", no_wrap=True)
        table.add_column("Version", no_wrap=True)
        table.add_column("Tool", no_wrap=True)
        table.add_column("Client-side", no_wrap=True)
        table.add_column("Description")

        for name in registry.plugin_names():
            bundle = registry.get_plugin(name)
            for tool in bundle.tools:
                client_side = Text("yes", style="green") if tool.name in bundle.executors else Text("no", style="dim")
                table.add_row(name, bundle.version, tool.name, client_side, tool.description)

        self.console.print(table)

    def format_security_event(self, event: ClientEvent) -> None:
        reason = event.payload.get("reason", "?")
        color = REASON_COLORS.get(reason, "white")
        self.console.print(
            f"  [{color}]{event.event_type}[/{color}] {event.payload.get('pluginName', '?')} ({reason})"
        )

    def format_stream_event(self, event: StreamEvent) -> None:
        if event.kind == EventKind.TEXT:
            self.console.print(event.value, end="", markup=False, highlight=False)
        elif event.kind == EventKind.TOOL_CALL:
            args = json.dumps(event.value.arguments, default=str)[:80]
            self.console.print(f"\n[yellow]> {event.value.name}({args})[/yellow]")
        elif event.kind == EventKind.TOOL_RESULT:
            out = json.dumps(event.value.output, default=str)[:200]
            style = "red" if event.value.is_error else "cyan"
            self.console.print(f"[{style}]< {event.value.name}: {out}[/{style}]")
        elif event.kind == EventKind.ERROR:
            self.console.print(f"\n[red]Error:[/red] {event.value}")
        elif event.kind == EventKind.MAX_TOOLS_REACHED:
            self.console.print(
                f"\n[magenta]Tool limit reached[/magenta] "
                f"({event.value.get('toolsExecuted')} executed, max {event.value.get('maxSteps')})"
            )

    def format_response(self, response: AggregatedResponse) -> None:
        self.console.print(Panel(response.content or "[dim](no text)[/dim]", title="Response"))
        if response.tool_calls:
            table = Table(title="Tool Calls")
            table.add_column("Call ID", style="dim", no_wrap=True)
            table.add_column("Tool", style="cyan", no_wrap=True)
            table.add_column("Arguments")
            for tc in response.tool_calls:
                table.add_row(tc.call_id, tc.name, json.dumps(tc.arguments, default=str)[:120])
            self.console.print(table)
        self.format_summary(response)

    def format_summary(self, response: AggregatedResponse) -> None:
        parts = [f"finish={response.finish_reason}"]
        if response.message_id:
            parts.append(f"message={response.message_id}")
        if response.usage:
            parts.append(f"usage={json.dumps(response.usage, default=str)}")
        self.console.print(f"[dim]{'  '.join(parts)}[/dim]")

    def format_config(self, config: dict[str, Any]) -> None:
        json_str = json.dumps(config, indent=2, default=str)
        self.console.print(Syntax(json_str, "json", theme="monokai"))
