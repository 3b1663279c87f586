"""
Main CLI application for hustle-incognito.

Usage:
    hustle chat MESSAGE [--vault ID] [--stream] [--profile NAME] [--debug]
    hustle plugins list
    hustle keygen
    hustle config show|validate
    hustle version
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console

from hustle import __version__
from hustle.config import load_config

app = typer.Typer(name="hustle", help="Hustle Incognito - agent chat client")
plugins_app = typer.Typer(help="Plugin management")
config_app = typer.Typer(help="Configuration management")

app.add_typer(plugins_app, name="plugins")
app.add_typer(config_app, name="config")

console = Console()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _get_config_path() -> Path | None:
    """Find config file in standard locations."""
    candidates = [
        Path.cwd() / "hustle.yaml",
        Path.cwd() / "hustle.yml",
        Path.home() / ".config" / "hustle" / "config.yaml",
    ]
    for p in candidates:
        if p.is_file():
            return p
    return None


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

@app.command()
def chat(
    message: str = typer.Argument(..., help="Message to send"),
    vault: Optional[str] = typer.Option(None, "--vault", help="Vault ID"),
    stream: bool = typer.Option(False, "--stream", help="Print events as they arrive"),
    profile: Optional[str] = typer.Option(None, help="Config profile name"),
    max_tool_rounds: Optional[int] = typer.Option(None, help="Round cap (0 = unbounded)"),
    debug: bool = typer.Option(False, "--debug", help="Enable debug logging"),
):
    """Send one message and print the response."""
    from hustle.cli.output import OutputFormatter
    from hustle.client import HustleClient

    if debug:
        logging.basicConfig(level=logging.DEBUG)

    overrides = {"debug": True} if debug else None
    try:
        client = HustleClient.from_config(_get_config_path(), profile=profile, overrides=overrides)
    except ValueError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)

    formatter = OutputFormatter(console)

    async def _run():
        async with client:
            await client.load_plugins()
            if stream:
                chat_stream = client.chat_stream(message, vault_id=vault, max_tool_rounds=max_tool_rounds)
                async for event in chat_stream:
                    formatter.format_stream_event(event)
                console.print()
                formatter.format_summary(await chat_stream.response)
            else:
                response = await client.chat(message, vault_id=vault, max_tool_rounds=max_tool_rounds)
                formatter.format_response(response)

    try:
        asyncio.run(_run())
    except Exception as e:
        console.print(f"[red]Request failed:[/red] {e}")
        raise typer.Exit(1)


@plugins_app.command("list")
def plugins_list(
    profile: Optional[str] = typer.Option(None, help="Config profile name"),
):
    """Discover entry-point plugins and list their tools."""
    from hustle.cli.output import OutputFormatter
    from hustle.plugins.registry import PluginRegistry

    cfg = load_config(_get_config_path(), profile=profile)
    registry = PluginRegistry(cfg.security)
    formatter = OutputFormatter(console)
    registry.on_security_event(formatter.format_security_event)

    async def _run():
        return await registry.load_entry_points(
            enabled=True,
            group=cfg.plugins.group,
            allow_distributions=set(cfg.plugins.allow_distributions) if cfg.plugins.allow_distributions else None,
            allow_plugins=set(cfg.plugins.allow_plugins) if cfg.plugins.allow_plugins else None,
        )

    try:
        asyncio.run(_run())
    except Exception as e:
        console.print(f"[red]Plugin loading failed:[/red] {e}")
        raise typer.Exit(1)

    formatter.format_plugin_list(registry)


@app.command()
def keygen():
    """Generate an Ed25519 keypair for plugin signing."""
    from hustle.plugins.security import generate_ed25519_keypair

    public_key, private_key = generate_ed25519_keypair()
    console.print(f"[bold]Public key:[/bold]  {public_key}")
    console.print(f"[bold]Private key:[/bold] {private_key}")
    console.print("[dim]Set security.public_key to the public key to verify signed plugins.[/dim]")


@config_app.command("show")
def config_show(
    profile: Optional[str] = typer.Option(None, help="Config profile name"),
):
    """Show effective config."""
    from hustle.cli.output import OutputFormatter

    cfg = load_config(_get_config_path(), profile=profile)
    formatter = OutputFormatter(console)
    formatter.format_config(cfg.to_dict())


@config_app.command("validate")
def config_validate():
    """Validate config and show the resolved essentials."""
    config_path = _get_config_path()
    try:
        cfg = load_config(config_path)
        console.print("[green]Config is valid.[/green]")
        if config_path:
            console.print(f"  Loaded from: {config_path}")
        else:
            console.print("  [dim]No config file found, using defaults.[/dim]")
        console.print(f"  Endpoint: {cfg.api.chat_url}")
        console.print(f"  API key: {'set' if cfg.api.resolve_api_key() else 'missing'} (${cfg.api.api_key_env})")
        console.print(f"  Max tool rounds: {cfg.stream.max_tool_rounds}")
        console.print(f"  Verification: {'skipped' if cfg.security.skip_verification else cfg.security.algorithm}")
        console.print(f"  Plugins enabled: {cfg.plugins.enabled}")
    except Exception as e:
        console.print(f"[red]Config validation failed:[/red] {e}")
        raise typer.Exit(1)


@app.command()
def version():
    """Show version."""
    console.print(f"hustle-incognito v{__version__}")


def main():
    app()


if __name__ == "__main__":
    main()
