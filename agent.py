#!/usr/bin/env python3
"""Main CLI interface for the local tool-calling chat agent."""

import asyncio
import logging
import signal
from contextlib import contextmanager

import click

from chat_agent.core.cancellation import CancellationToken
from chat_agent.core.chat_interface import (
    ChatSession,
    StreamRenderer,
    file_memories_provider,
)
from chat_agent.core.conductor import Conductor
from chat_agent.core.input_handler import InterruptibleInput
from chat_agent.core.tool_registry import ToolRegistry
from chat_agent.providers.ollama_provider import OllamaProvider
from config import HostConfig, create_sample_env, load_config

logger = logging.getLogger(__name__)

EXIT_COMMANDS = ("quit", "exit")


def configure_logging(config: HostConfig):
    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def build_provider(config: HostConfig) -> OllamaProvider:
    return OllamaProvider(
        host=config.ollama_url,
        chat_model=config.chat_model,
        chat_context_length=config.chat_model_context_length,
        tools_model=config.effective_tools_model,
        tools_context_length=config.effective_tools_context_length,
    )


def build_conductor(config: HostConfig, provider, tool_registry) -> Conductor:
    return Conductor(
        provider,
        tool_registry,
        cancellation_token=CancellationToken(),
        max_phases=config.max_phases,
        parallel_tool_calls=config.parallel_tool_calls,
        chat_model=config.chat_model,
        tools_model=config.effective_tools_model,
    )


def build_session(config: HostConfig, provider, tool_registry) -> ChatSession:
    memories_provider = None
    if config.memories_path is not None:
        memories_provider = file_memories_provider(config.memories_path)
    return ChatSession(
        build_conductor(config, provider, tool_registry),
        memories_provider=memories_provider,
    )


async def connect_tools(
    config: HostConfig, tool_registry: ToolRegistry, renderer: StreamRenderer
):
    """Connect to the configured MCP servers and discover their tools."""
    servers = list(config.mcp_servers.values())
    if not servers:
        logger.info("No MCP servers configured, running without tools")
        return

    report = await tool_registry.connect(servers)
    for error in report.errors:
        renderer.print_error(
            f"MCP server '{error.server_name}' ({error.server_command}) "
            f"failed to start: {error.message}"
        )
    if report.error_message:
        renderer.print_error(report.error_message)

    if report.success:
        await tool_registry.discover_tools()


@contextmanager
def cancel_on_sigint(session: ChatSession):
    """Route Ctrl+C to the session's cancellation token while answering."""
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, session.cancel, "User cancelled")
        installed = True
    except (NotImplementedError, RuntimeError):
        # No signal handlers on this platform/loop; Ctrl+C raises instead
        installed = False
    try:
        yield
    finally:
        if installed:
            loop.remove_signal_handler(signal.SIGINT)


async def run_turn(session: ChatSession, renderer: StreamRenderer, question: str):
    """Ask one question and render the answer as it streams in."""
    renderer.start()
    with cancel_on_sigint(session):
        async for chunk in session.ask(question):
            renderer.render(chunk)
    renderer.end()

    if session.cancellation_token.is_cancelled:
        renderer.print_cancelled()


async def interactive_chat(config: HostConfig):
    renderer = StreamRenderer()
    provider = build_provider(config)
    tool_registry = ToolRegistry()
    input_handler = InterruptibleInput()

    try:
        await connect_tools(config, tool_registry, renderer)
        session = build_session(config, provider, tool_registry)

        renderer.console.print(
            f"[bold blue]Chat Agent[/bold blue] - model "
            f"[green]{config.chat_model}[/green], {len(tool_registry)} tools. "
            f"Type 'quit' to exit, 'tools' to list "
            f"tools, '/clear' to reset the conversation."
        )

        while True:
            user_input = await input_handler.get_input("You: ")
            if user_input is None:
                break

            user_input = user_input.strip()
            if not user_input:
                continue
            if user_input.lower() in EXIT_COMMANDS:
                break
            if user_input.lower() == "tools":
                renderer.print_tools(tool_registry.tools)
                continue
            if user_input == "/clear":
                session.clear()
                renderer.console.print("[dim]Conversation cleared.[/dim]")
                continue

            await run_turn(session, renderer, user_input)
    finally:
        await tool_registry.shutdown()
        await provider.close()


async def ask_question(config: HostConfig, question: str):
    renderer = StreamRenderer()
    provider = build_provider(config)
    tool_registry = ToolRegistry()
    try:
        await connect_tools(config, tool_registry, renderer)
        session = build_session(config, provider, tool_registry)
        await run_turn(session, renderer, question)
    finally:
        await tool_registry.shutdown()
        await provider.close()


async def list_tools(config: HostConfig):
    renderer = StreamRenderer()
    tool_registry = ToolRegistry()
    try:
        await connect_tools(config, tool_registry, renderer)
        renderer.print_tools(tool_registry.tools)
    finally:
        await tool_registry.shutdown()


async def list_models(config: HostConfig):
    renderer = StreamRenderer()
    provider = build_provider(config)
    try:
        models = await provider.list_models()
    except Exception as e:
        logger.error(f"Failed to list models: {e}")
        renderer.print_error(f"Could not list models from {config.ollama_url}: {e}")
        return
    finally:
        await provider.close()
    renderer.print_models(models, [config.chat_model, config.effective_tools_model])


# CLI functionality
@click.group()
def cli():
    """Chat Agent - Chat with a local Ollama model that can call MCP tools."""
    pass


@cli.command()
def init():
    """Create a sample .env file."""
    create_sample_env()


@cli.command()
def chat():
    """Start an interactive chat session."""
    config = load_config()
    configure_logging(config)
    asyncio.run(interactive_chat(config))


@cli.command()
@click.argument("question")
def ask(question):
    """Ask a single question."""
    config = load_config()
    configure_logging(config)
    asyncio.run(ask_question(config, question))


@cli.command()
def tools():
    """List the tools exposed by the configured MCP servers."""
    config = load_config()
    configure_logging(config)
    asyncio.run(list_tools(config))


@cli.command()
def models():
    """List the models installed on the Ollama server."""
    config = load_config()
    configure_logging(config)
    asyncio.run(list_models(config))


@cli.group()
def mcp():
    """Manage MCP servers."""
    pass


@mcp.command()
@click.argument("server_spec")
@click.option("--env", multiple=True, help="Environment variable (format: KEY=VALUE)")
def add(server_spec, env):
    """Add an MCP server configuration.

    Format: name:command:arg1:arg2:...

    Examples:
        python agent.py mcp add files:npx:-y:@modelcontextprotocol/server-filesystem:.
        python agent.py mcp add weather:python:weather_server.py
    """
    parts = server_spec.split(":")
    if len(parts) < 2:
        click.echo(
            "❌ Invalid server specification. Format: name:command:arg1:arg2:..."
        )
        return

    env_dict = {}
    for env_var in env:
        if "=" not in env_var:
            click.echo(
                f"❌ Invalid environment variable '{env_var}', expected KEY=VALUE"
            )
            return
        key, value = env_var.split("=", 1)
        env_dict[key] = value

    config = load_config()
    config.add_mcp_server(parts[0], parts[1], args=parts[2:], env=env_dict)
    config.save_mcp_servers()
    click.echo(f"✅ Added MCP server '{parts[0]}'")


@mcp.command("list")
def list_mcp_servers():
    """List all configured MCP servers."""
    config = load_config()

    if not config.mcp_servers:
        click.echo("No MCP servers configured.")
        click.echo("Add a server with: python agent.py mcp add <name:command:args...>")
        return

    click.echo("Configured MCP servers:")
    for name, server_config in config.mcp_servers.items():
        command = [server_config.command]
        if server_config.script_path:
            command.append(server_config.script_path)
        click.echo(f"📡 {name}")
        click.echo(f"   Command: {' '.join(command + server_config.args)}")
        if server_config.env:
            click.echo(f"   Environment: {', '.join(server_config.env)}")


@mcp.command()
@click.argument("name")
def remove(name):
    """Remove an MCP server configuration."""
    config = load_config()

    if config.remove_mcp_server(name):
        config.save_mcp_servers()
        click.echo(f"✅ Removed MCP server '{name}'")
    else:
        click.echo(f"❌ MCP server '{name}' not found")


def main():
    """Main entry point."""
    cli()


if __name__ == "__main__":
    main()
