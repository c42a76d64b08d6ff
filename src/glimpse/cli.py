"""Glimpse CLI."""

from __future__ import annotations

import asyncio
import sys

import click

from glimpse.assistant import Assistant
from glimpse.config import Config
from glimpse.llm import build_chat_backend
from glimpse.memory.importance import ImportanceAssessor
from glimpse.memory.similarity import similarity as jaccard
from glimpse.observability import setup_logging
from glimpse.types import StreamEvent


@click.group()
@click.option("--debug/--no-debug", default=None, help="Enable debug-only surfaces")
@click.option("--log-level", envvar="GLIMPSE_LOG_LEVEL", default=None, help="Log level")
@click.pass_context
def main(ctx: click.Context, debug: bool | None, log_level: str | None) -> None:
    """Glimpse: ambient session memory for on-demand chat."""
    config = Config()
    if debug is not None:
        config.debug = debug
    if log_level:
        config.logging.level = log_level
    setup_logging(config.logging.level, config.logging.format)
    ctx.ensure_object(dict)
    ctx.obj["config"] = config


@main.command()
@click.option("--host", "-h", default=None, help="Bind host")
@click.option("--port", "-p", default=None, type=int, help="Bind port")
@click.pass_context
def serve(ctx: click.Context, host: str | None, port: int | None) -> None:
    """Start the HTTP API server."""
    import uvicorn
    from glimpse.api.routes import create_app

    config: Config = ctx.obj["config"]
    host = host or config.api.host
    port = port or config.api.port
    app = create_app(config)
    click.echo(f"Starting Glimpse API on {host}:{port}")
    uvicorn.run(app, host=host, port=port, log_level=config.logging.level.lower())


@main.command()
@click.argument("query")
@click.option("--screen-text", "-s", default=None, help="Screen text to send with the query")
@click.pass_context
def ask(ctx: click.Context, query: str, screen_text: str | None) -> None:
    """Ask one question and stream the answer."""
    config: Config = ctx.obj["config"]
    failed = asyncio.run(_ask(config, query, screen_text))
    if failed:
        sys.exit(1)


async def _ask(config: Config, query: str, screen_text: str | None) -> bool:
    printed = 0
    failed = False

    def on_event(event: StreamEvent) -> None:
        nonlocal printed, failed
        if event.error:
            failed = True
            click.echo(event.text, err=True)
            return
        if event.done:
            click.echo()
            return
        # Snapshots are cumulative; print only the new tail.
        click.echo(event.text[printed:], nl=False)
        printed = len(event.text)

    async with Assistant(config) as assistant:
        assistant.subscribe(on_event)
        await assistant.submit_query(query, live_screen_text=screen_text)
        await assistant.dispatcher.wait_idle()
    return failed


@main.command()
@click.argument("text")
@click.pass_context
def assess(ctx: click.Context, text: str) -> None:
    """Rate the importance (1-10) of a piece of screen text."""
    config: Config = ctx.obj["config"]

    async def _run() -> int:
        chat = build_chat_backend(config.llm)
        assessor = ImportanceAssessor(
            chat,
            default=config.memory.default_importance,
            max_tokens=config.llm.importance_max_tokens,
        )
        try:
            return await assessor.assess(text)
        finally:
            if chat is not None:
                await chat.close()

    click.echo(asyncio.run(_run()))


@main.command()
@click.argument("a")
@click.argument("b")
def similarity(a: str, b: str) -> None:
    """Print the word-set similarity of two texts."""
    click.echo(f"{jaccard(a, b):.4f}")


if __name__ == "__main__":
    main()
