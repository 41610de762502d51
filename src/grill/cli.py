"""CLI for the ``grill`` command."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Optional

import typer

from .environment import Environment
from .errors import GrillError
from .log_setup import setup_logging
from .session import Session


logger = logging.getLogger(__name__)

app = typer.Typer(
    help="Grill - an interactive CLI tool to augment existing LLM CLIs",
    add_completion=False,
)


def _environment() -> Environment:
    return Environment(Path.cwd())


def _require_environment() -> Environment:
    env = _environment()
    if not env.exists():
        typer.echo("Error: No grill environment found. Run 'grill init' first.", err=True)
        raise typer.Exit(code=1)
    return env


async def run_session(env: Environment, task_name: Optional[str] = None) -> None:
    """Run a session until /quit or Ctrl-C, always tearing it down."""
    session = Session(env)
    try:
        await session.start(task_name)
        while session.is_running():
            await asyncio.sleep(0.1)
    finally:
        await session.stop()


def _start(task_name: Optional[str], log_level: str) -> None:
    env = _require_environment()
    log_file = setup_logging(env.logs_dir, log_level)
    logger.info("Session starting (task=%s)", task_name or "<current>")
    try:
        asyncio.run(run_session(env, task_name))
    except GrillError as e:
        logger.error("Session failed: %s", e)
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1)
    except KeyboardInterrupt:
        pass
    typer.echo("Session ended.")
    logger.info("Session ended; log at %s", log_file)


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    log_level: str = typer.Option(
        "INFO", "--log-level", envvar="GRILL_LOG", help="Log level for .grill/logs/grill.log"
    ),
):
    """
    Wrap an LLM CLI with task switching.

    Examples:
        # Create .grill/ in the current directory
        grill init

        # Start with the current task
        grill

        # Start with a specific task
        grill start --task refactor
    """
    ctx.obj = {"log_level": log_level}
    if ctx.invoked_subcommand is None:
        typer.echo("Starting grill session with default settings...")
        _start(None, log_level)


@app.command()
def init():
    """Initialize a new grill environment in the current directory."""
    env = _environment()
    typer.echo("Initializing grill environment...")
    try:
        env.init()
    except (GrillError, OSError) as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1)
    typer.echo("Grill environment initialized successfully.")


@app.command()
def start(
    ctx: typer.Context,
    task: Optional[str] = typer.Option(None, "--task", "-t", help="Name of the task to start"),
):
    """Start a grill session with the specified task (or the current one)."""
    log_level = (ctx.obj or {}).get("log_level", "INFO")
    _require_environment()
    typer.echo("Starting grill session...")
    _start(task, log_level)


if __name__ == "__main__":
    app()
