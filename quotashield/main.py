"""Main entry point for the quotashield application.

Sets up the Typer CLI application, performs dependency injection (Composition Root),
defines CLI commands, and delegates execution to the CommandHandler.
"""

import asyncio
import logging
import sys
from typing import Annotated, Any, Coroutine, Dict, Optional

import typer

logger = logging.getLogger(__name__)

# --- Core Layer ---
from quotashield.core.command_handler import CommandHandler
from quotashield.core.context import build_context

# --- Infrastructure Layer ---
# Config
from quotashield.infrastructure.config.settings import get_config, load_configuration
# UI
from quotashield.infrastructure.cli.display import ConsoleDisplay
# Monitoring
from quotashield.infrastructure.monitoring.logger_setup import setup_logging

# --- Dependency Injection Container (Manual) ---

def create_dependencies() -> Dict[str, Any]:
    """Creates and wires up all dependencies for the application.

    This acts as the Composition Root.
    """
    dependencies: Dict[str, Any] = {}
    try:
        # 1. Load Configuration First
        load_configuration()
        setup_logging(
            log_level=_log_level_override or get_config("logging.level", "INFO"),
            log_format=get_config("logging.format"),
            log_file=get_config("logging.file"),
        )
        logger.info("Configuration and logging initialized.")

        # 2. Instantiate Infrastructure Adapters & Services
        dependencies["ui"] = ConsoleDisplay()
        dependencies["context"] = build_context()

        # 3. Instantiate Command Handler
        dependencies["command_handler"] = CommandHandler(
            context=dependencies["context"],
            ui=dependencies["ui"],
        )
        logger.info("All dependencies initialized successfully.")
        return dependencies

    except Exception as e:
        logger.error(f"Fatal Error during application initialization: {e}", exc_info=True)
        if dependencies.get("ui") is not None:
            dependencies["ui"].display_error(f"Application Initialization Failed: {e}")
        else:
            print(f"FATAL ERROR during initialization: {e}", file=sys.stderr)
        sys.exit(1)

# --- Wired-up Dependencies ---
# Created on first command so importing the module has no side effects
_dependencies: Optional[Dict[str, Any]] = None
_log_level_override: Optional[str] = None


def get_dependencies() -> Dict[str, Any]:
    global _dependencies
    if _dependencies is None:
        _dependencies = create_dependencies()
    return _dependencies


def reset_dependencies() -> None:
    """Closes and forgets the wired-up dependencies (used between CLI runs in tests)."""
    global _dependencies
    if _dependencies is not None:
        _dependencies["context"].close()
    _dependencies = None

# --- Typer App Definition ---
app = typer.Typer(
    name="quotashield",
    help="quotashield: persistent TTL cache, rate-limit aware retries and bounded task queues.",
    add_completion=False,
)

# --- Helper for Running Async Commands ---
def run_async(coro: Coroutine[Any, Any, None]) -> None:
    """Runs an async command handler from a sync Typer command."""
    try:
        asyncio.run(coro)
    except Exception as e:
        logger.error(f"Error executing async command: {e}", exc_info=True)
        get_dependencies()["ui"].display_error(f"Command execution failed: {e}")
        raise typer.Exit(code=1)

# --- CLI Commands ---

@app.command()
def stats():
    """Show cache and task queue statistics."""
    handler: CommandHandler = get_dependencies()["command_handler"]
    run_async(handler.handle_stats())


@app.command(name="clear-cache")
def clear_cache_command(
    prefix: Annotated[
        Optional[str],
        typer.Option("--prefix", "-p", help="Only remove entries stored under this key prefix.")
    ] = None,
):
    """Clears the cache, or only the entries of one prefix."""
    handler: CommandHandler = get_dependencies()["command_handler"]
    run_async(handler.handle_clear_cache(prefix))


@app.command()
def sweep():
    """Removes expired cache entries."""
    handler: CommandHandler = get_dependencies()["command_handler"]
    run_async(handler.handle_sweep())


@app.command(name="quota-status")
def quota_status_command(
    retry_after: Annotated[
        Optional[int],
        typer.Option("--retry-after", "-r", help="Start a cooldown of this many seconds before showing it.")
    ] = None,
):
    """Shows the API quota cooldown notice."""
    handler: CommandHandler = get_dependencies()["command_handler"]
    handler.handle_quota_status(retry_after)


@app.callback()
def main_callback(
    log_level: Annotated[
        Optional[str],
        typer.Option("--log-level", "-l", help="Logging level (debug, info, warning, error).")
    ] = None,
):
    """quotashield command line interface."""
    global _log_level_override
    _log_level_override = log_level.upper() if log_level else None

# --- Main Execution Guard ---

def cli_entry_point():
    """Function to be called by the script entry point in pyproject.toml."""
    logger.info("Starting quotashield application...")
    app()  # Typer takes over


if __name__ == "__main__":
    cli_entry_point()
