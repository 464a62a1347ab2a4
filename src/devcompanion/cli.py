"""Typer-based CLI for the companion.

``devcompanion connect`` runs the companion against a saved bundle and a
developer tool listening on localhost. The other commands answer a single
request offline, which is handy for trying out finds and patches before
sending them over the socket. Replies print to stdout; notices and version
info go to stderr.
"""

import asyncio
import json
import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any

import typer

from devcompanion import __version__
from devcompanion.client.manager import ConnectionManager
from devcompanion.client.notifications import Notification
from devcompanion.config import CompanionSettings, resolve_settings
from devcompanion.host.registry import InMemoryRegistry
from devcompanion.protocol.commands import CommandHandler
from devcompanion.protocol.schema import Request, encode_reply

app = typer.Typer(
    name="devcompanion",
    help="Websocket companion for inspecting and dry-run patching a module bundle",
    add_completion=False,
)

BUNDLE_ARGUMENT = typer.Argument(
    ...,
    exists=True,
    dir_okay=False,
    readable=True,
    help="JSON bundle mapping module ids to factory source",
)
EVAL_OPTION = typer.Option(
    None,
    "--eval/--no-eval",
    help="Allow function nodes to be evaluated (overrides DEVCOMPANION_ALLOW_EVAL)",
)


def setup_logging(log_dir: Path, log_level: str) -> None:
    """Configure file logging with RotatingFileHandler.

    Args:
        log_dir: Directory for log files (created if missing)
        log_level: Logging level (info, debug, warning, error, critical)
    """
    log_dir = log_dir.expanduser()
    log_dir.mkdir(parents=True, exist_ok=True)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level.upper())

    # Clear existing handlers to prevent duplicates
    root_logger.handlers.clear()

    # File handler with rotation (10MB max, 3 backups)
    file_handler = RotatingFileHandler(
        log_dir / "devcompanion.log",
        maxBytes=10 * 1024 * 1024,  # 10MB
        backupCount=3,
    )
    file_handler.setFormatter(
        logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        ),
    )
    root_logger.addHandler(file_handler)

    # Stdout carries replies; problems go to stderr
    stderr_handler = logging.StreamHandler(sys.stderr)
    stderr_handler.setLevel(logging.WARNING)
    stderr_handler.setFormatter(
        logging.Formatter("%(levelname)s: %(message)s"),
    )
    root_logger.addHandler(stderr_handler)


class TerminalNotifier:
    """Prints notices to stderr.

    With ``auto_acknowledge`` every notice that has a click action is
    acknowledged right away, so a disconnect turns into a reconnect.
    """

    def __init__(self, auto_acknowledge: bool = False) -> None:
        self.auto_acknowledge = auto_acknowledge

    def notify(self, notification: Notification) -> None:
        marker = "!" if notification.error else "*"
        typer.echo(f"{marker} {notification.title}: {notification.body}", err=True)
        if self.auto_acknowledge and notification.on_click is not None:
            notification.on_click()


async def run_companion(
    registry: InMemoryRegistry,
    settings: CompanionSettings,
    auto_reconnect: bool,
) -> None:
    """Run the connection manager until it is stopped or interrupted."""
    logger = logging.getLogger(__name__)
    manager = ConnectionManager(
        registry,
        settings,
        notifier=TerminalNotifier(auto_acknowledge=auto_reconnect),
    )
    logger.info(f"Starting companion for {settings.url}")
    await manager.start()
    try:
        await manager.wait_stopped()
    finally:
        await manager.stop()


def _load_registry(bundle: Path) -> InMemoryRegistry:
    try:
        return InMemoryRegistry.from_bundle(bundle)
    except (ValueError, OSError) as exc:
        typer.echo(f"Error: cannot load bundle {bundle}: {exc}", err=True)
        raise typer.Exit(2) from exc


def _parse_json(value: str, name: str) -> Any:
    try:
        return json.loads(value)
    except json.JSONDecodeError as exc:
        raise typer.BadParameter(f"not valid JSON: {exc}", param_hint=name) from exc


def _answer(bundle: Path, command: str, data: Any, allow_eval: bool | None) -> None:
    """Handle one request against the bundle, print the reply, exit 1 on failure."""
    registry = _load_registry(bundle)
    settings = resolve_settings(allow_code_evaluation=allow_eval)
    try:
        reply = CommandHandler(registry, settings).handle(
            Request(type=command, data=data, nonce=0)
        )
    finally:
        registry.close()
    typer.echo(encode_reply(reply))
    if not reply.ok:
        raise typer.Exit(1)


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        help="Print version and exit",
    ),
) -> None:
    """Websocket companion for a developer tool."""
    # Handle --version flag (prints to stderr, not stdout)
    if version:
        typer.echo(f"devcompanion {__version__}", err=True)
        raise typer.Exit(0)

    if ctx.invoked_subcommand is None:
        typer.echo(ctx.get_help())


@app.command()
def connect(
    bundle: Path = BUNDLE_ARGUMENT,
    host: str | None = typer.Option(
        None,
        "--host",
        help="Developer tool host (overrides DEVCOMPANION_HOST)",
    ),
    port: int | None = typer.Option(
        None,
        "--port",
        help="Developer tool port (overrides DEVCOMPANION_PORT)",
    ),
    allow_eval: bool | None = EVAL_OPTION,
    auto_reconnect: bool = typer.Option(
        False,
        "--auto-reconnect/--no-auto-reconnect",
        help="Acknowledge disconnect notices automatically, which reconnects",
    ),
    log_dir: Path = typer.Option(
        Path("~/.devcompanion/logs"),
        "--log-dir",
        help="Directory for log files",
    ),
    log_level: str = typer.Option(
        "info",
        "--log-level",
        help="Logging level (debug, info, warning, error, critical)",
    ),
) -> None:
    """Connect to the developer tool and answer its requests until Ctrl-C."""
    setup_logging(log_dir, log_level)
    try:
        settings = resolve_settings(host=host, port=port, allow_code_evaluation=allow_eval)
    except ValueError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(2) from exc
    registry = _load_registry(bundle)
    typer.echo(
        f"Loaded {len(registry.module_ids())} modules; connecting to {settings.url}",
        err=True,
    )
    try:
        asyncio.run(run_companion(registry, settings, auto_reconnect))
    except KeyboardInterrupt:
        typer.echo("Stopped", err=True)


@app.command("modules")
def list_modules(bundle: Path = BUNDLE_ARGUMENT) -> None:
    """Print the module list push the companion sends on connect."""
    registry = _load_registry(bundle)
    typer.echo(encode_reply(CommandHandler(registry).module_list()))


@app.command()
def extract(
    bundle: Path = BUNDLE_ARGUMENT,
    target: str = typer.Argument(..., help="Module id, or search text with --search"),
    search: bool = typer.Option(
        False,
        "--search",
        help="Treat TARGET as text the module source must contain",
    ),
) -> None:
    """Print a module's factory source as an extract reply."""
    if search:
        data: dict[str, Any] = {"extractType": "search", "idOrSearch": target}
    else:
        try:
            module_id: Any = int(target)
        except ValueError:
            module_id = target
        data = {"extractType": "id", "idOrSearch": module_id}
    _answer(bundle, "extract", data, allow_eval=False)


@app.command("test-find")
def test_find(
    bundle: Path = BUNDLE_ARGUMENT,
    find: str = typer.Argument(..., help='testFind data, e.g. {"type": "findByProps", "args": [...]}'),
    allow_eval: bool | None = EVAL_OPTION,
) -> None:
    """Check that a find resolves to exactly one export."""
    _answer(bundle, "testFind", _parse_json(find, "FIND"), allow_eval)


@app.command("test-patch")
def test_patch(
    bundle: Path = BUNDLE_ARGUMENT,
    patch: str = typer.Argument(..., help='testPatch data, e.g. {"find": "...", "replacement": [...]}'),
    allow_eval: bool | None = EVAL_OPTION,
) -> None:
    """Dry-run a patch's replacements against the module it targets."""
    _answer(bundle, "testPatch", _parse_json(patch, "PATCH"), allow_eval)
