"""CLI utilities package."""

import logging
import signal
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional
import click
from ...apply.models import ApplyResult, ApplyStatus
from ...config import EngineSettings, load_engine_settings
from ...presentation.human_formatter import _use_ascii
from ...utils.errors import ConvergeError
from ...utils.logging import get_logger, set_level
from .file_resolver import DEFAULT_CONFIG_FILE, resolve_file_path

logger = get_logger("cli.utils")

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_PARTIAL = 2
EXIT_FAILED = 3


def format_error(message: str, suggestion: Optional[str] = None) -> str:
    """
    Format error message with optional suggestion.

    Args:
        message: Error message
        suggestion: Optional suggestion or help text

    Returns:
        Formatted error string
    """
    if _use_ascii():
        error = f"Error: {message}"
        if suggestion:
            error += f"\nTip: {suggestion}"
        return error
    error = f"❌ Error: {message}"
    if suggestion:
        error += f"\n💡 Tip: {suggestion}"
    return error


def exit_code_for(result: Optional[ApplyResult]) -> int:
    """Map an apply outcome to the process exit code."""
    if result is None or result.status == ApplyStatus.SUCCESS:
        return EXIT_OK
    if result.status == ApplyStatus.FAILED:
        return EXIT_FAILED
    return EXIT_PARTIAL


def config_options(func):
    """Options shared by commands that read the declared configuration."""
    func = click.option('--settings', 'settings_path', type=click.Path(),
                        help='Engine settings YAML (overrides user and project config)')(func)
    func = click.option('--env', 'env_name', help='Environment name (overrides CONVERGE_ENV and the config file)')(func)
    func = click.option('--config', '-c', 'config_path', default=DEFAULT_CONFIG_FILE, show_default=True,
                        help='Environment configuration file')(func)
    return func


def load_settings(settings_path: Optional[str], parallelism: Optional[int] = None) -> EngineSettings:
    """Load engine settings, applying command-line overrides."""
    settings = load_engine_settings(settings_path)
    if parallelism is not None:
        if parallelism < 1:
            raise ConvergeError("--parallelism must be at least 1")
        settings.apply.parallelism = parallelism
    return settings


def load_workspace(config_path: str, env_name: Optional[str], settings: EngineSettings):
    """Resolve the config file and load it into a Workspace."""
    from ... import load_environment

    try:
        path = resolve_file_path(config_path)
    except FileNotFoundError as e:
        raise ConvergeError(str(e))
    return load_environment(str(path), environment=env_name, settings=settings)


def declared_environment(config_path: str) -> Optional[str]:
    """Environment name declared in config_path, if the file exists and loads."""
    from ...ingest.config_loader import load_environment_file

    if not Path(config_path).is_file():
        return None
    return load_environment_file(config_path).environment


def apply_quiet(quiet: bool) -> None:
    if quiet:
        set_level(logging.WARNING)


@contextmanager
def cancel_on_interrupt() -> Iterator[threading.Event]:
    """
    Turn the first Ctrl-C into a cancellation request.

    In-flight operations finish and state is flushed; a second Ctrl-C
    interrupts immediately.
    """
    cancel_event = threading.Event()
    if threading.current_thread() is not threading.main_thread():
        yield cancel_event
        return

    previous = signal.getsignal(signal.SIGINT)

    def handle_sigint(signum, frame):
        click.echo("\nCancelling: waiting for in-flight operations to finish...", err=True)
        cancel_event.set()
        signal.signal(signal.SIGINT, signal.default_int_handler)

    signal.signal(signal.SIGINT, handle_sigint)
    try:
        yield cancel_event
    finally:
        signal.signal(signal.SIGINT, previous)


__all__ = [
    "EXIT_OK",
    "EXIT_ERROR",
    "EXIT_PARTIAL",
    "EXIT_FAILED",
    "format_error",
    "exit_code_for",
    "config_options",
    "load_settings",
    "load_workspace",
    "declared_environment",
    "apply_quiet",
    "cancel_on_interrupt",
    "resolve_file_path",
]
