"""Validate command - check the declared configuration without touching state."""

import sys
import click
from ...utils.errors import ConvergeError
from ...utils.logging import get_logger
from ..utils import EXIT_ERROR, apply_quiet, config_options, format_error, load_settings, load_workspace

logger = get_logger("cli.validate")


@click.command()
@config_options
@click.option('--quiet', is_flag=True, help='Suppress progress messages')
def validate(config_path, env_name, settings_path, quiet):
    """Load modules, resolve references and check the graph for cycles."""
    apply_quiet(quiet)
    try:
        workspace = load_workspace(config_path, env_name, load_settings(settings_path))
        graph = workspace.build_graph()
    except ConvergeError as e:
        click.echo(format_error(str(e)), err=True)
        sys.exit(EXIT_ERROR)
    except Exception as e:
        logger.error(f"Unexpected error: {e}", exc_info=True)
        click.echo(format_error(f"Validation failed: {e}"), err=True)
        sys.exit(EXIT_ERROR)

    enabled = graph.enabled_modules()
    disabled = [name for name, module in graph.modules.items() if not module.enabled]
    click.echo(
        f"Configuration for '{workspace.environment}' is valid: "
        f"{len(enabled)} module(s) enabled, {len(graph.get_all_resources())} resource(s)."
    )
    if disabled:
        click.echo(f"Disabled modules: {', '.join(disabled)}")
