"""Plan command - show what apply would change."""

import json
import sys
from pathlib import Path
import click
from ...plan.models import ChangeSet
from ...presentation.human_formatter import format_change_set
from ...report.artifact import generate_artifacts
from ...utils.errors import ConvergeError
from ...utils.logging import get_logger
from ..utils import EXIT_ERROR, apply_quiet, config_options, format_error, load_settings, load_workspace

logger = get_logger("cli.plan")


@click.command()
@config_options
@click.option('--json', 'json_output', is_flag=True, help='Output the ChangeSet as JSON instead of human-readable')
@click.option('--out', 'out_dir', type=click.Path(file_okay=False), help='Write plan.json, summary.json and metadata.json here')
@click.option('--show-noop', is_flag=True, help='List unchanged resources too')
@click.option('--quiet', is_flag=True, help='Suppress progress messages')
def plan(config_path, env_name, settings_path, json_output, out_dir, show_noop, quiet):
    """
    Compute the ChangeSet for an environment without changing anything.

    Reads current state but takes no lock.
    """
    from ... import plan_environment

    apply_quiet(quiet)
    try:
        workspace = load_workspace(config_path, env_name, load_settings(settings_path))
        if not quiet:
            click.echo(f"Planning environment '{workspace.environment}'", err=True)

        change_set = plan_environment(workspace)

        if out_dir:
            generate_artifacts(change_set, Path(out_dir))
            if not quiet:
                click.echo(f"Artifacts written to: {out_dir}", err=True)

        if json_output:
            click.echo(_format_json_output(change_set))
        else:
            click.echo(format_change_set(change_set, show_noop=show_noop))

    except ConvergeError as e:
        click.echo(format_error(str(e)), err=True)
        sys.exit(EXIT_ERROR)
    except Exception as e:
        logger.error(f"Unexpected error: {e}", exc_info=True)
        click.echo(format_error(f"Plan failed: {e}"), err=True)
        sys.exit(EXIT_ERROR)


def _format_json_output(change_set: ChangeSet) -> str:
    """Format ChangeSet as JSON string."""
    return json.dumps(change_set.model_dump(mode="json"), indent=2)
