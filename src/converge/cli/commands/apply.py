"""Apply command - plan and execute under the environment lock."""

import json
import sys
import click
from ...plan.models import ChangeSet
from ...presentation.human_formatter import format_apply_result, format_change_set
from ...utils.errors import ConvergeError, LockHeldError
from ...utils.logging import get_logger
from ..utils import (
    EXIT_ERROR,
    apply_quiet,
    cancel_on_interrupt,
    config_options,
    exit_code_for,
    format_error,
    load_settings,
    load_workspace,
)

logger = get_logger("cli.apply")


def lock_options(func):
    """Options shared by commands that take the environment lock."""
    func = click.option('--holder', help='Lock holder id (default: user@host:pid)')(func)
    func = click.option('--lock-timeout', type=float,
                        help='Seconds to wait for the environment lock (default from settings)')(func)
    func = click.option('--auto-approve', is_flag=True, help='Skip the interactive confirmation')(func)
    return func


def run_locked(operation, config_path, env_name, settings_path, parallelism, lock_timeout,
               holder, auto_approve, json_output, quiet):
    """Shared body of apply and destroy."""
    from ... import apply_environment, destroy_environment

    run = apply_environment if operation == "apply" else destroy_environment
    apply_quiet(quiet)
    try:
        workspace = load_workspace(config_path, env_name, load_settings(settings_path, parallelism))
        if not quiet:
            click.echo(f"Acquiring state lock for '{workspace.environment}'", err=True)

        def confirm(change_set: ChangeSet) -> bool:
            if not json_output:
                click.echo(format_change_set(change_set))
            if not change_set.has_changes or auto_approve:
                return True
            return click.confirm(f"Do you want to {operation} these changes?", default=False, err=True)

        with cancel_on_interrupt() as cancel_event:
            change_set, result = run(
                workspace,
                holder=holder,
                lock_timeout=lock_timeout,
                confirm=confirm,
                cancel_event=cancel_event,
            )

        if result is None:
            click.echo(f"{operation.capitalize()} cancelled.", err=True)
            return

        if json_output:
            click.echo(json.dumps({
                "plan": change_set.model_dump(mode="json"),
                "result": result.model_dump(mode="json"),
            }, indent=2))
        else:
            click.echo(format_apply_result(result))

        code = exit_code_for(result)
        if code:
            sys.exit(code)

    except LockHeldError as e:
        suggestion = None
        if e.lock_id:
            suggestion = f"If the holder is gone, run: converge state unlock {e.lock_id} --env {e.environment}"
        click.echo(format_error(str(e), suggestion), err=True)
        sys.exit(EXIT_ERROR)
    except ConvergeError as e:
        click.echo(format_error(str(e)), err=True)
        sys.exit(EXIT_ERROR)
    except Exception as e:
        logger.error(f"Unexpected error: {e}", exc_info=True)
        click.echo(format_error(f"{operation.capitalize()} failed: {e}"), err=True)
        sys.exit(EXIT_ERROR)


@click.command()
@config_options
@lock_options
@click.option('--parallelism', type=int, help='Maximum concurrent provider operations (default from settings)')
@click.option('--json', 'json_output', is_flag=True, help='Output the ChangeSet and result as JSON')
@click.option('--quiet', is_flag=True, help='Suppress progress messages')
def apply(config_path, env_name, settings_path, holder, lock_timeout, auto_approve, parallelism, json_output, quiet):
    """
    Converge an environment to its declared configuration.

    Exit codes: 0 success, 1 configuration/lock/state error,
    2 partial failure or cancellation, 3 total failure.
    """
    run_locked("apply", config_path, env_name, settings_path, parallelism, lock_timeout,
               holder, auto_approve, json_output, quiet)
