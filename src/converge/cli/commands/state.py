"""State commands - inspect snapshots and clear stuck locks."""

import json
import sys
import click
from ...config import resolve_environment
from ...state.store import open_state_store
from ...utils.errors import ConvergeError, StateNotFoundError
from ...utils.logging import get_logger
from ..utils import EXIT_ERROR, config_options, declared_environment, format_error, load_settings

logger = get_logger("cli.state")


def _fail(e: Exception) -> None:
    if isinstance(e, ConvergeError):
        click.echo(format_error(str(e)), err=True)
    else:
        logger.error(f"Unexpected error: {e}", exc_info=True)
        click.echo(format_error(f"State command failed: {e}"), err=True)
    sys.exit(EXIT_ERROR)


@click.group()
def state():
    """State inspection and lock management."""
    pass


@state.command(name="list")
@click.option('--settings', 'settings_path', type=click.Path(), help='Engine settings YAML')
def list_environments(settings_path):
    """List environments that have state, with serial and lock holder."""
    try:
        store = open_state_store(load_settings(settings_path))
        environments = store.list_environments()
        if not environments:
            click.echo("No environments have state yet.")
            return
        for environment in environments:
            snapshot = store.read(environment)
            lock = store.current_lock(environment)
            line = f"{environment}  serial={snapshot.serial}  resources={len(snapshot.resources)}"
            if lock is not None:
                line += f"  locked by {lock.holder} ({lock.lock_id})"
            click.echo(line)
    except Exception as e:
        _fail(e)


@state.command()
@config_options
@click.argument('address', required=False)
@click.option('--json', 'json_output', is_flag=True, help='Output as JSON')
def show(config_path, env_name, settings_path, address, json_output):
    """Show the current snapshot, or a single resource by ADDRESS."""
    try:
        environment = resolve_environment(env_name, declared_environment(config_path))
        store = open_state_store(load_settings(settings_path))
        snapshot = store.read(environment)

        if address:
            record = snapshot.get(address)
            if record is None:
                raise ConvergeError(f"Resource '{address}' is not in state for '{environment}'")
            if json_output:
                click.echo(record.model_dump_json(indent=2))
                return
            click.echo(f"{record.address} ({record.type})")
            click.echo(f"  id: {record.identity}")
            for key in sorted(record.attributes):
                click.echo(f"  {key}: {json.dumps(record.attributes[key], default=str)}")
            if record.dependencies:
                click.echo(f"  depends on: {', '.join(record.dependencies)}")
            return

        if json_output:
            click.echo(snapshot.model_dump_json(indent=2))
            return
        click.echo(f"Environment '{environment}': serial {snapshot.serial}, lineage {snapshot.lineage}")
        for record in snapshot.resources.values():
            click.echo(f"  {record.address}  {record.type}  id={record.identity}")
    except StateNotFoundError as e:
        click.echo(format_error(str(e), "Run `converge apply` to create it."), err=True)
        sys.exit(EXIT_ERROR)
    except Exception as e:
        _fail(e)


@state.command()
@config_options
@click.argument('lock_id')
@click.option('--yes', '-y', is_flag=True, help='Do not ask for confirmation')
def unlock(config_path, env_name, settings_path, lock_id, yes):
    """
    Remove a stuck environment lock.

    LOCK_ID must match the held lock, as printed when acquisition times out.
    """
    try:
        environment = resolve_environment(env_name, declared_environment(config_path))
        store = open_state_store(load_settings(settings_path))
        current = store.current_lock(environment)
        if current is not None and not yes:
            click.echo(
                f"Lock {current.lock_id} on '{environment}' held by '{current.holder}' "
                f"for {current.operation} since {current.acquired_at}",
                err=True,
            )
            if not click.confirm("Remove it?", default=False, err=True):
                click.echo("Unlock cancelled.", err=True)
                return
        released = store.force_unlock(environment, lock_id)
        click.echo(f"Released lock {released.lock_id} on '{environment}' (held by '{released.holder}').")
    except Exception as e:
        _fail(e)
