"""Destroy command - tear down every resource recorded for an environment."""

import click
from ..utils import config_options
from .apply import lock_options, run_locked


@click.command()
@config_options
@lock_options
@click.option('--parallelism', type=int, help='Maximum concurrent provider operations (default from settings)')
@click.option('--json', 'json_output', is_flag=True, help='Output the ChangeSet and result as JSON')
@click.option('--quiet', is_flag=True, help='Suppress progress messages')
def destroy(config_path, env_name, settings_path, holder, lock_timeout, auto_approve, parallelism, json_output, quiet):
    """Destroy the whole environment, dependents first. Same exit codes as apply."""
    run_locked("destroy", config_path, env_name, settings_path, parallelism, lock_timeout,
               holder, auto_approve, json_output, quiet)
