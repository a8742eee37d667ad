"""Output command - print module outputs recorded in state."""

import json
import sys
import click
from ...config import resolve_environment
from ...presentation.human_formatter import format_outputs
from ...state.store import open_state_store
from ...utils.errors import ConvergeError
from ...utils.logging import get_logger
from ..utils import EXIT_ERROR, config_options, declared_environment, format_error, load_settings

logger = get_logger("cli.output")


@click.command()
@config_options
@click.argument('name', required=False)
@click.option('--json', 'json_output', is_flag=True, help='Output as JSON')
def output(config_path, env_name, settings_path, name, json_output):
    """
    Show outputs from the last apply.

    NAME selects a single output as module.output.
    """
    try:
        environment = resolve_environment(env_name, declared_environment(config_path))
        store = open_state_store(load_settings(settings_path))
        outputs = store.read(environment).outputs

        if name:
            module, _, key = name.partition(".")
            if not key or key not in outputs.get(module, {}):
                raise ConvergeError(f"Output '{name}' not found in state for '{environment}'")
            value = outputs[module][key]
            click.echo(json.dumps(value, indent=2) if json_output or not isinstance(value, str) else value)
            return

        if json_output:
            click.echo(json.dumps(outputs, indent=2, sort_keys=True))
        else:
            click.echo(format_outputs(outputs), nl=False)

    except ConvergeError as e:
        click.echo(format_error(str(e)), err=True)
        sys.exit(EXIT_ERROR)
    except Exception as e:
        logger.error(f"Unexpected error: {e}", exc_info=True)
        click.echo(format_error(f"Reading outputs failed: {e}"), err=True)
        sys.exit(EXIT_ERROR)
