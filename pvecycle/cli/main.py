import logging
import sys

import click
from rich.table import Table

from pvecycle.config import load_settings
from pvecycle.utils.logging import operational_log_path, setup_logging
from pvecycle.workflow.runner import SEQUENCERS, run_workflow

from .utils import console, handle_async_command

logger = logging.getLogger(__name__)


def _print_report(report) -> None:
    style = "green" if report.success else "red"
    console.print(f"[{style}]{report.action.capitalize()}: {report.status.value}[/{style}]")
    if not report.success:
        console.print(f"[red]Aborted after '{report.last_state}' ({report.reason}): {report.error_message}[/red]")
    if report.warnings:
        table = Table(title="Warnings")
        table.add_column("#", justify="right")
        table.add_column("Warning")
        for i, warning in enumerate(report.warnings, 1):
            table.add_row(str(i), warning)
        console.print(table)


@click.command(context_settings={"help_option_names": ["-h", "--help"]})
@click.argument("action", type=click.Choice(sorted(SEQUENCERS)))
@click.option('--verbose', '-v', is_flag=True, help='Enables verbose mode.')
@click.option('--quiet', '-q', is_flag=True, help='Only log warnings and errors to the console.')
@click.option(
    '--env-file',
    type=click.Path(exists=True, dir_okay=False),
    default=None,
    help='Read settings from this file instead of ./.env.',
)
def app(action, verbose, quiet, env_file):
    """
    Shut a Proxmox cluster down ahead of a UPS outage, or bring it back.

    ACTION is either 'shutdown' or 'startup'.
    """
    settings = load_settings(env_file)

    level = "DEBUG" if verbose else "WARNING" if quiet else None
    log_file = operational_log_path(settings.LOG_DIR, action)
    try:
        setup_logging(force=True, level=level, log_file=log_file)
    except OSError as e:
        setup_logging(force=True, level=level)
        logger.warning("Cannot open operational log %s: %s", log_file, e)
        log_file = None

    report = _run(settings, action, log_file)
    _print_report(report)
    sys.exit(0 if report.success else 1)


@handle_async_command
async def _run(settings, action, log_file):
    return await run_workflow(settings, action, log_file=log_file)


if __name__ == '__main__':
    app()
