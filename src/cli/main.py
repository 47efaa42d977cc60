"""CLI entry point for the pattern learning engine."""

import sys
from pathlib import Path

import click

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from cli.commands import patterns
from cli.config import load_config, setup_logging
from observability import log_run_summary


@click.group()
@click.version_option(version="0.1.0")
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging")
def cli(verbose: bool):
    """Pattern learning engine — behavioral aggregates, insights, context."""
    config = load_config()
    if verbose:
        config["logging"] = {**config.get("logging", {}), "level": "DEBUG"}
    setup_logging(config)
    if verbose:
        click.get_current_context().call_on_close(log_run_summary)


cli.add_command(patterns)


if __name__ == "__main__":
    cli()
