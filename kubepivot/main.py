"""
kubepivot — CLI entrypoint.

Usage:
    kubepivot --help
    kubepivot create-cluster azure --cluster-name demo ...
    kubepivot export --kubeconfig demo.kubeconfig --output ./cluster
    kubepivot runs
"""

from __future__ import annotations

import os
from pathlib import Path

import click

from kubepivot import __version__
from kubepivot.core.observability.logging_config import setup_logging


@click.group()
@click.version_option(version=__version__, prog_name="kubepivot")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output.")
@click.option("--quiet", "-q", is_flag=True, help="Only show errors.")
@click.option("--debug", is_flag=True, help="Enable debug logging (very verbose).")
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=False, dir_okay=False),
    default=None,
    help="Path to config.yml (default: $KUBEPIVOT_HOME/config.yml).",
)
@click.pass_context
def cli(
    ctx: click.Context,
    verbose: bool,
    quiet: bool,
    debug: bool,
    config_path: str | None,
) -> None:
    """kubepivot — self-managed Kubernetes clusters, bootstrapped with GitOps."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["quiet"] = quiet
    ctx.obj["debug"] = debug
    ctx.obj["config_path"] = Path(config_path) if config_path else None

    # ── Logging setup (once, at process start) ──────────────────
    if debug:
        level = "DEBUG"
    elif verbose:
        level = "INFO"
    elif quiet:
        level = "ERROR"
    else:
        level = os.environ.get("KUBEPIVOT_LOG_LEVEL", "INFO")

    setup_logging(
        level=level,
        log_file=os.environ.get("KUBEPIVOT_LOG_FILE"),
        log_file_level=os.environ.get("KUBEPIVOT_LOG_FILE_LEVEL"),
    )


from kubepivot.ui.cli.create_cluster import create_cluster  # noqa: E402
from kubepivot.ui.cli.export import export  # noqa: E402
from kubepivot.ui.cli.runs import runs  # noqa: E402

cli.add_command(create_cluster)
cli.add_command(export)
cli.add_command(runs)


if __name__ == "__main__":
    cli()
