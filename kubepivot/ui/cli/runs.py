"""
CLI command for the run ledger.

Thin wrapper over ``kubepivot.core.persistence.audit``.
"""

from __future__ import annotations

import json

import click


@click.command("runs")
@click.option("--limit", "-n", type=click.IntRange(min=1), default=10, show_default=True,
              help="Number of runs to show.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
def runs(limit: int, as_json: bool) -> None:
    """Show recent provisioning runs."""
    from kubepivot.core.config.loader import home_dir
    from kubepivot.core.persistence.audit import AuditWriter

    records = AuditWriter(home=home_dir()).read_recent(limit)

    if as_json:
        click.echo(json.dumps([r.model_dump(mode="json") for r in records], indent=2))
        return

    if not records:
        click.echo("No runs recorded yet.")
        return

    click.secho(f"🗂  Last {len(records)} run(s):", fg="cyan", bold=True)
    for record in reversed(records):
        color = "green" if record.status == "ok" else "red"
        click.echo(f"   {record.timestamp[:19]}  {record.run_id}  ", nl=False)
        click.secho(f"{record.status:<8}", fg=color, nl=False)
        click.echo(f" {record.cluster_name} ({record.provider}, {record.gitops_controller})")
        if record.failed_stage:
            click.echo(f"      ✗ {record.error}")
        for item in record.leftovers:
            click.echo(f"      • left: {item}")
