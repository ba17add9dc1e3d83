"""
CLI command for the stand-alone cluster-state exporter.

Thin wrapper over ``kubepivot.core.services.exporter``.
"""

from __future__ import annotations

import json
import sys
from pathlib import Path

import click


@click.command("export")
@click.option(
    "--kubeconfig",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    required=True,
    help="Kubeconfig of the cluster to export.",
)
@click.option(
    "--output",
    "-o",
    "output_dir",
    type=click.Path(file_okay=False, path_type=Path),
    required=True,
    help="Directory receiving one manifest per object.",
)
@click.option("--strict", is_flag=True, help="Fail if any object cannot be exported.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
def export(kubeconfig: Path, output_dir: Path, strict: bool, as_json: bool) -> None:
    """Export cluster-scoped objects as sanitized, diff-stable manifests."""
    from kubepivot.core.errors import ExportError
    from kubepivot.core.services.exporter import KubectlClusterReader, export_cluster_scoped

    try:
        report = export_cluster_scoped(KubectlClusterReader(kubeconfig), output_dir, strict=strict)
    except ExportError as e:
        if as_json:
            data = e.report.to_dict() if e.report is not None else {}
            click.echo(json.dumps({**data, "error": e.message}, indent=2))
        else:
            click.secho(f"❌ {e.message}", fg="red", err=True)
        sys.exit(1)

    if as_json:
        click.echo(json.dumps(report.to_dict(), indent=2))
        sys.exit(0 if report.ok else 1)

    click.secho(f"📦 Exported {len(report.written)} object(s) to {output_dir}", fg="green")
    for path in report.written:
        click.echo(f"   📄 {path.name}")
    if report.skipped:
        click.echo(f"   ⊘ Skipped (gone): {', '.join(report.skipped)}")
    if report.errors:
        click.secho(f"⚠️  {len(report.errors)} object(s) failed:", fg="yellow")
        for key, error in sorted(report.errors.items()):
            click.echo(f"   • {key}: {error}")
        sys.exit(1)
