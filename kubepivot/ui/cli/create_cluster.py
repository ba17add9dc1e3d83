"""
CLI commands for cluster creation.

Thin wrappers over ``kubepivot.core.use_cases.create_cluster``.
Exit codes: 0 success, 1 pipeline failure, 2 configuration error
(click's own usage errors share code 2).
"""

from __future__ import annotations

import functools
import json
import sys
from typing import Any, Callable

import click

from kubepivot.core.models.cluster import GitOpsController

EXIT_PIPELINE_FAILED = 1
EXIT_CONFIG_ERROR = 2


@click.group("create-cluster")
def create_cluster() -> None:
    """Create a self-managed cluster on a cloud provider."""


def _common_options(func: Callable[..., Any]) -> Callable[..., Any]:
    """Options shared by every provider command."""

    @click.option(
        "--github-token",
        envvar="GITHUB_TOKEN",
        required=True,
        help="GitHub token used to create the repository (env: GITHUB_TOKEN).",
    )
    @click.option("--cluster-name", required=True, help="Name of your cluster.")
    @click.option(
        "--private-repo/--public-repo",
        default=True,
        show_default=True,
        help="Visibility of the GitOps repository.",
    )
    @click.option(
        "--gitops-controller",
        type=click.Choice([c.value for c in GitOpsController]),
        default=GitOpsController.ARGOCD.value,
        show_default=True,
        help="The GitOps controller to use for this cluster.",
    )
    @click.option(
        "--ha/--no-ha",
        "high_availability",
        default=True,
        show_default=True,
        help="Three control-plane machines instead of one.",
    )
    @click.option(
        "--timeout",
        type=click.FloatRange(min=1),
        default=None,
        help="Abort the whole run after this many seconds.",
    )
    @click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
    @functools.wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        return func(*args, **kwargs)

    return wrapper


def _run(ctx: click.Context, provider: str, credentials: dict[str, Any], opts: dict[str, Any]) -> None:
    from kubepivot.core.use_cases.create_cluster import create_cluster as run_create

    as_json = opts.pop("as_json")
    result = run_create(
        provider,
        credentials,
        config_path=ctx.obj.get("config_path"),
        **opts,
    )

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
    elif result.config_error:
        click.secho(f"❌ {result.error}", fg="red", err=True)
    else:
        _print_report(result.report, quiet=ctx.obj.get("quiet", False))

    if result.config_error:
        sys.exit(EXIT_CONFIG_ERROR)
    if not result.ok:
        sys.exit(EXIT_PIPELINE_FAILED)


def _print_report(report, *, quiet: bool) -> None:
    if not quiet:
        click.echo()
        for stage in report.results:
            marker = "✓" if stage.ok else "✗"
            color = "green" if stage.ok else "red"
            click.secho(f"   {marker} {stage.stage.value:<25}", fg=color, nl=False)
            detail = stage.output if stage.ok else stage.error
            click.echo(f" {detail}" if detail else "")
        click.echo()

    if report.ok:
        click.secho(f"✅ Cluster '{report.cluster_name}' is ready", fg="green", bold=True)
        click.echo(f"   📁 Everything you need is under: {report.artifacts_dir}")
        return

    click.secho(
        f"❌ Failed at {report.failed_stage.value}: {report.error}", fg="red", bold=True, err=True
    )
    if report.leftovers:
        click.secho("⚠️  Needs manual cleanup:", fg="yellow", err=True)
        for item in report.leftovers:
            click.echo(f"   • {item}", err=True)


# ── Azure ───────────────────────────────────────────────────────


@create_cluster.command("azure")
@_common_options
@click.option("--azure-region", default="westus2", show_default=True, help="Which region to deploy to.")
@click.option("--azure-app-id", required=True, help="Your Azure app ID.")
@click.option("--azure-app-secret", required=True, help="Your Azure app secret.")
@click.option("--azure-tenant-id", required=True, help="Your Azure tenant ID.")
@click.option("--azure-subscription-id", required=True, help="Your Azure subscription ID.")
@click.option("--azure-ssh-key", default="default", show_default=True, help="SSH public key for the machines.")
@click.option(
    "--azure-control-plane-machine",
    default="Standard_D2s_v3",
    show_default=True,
    help="VM size of the control plane.",
)
@click.option(
    "--azure-node-machine", default="Standard_D2s_v3", show_default=True, help="VM size of the workers."
)
@click.option(
    "--azure-resource-group", default="kubepivot-cluster", show_default=True, help="Resource group name."
)
@click.pass_context
def azure(
    ctx: click.Context,
    azure_region: str,
    azure_app_id: str,
    azure_app_secret: str,
    azure_tenant_id: str,
    azure_subscription_id: str,
    azure_ssh_key: str,
    azure_control_plane_machine: str,
    azure_node_machine: str,
    azure_resource_group: str,
    **opts: Any,
) -> None:
    """Create a cluster on Azure (Cluster API provider: capz)."""
    credentials = {
        "region": azure_region,
        "app_id": azure_app_id,
        "app_secret": azure_app_secret,
        "tenant_id": azure_tenant_id,
        "subscription_id": azure_subscription_id,
        "ssh_key": azure_ssh_key,
        "control_plane_machine": azure_control_plane_machine,
        "node_machine": azure_node_machine,
        "resource_group": azure_resource_group,
    }
    _run(ctx, "azure", credentials, opts)


# ── AWS ─────────────────────────────────────────────────────────


@create_cluster.command("aws")
@_common_options
@click.option("--aws-region", default="us-east-1", show_default=True, help="Which region to deploy to.")
@click.option("--aws-access-key-id", required=True, help="Your AWS access key ID.")
@click.option("--aws-secret-access-key", required=True, help="Your AWS secret access key.")
@click.option("--aws-ssh-key-name", default="default", show_default=True, help="EC2 key pair for the machines.")
@click.option(
    "--aws-control-plane-machine", default="m5.xlarge", show_default=True, help="Instance type of the control plane."
)
@click.option("--aws-node-machine", default="m5.xlarge", show_default=True, help="Instance type of the workers.")
@click.pass_context
def aws(
    ctx: click.Context,
    aws_region: str,
    aws_access_key_id: str,
    aws_secret_access_key: str,
    aws_ssh_key_name: str,
    aws_control_plane_machine: str,
    aws_node_machine: str,
    **opts: Any,
) -> None:
    """Create a cluster on AWS (Cluster API provider: capa)."""
    credentials = {
        "region": aws_region,
        "access_key_id": aws_access_key_id,
        "secret_access_key": aws_secret_access_key,
        "ssh_key_name": aws_ssh_key_name,
        "control_plane_machine": aws_control_plane_machine,
        "node_machine": aws_node_machine,
    }
    _run(ctx, "aws", credentials, opts)
