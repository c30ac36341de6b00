from __future__ import annotations

import asyncio
import pathlib
import sys

import click

import pegasus
import pegasus.aws_accounts
import pegasus.junkdrawer
import pegasus.paths
import pegasus.settings
import pegasus.stack_outputs
from pegasus.github import GitHubHost
from pegasus.pipeline import STEPS, PipelineReport, ReleasePipeline

STATUS_COLORS = {
    pegasus.FragmentStatus.INCLUDED: "green",
    pegasus.FragmentStatus.SKIPPED: "yellow",
    pegasus.FragmentStatus.NOT_COMMITTED: "red",
}


def build_context(settings: pegasus.settings.PipelineSettings, stack: str | None) -> pegasus.ClusterContext:
    stack = stack or settings.identifiers_stack

    identifiers = {}
    if stack:
        click.secho(f"Reading provisioning outputs from stack {stack}", bold=True)
        identifiers = pegasus.stack_outputs.identifiers_from_outputs(pegasus.stack_outputs.read_stack_outputs(stack))

    account_id = settings.account_id or pegasus.aws_accounts.aws_current_account_id()

    return settings.context(identifiers, account_id=account_id)


def print_report(report: PipelineReport) -> None:
    for fragment in report.fragments:
        line = f"{fragment.status:>13}  {fragment.name}"
        if fragment.path:
            line += f"  {fragment.path}"
        if fragment.reason:
            line += f"  ({fragment.reason})"
        click.secho(line, fg=STATUS_COLORS[fragment.status])

    if report.transaction is not None:
        click.secho(report.transaction.describe(), bold=True)

    if report.error is not None:
        click.secho(f"error: {report.error}", fg="red", bold=True, err=True)


@click.group()
def cli():
    """Publish generated add-on Helm values as a GitHub pull request."""


@cli.command()
def steps():
    """List the pipeline steps."""
    pegasus.junkdrawer.print_steps(STEPS)


@cli.command()
@click.option("--stack", help="Pulumi stack whose outputs hold the provisioned identifiers.")
@click.option(
    "--output-dir",
    type=click.Path(file_okay=False, path_type=pathlib.Path),
    help="Write rendered files below this directory instead of printing them.",
)
def render(stack: str | None, output_dir: pathlib.Path | None):
    """Resolve and serialize all fragments without touching Git."""
    settings = pegasus.settings.load_settings()
    pipeline = ReleasePipeline(settings)

    report = asyncio.run(pipeline.run(build_context(settings, stack), dry_run=True))

    for rendered in report.rendered:
        if output_dir is None:
            click.secho(f"# {rendered.path}", fg="cyan")
            click.echo(rendered.text)
            continue

        target = output_dir / rendered.path
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(rendered.text)

    print_report(report)

    if not report.ok:
        sys.exit(1)


@cli.command()
@click.option("--stack", help="Pulumi stack whose outputs hold the provisioned identifiers.")
@click.option("--label", help="Label hashed into the branch name; defaults to the current time.")
@click.option("--dry-run", is_flag=True, default=False, help="Stop after serialization.")
def publish(stack: str | None, label: str | None, dry_run: bool):
    """Run the full pipeline and open one pull request."""
    settings = pegasus.settings.load_settings()
    context = build_context(settings, stack)

    async def _run() -> PipelineReport:
        async with GitHubHost(settings.github_owner, settings.github_repository) as host:
            return await ReleasePipeline(settings, host).run(context, label=label, dry_run=dry_run)

    report = asyncio.run(_run())
    print_report(report)

    if not report.ok:
        sys.exit(1)


if __name__ == "__main__":
    cli()
