from __future__ import annotations

import dataclasses
import typing

import pulumi

import pegasus
import pegasus.addons
import pegasus.naming
import pegasus.resolver
import pegasus.serializer
from pegasus.fragments import PublishBatch
from pegasus.publisher import GitPublisher, GitPublishTransaction, PublishError

if typing.TYPE_CHECKING:
    import collections.abc

    from pegasus.fragments import FragmentFailure
    from pegasus.git_host import GitHost
    from pegasus.resolver import Producer
    from pegasus.serializer import RenderedFragment
    from pegasus.settings import PipelineSettings

STEPS = [
    ("produce", "run every enabled add-on producer"),
    ("resolve", "wait for all fragments, skipping failed producers"),
    ("render", "serialize fragments to canonical YAML"),
    ("publish", "create branch, commit files, open pull request"),
]


@dataclasses.dataclass
class FragmentReport:
    name: str
    status: pegasus.FragmentStatus
    path: str | None = None
    reason: str | None = None


@dataclasses.dataclass
class PipelineReport:
    branch: str
    fragments: list[FragmentReport] = dataclasses.field(default_factory=list)
    rendered: list[RenderedFragment] = dataclasses.field(default_factory=list)
    transaction: GitPublishTransaction | None = None
    error: pegasus.PegasusError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def by_status(self, status: pegasus.FragmentStatus) -> list[FragmentReport]:
        return [f for f in self.fragments if f.status == status]

    def summary(self) -> dict[str, typing.Any]:
        return {
            "branch": self.branch,
            "ok": self.ok,
            "error": str(self.error) if self.error else None,
            "state": str(self.transaction.state) if self.transaction else None,
            "pull_request": self.transaction.pull_request if self.transaction else None,
            "fragments": {f.name: str(f.status) for f in self.fragments},
        }


def _failure_reports(failures: collections.abc.Iterable[FragmentFailure]) -> list[FragmentReport]:
    return [FragmentReport(name=f.name, status=pegasus.FragmentStatus.SKIPPED, reason=f.reason) for f in failures]


class ReleasePipeline:
    """Runs producers, resolves their fragments and publishes them as one pull request."""

    settings: PipelineSettings
    host: GitHost | None
    producers: dict[str, Producer]

    def __init__(
        self,
        settings: PipelineSettings,
        host: GitHost | None = None,
        producers: collections.abc.Mapping[str, Producer] | None = None,
        publisher: GitPublisher | None = None,
    ):
        self.settings = settings
        self.host = host
        self.producers = dict(producers) if producers is not None else pegasus.addons.select(settings.addons)

        if publisher is None and host is not None:
            publisher = GitPublisher(host, settings.identity, base=settings.base_branch)

        self.publisher = publisher

    async def collect(
        self, context: pegasus.ClusterContext, branch: str
    ) -> tuple[PublishBatch, list[FragmentFailure]]:
        handles = pegasus.resolver.run_producers(self.producers, context)
        resolution = await pegasus.resolver.resolve_fragments(handles, timeout=self.settings.resolve_timeout)

        return PublishBatch(branch=branch, fragments=resolution.fragments), list(resolution.failures)

    async def render(
        self, context: pegasus.ClusterContext, branch: str = ""
    ) -> tuple[list[RenderedFragment], list[FragmentFailure], list[FragmentFailure]]:
        batch, producer_failures = await self.collect(context, branch)

        rendered, serialization_failures = pegasus.serializer.render_all(batch.fragments, self.settings.environment)

        return rendered, producer_failures, serialization_failures

    async def run(
        self,
        context: pegasus.ClusterContext,
        *,
        label: str | None = None,
        nonce: str | None = None,
        dry_run: bool = False,
    ) -> PipelineReport:
        branch = pegasus.naming.branch_name(label=label, nonce=nonce, prefix=self.settings.branch_prefix)
        report = PipelineReport(branch=branch)

        try:
            rendered, producer_failures, serialization_failures = await self.render(context, branch)
        except (pegasus.ResolutionError, pegasus.DuplicateFragmentError) as exc:
            pulumi.log.error(f"release values pipeline failed before publishing: {exc}")
            report.error = exc
            return report

        report.rendered = rendered
        report.fragments.extend(_failure_reports(producer_failures))
        report.fragments.extend(_failure_reports(serialization_failures))

        if serialization_failures and not rendered:
            msg = f"none of the {len(serialization_failures)} resolved fragments could be serialized"
            pulumi.log.error(msg)
            report.error = pegasus.SerializationFailure(msg)

        if dry_run or not rendered:
            report.fragments.extend(
                FragmentReport(name=r.name, status=pegasus.FragmentStatus.NOT_COMMITTED, path=r.path) for r in rendered
            )
            report.fragments.sort(key=lambda f: f.name)
            return report

        if self.publisher is None:
            msg = "a Git host is required to publish"
            raise RuntimeError(msg)

        try:
            report.transaction = await self.publisher.publish(branch, rendered)
        except PublishError as exc:
            report.transaction = exc.transaction
            report.error = exc

        committed = set(report.transaction.committed)
        for r in rendered:
            status = pegasus.FragmentStatus.INCLUDED if r.path in committed else pegasus.FragmentStatus.NOT_COMMITTED
            reason = report.transaction.failed.get(r.path)
            report.fragments.append(FragmentReport(name=r.name, status=status, path=r.path, reason=reason))

        report.fragments.sort(key=lambda f: f.name)

        for fragment in report.fragments:
            suffix = f" ({fragment.reason})" if fragment.reason else ""
            pulumi.log.info(f"{fragment.name}: {fragment.status}{suffix}")

        return report
