from __future__ import annotations

import typing

import pulumi
import pulumi_aws as aws
import pulumi_github as github

import pegasus
import pegasus.settings
import pegasus.stack_outputs
from pegasus.pipeline import PipelineReport, ReleasePipeline
from pegasus.pulumi_resources.github_host import PulumiGitHubHost

if typing.TYPE_CHECKING:
    import collections.abc


def identifiers_from_stack_reference(
    stack: pulumi.StackReference,
    addons: collections.abc.Iterable[str],
) -> dict[str, pulumi.Output]:
    role_arns = stack.get_output(pegasus.stack_outputs.ROLE_ARNS_OUTPUT)

    identifiers: dict[str, pulumi.Output] = {
        pegasus.role_arn_key(addon): role_arns.apply(lambda arns, a=addon: (arns or {}).get(a)) for addon in addons
    }
    for key in pegasus.Identifiers:
        identifiers[str(key)] = stack.get_output(str(key))

    return identifiers


class ReleaseValues(pulumi.ComponentResource):
    settings: pegasus.settings.PipelineSettings
    host: PulumiGitHubHost
    report: pulumi.Output

    @classmethod
    def autoload(cls) -> ReleaseValues:
        return cls(settings=pegasus.settings.load_settings())

    def __init__(self, settings: pegasus.settings.PipelineSettings, label: str | None = None, *args, **kwargs):
        super().__init__(
            f"pegasus:{self.__class__.__name__}",
            f"{settings.cluster_name}-{settings.environment}-release-values",
            *args,
            **kwargs,
        )

        self.settings = settings

        provider = github.Provider(
            f"{settings.cluster_name}-{settings.environment}-github",
            owner=settings.github_owner,
            opts=pulumi.ResourceOptions(parent=self),
        )
        self.host = PulumiGitHubHost(settings.github_repository, parent=self, provider=provider)

        identifiers: dict[str, typing.Any] = {}
        if settings.identifiers_stack:
            identifiers = identifiers_from_stack_reference(
                pulumi.StackReference(settings.identifiers_stack),
                settings.addons,
            )

        account_id: typing.Any = settings.account_id
        if not account_id:
            account_id = aws.get_caller_identity_output().account_id

        self.report = pulumi.Output.from_input(self._run(identifiers, account_id, label))

        self.register_outputs({"report": self.report})

    async def _run(self, identifiers: dict[str, typing.Any], account_id: typing.Any, label: str | None) -> dict:
        if isinstance(account_id, pulumi.Output):
            account_id = await account_id.future() or ""

        context = self.settings.context(identifiers, account_id=account_id)
        report: PipelineReport = await ReleasePipeline(self.settings, self.host).run(context, label=label)

        if not report.ok:
            msg = f"release values were not fully published: {report.error}"
            pulumi.error(msg)
            raise RuntimeError(msg)

        return report.summary()
