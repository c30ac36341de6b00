from __future__ import annotations

import asyncio
import dataclasses
import enum
import inspect
import re
import typing

import pulumi

if typing.TYPE_CHECKING:
    import collections.abc

DEFAULT_BRANCH_PREFIX = "pr"
DEFAULT_COMMIT_AUTHOR = "Pulumi Bot"
DEFAULT_COMMIT_EMAIL = "bot@pulumi.com"
DEFAULT_RESOLVE_TIMEOUT = 300.0
GENERATED_EXT = "yaml"
GITHUB_API_URL = "https://api.github.com"
MAIN = "main"
PREVIEW_PLACEHOLDER = "(known after apply)"
PULL_REQUEST_BODY = "This PR was created automatically by the pegasus bot."
PULL_REQUEST_TITLE = "Automated PR for release pipeline"
RELEASES_DIR = "releases"
ROLE_ARN_ANNOTATION = "eks.amazonaws.com/role-arn"

SAFE_NAME_REGEX = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")
ROLE_ARN_REGEX = re.compile(r"^arn:aws[a-z-]*:iam::[0-9]{12}:role/.+$")


class Environments(enum.StrEnum):
    dev = "dev"
    staging = "staging"
    production = "production"


class AddOns(enum.StrEnum):
    AMAZON_CLOUDWATCH_OBSERVABILITY = "amazon-cloudwatch-observability"
    ARGOCD = "argocd"
    AWS_EBS_CSI_DRIVER = "aws-ebs-csi-driver"
    AWS_LOAD_BALANCER_CONTROLLER = "aws-load-balancer-controller"
    EXTERNAL_SECRETS = "external-secrets"
    GRAFANA = "grafana"
    INGRESS_NGINX = "ingress-nginx"
    KARPENTER = "karpenter"


class Identifiers(enum.StrEnum):
    CERTIFICATE_ARN = "certificate_arn"
    VPC_ID = "vpc_id"


def role_arn_key(addon: str) -> str:
    return f"role_arn/{addon}"


class TransactionState(enum.StrEnum):
    NOT_STARTED = "NotStarted"
    BRANCH_CREATED = "BranchCreated"
    FILES_COMMITTED = "FilesCommitted"
    PULL_REQUEST_OPENED = "PullRequestOpened"


class FragmentStatus(enum.StrEnum):
    INCLUDED = "included"
    SKIPPED = "skipped"
    NOT_COMMITTED = "not-committed"


class PegasusError(Exception):
    pass


class InvalidFragmentNameError(PegasusError, ValueError):
    pass


class DuplicateFragmentError(PegasusError, ValueError):
    pass


class ProducerFailure(PegasusError):
    def __init__(self, producer: str, reason: str):
        super().__init__(f"{producer}: {reason}")
        self.producer = producer
        self.reason = reason


class ResolutionTimeout(ProducerFailure):
    pass


class ResolutionError(PegasusError):
    pass


class SerializationFailure(PegasusError):
    pass


class GitTransportError(PegasusError):
    def __init__(self, msg: str, status_code: int | None = None):
        super().__init__(msg)
        self.status_code = status_code


class NamingCollisionError(GitTransportError):
    pass


@dataclasses.dataclass(frozen=True)
class GitIdentity:
    author: str = DEFAULT_COMMIT_AUTHOR
    email: str = DEFAULT_COMMIT_EMAIL


@dataclasses.dataclass(frozen=True)
class ClusterContext:
    """Everything a fragment producer is allowed to know about the cluster.

    ``identifiers`` holds values produced by provisioning that may not exist yet:
    plain strings, awaitables or pulumi.Output values.
    Producers read them through :meth:`identifier` and never provision anything
    themselves.
    """

    cluster_name: str
    region: str
    environment: str
    account_id: str = ""
    github_owner: str = ""
    github_repository: str = ""
    dns_public_domain: str = ""
    bootloaders: tuple[str, ...] = ()
    identifiers: collections.abc.Mapping[str, typing.Any] = dataclasses.field(default_factory=dict)
    _pending: dict[str, asyncio.Future] = dataclasses.field(default_factory=dict, init=False, repr=False, compare=False)

    async def identifier(self, key: str, producer: str = "") -> str:
        if key not in self.identifiers:
            raise ProducerFailure(producer or key, f"identifier {key!r} was not provided")

        value = self.identifiers[key]

        # a bare coroutine can only be awaited once but several add-ons share identifiers
        if inspect.iscoroutine(value):
            if key not in self._pending:
                self._pending[key] = asyncio.ensure_future(value)
            value = self._pending[key]

        if isinstance(value, pulumi.Output):
            # provisioning outputs stay unknown until the first `pulumi up`
            if not await value.is_known() and pulumi.runtime.is_dry_run():
                pulumi.log.debug(f"{key} is unknown during preview, rendering {PREVIEW_PLACEHOLDER}")
                return PREVIEW_PLACEHOLDER
            value = await value.future()
        elif inspect.isawaitable(value):
            value = await value

        if value is None or value == "":
            raise ProducerFailure(producer or key, f"identifier {key!r} resolved to an empty value")

        return str(value)

    async def role_arn(self, addon: str) -> str:
        arn = await self.identifier(role_arn_key(addon), producer=addon)

        if arn != PREVIEW_PLACEHOLDER and ROLE_ARN_REGEX.match(arn) is None:
            raise ProducerFailure(addon, f"{arn!r} is not an IAM role ARN")

        return arn
