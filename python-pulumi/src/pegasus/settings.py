from __future__ import annotations

import dataclasses
import typing
import warnings

import deepmerge  # type: ignore
import yaml

import pegasus
import pegasus.naming
import pegasus.paths

if typing.TYPE_CHECKING:
    import collections.abc


@dataclasses.dataclass(frozen=True)
class PipelineSettings:
    cluster_name: str
    region: str
    environment: str
    github_owner: str
    github_repository: str
    account_id: str = ""
    dns_public_domain: str = ""
    bootloaders: tuple[str, ...] = ("infrastructure", "security")
    addons: tuple[str, ...] = tuple(pegasus.AddOns)
    branch_prefix: str = pegasus.DEFAULT_BRANCH_PREFIX
    base_branch: str = pegasus.MAIN
    resolve_timeout: float | None = pegasus.DEFAULT_RESOLVE_TIMEOUT
    commit_author: str = pegasus.DEFAULT_COMMIT_AUTHOR
    commit_email: str = pegasus.DEFAULT_COMMIT_EMAIL
    identifiers_stack: str | None = None

    def __post_init__(self):
        if self.environment not in pegasus.Environments:
            msg = f"Environment {self.environment!r} is not supported"
            raise ValueError(msg)

        pegasus.naming.validate_environment(self.environment)

        unknown = set(self.addons) - set(pegasus.AddOns)
        if unknown:
            msg = f"Unknown add-ons in settings: {sorted(unknown)}. Valid add-ons are: {sorted(pegasus.AddOns)}"
            raise ValueError(msg)

        if self.resolve_timeout is not None and self.resolve_timeout <= 0:
            msg = f"resolve_timeout must be positive, got {self.resolve_timeout}"
            raise ValueError(msg)

    @property
    def identity(self) -> pegasus.GitIdentity:
        return pegasus.GitIdentity(author=self.commit_author, email=self.commit_email)

    def context(
        self,
        identifiers: collections.abc.Mapping[str, typing.Any] | None = None,
        account_id: str | None = None,
    ) -> pegasus.ClusterContext:
        return pegasus.ClusterContext(
            cluster_name=self.cluster_name,
            region=self.region,
            environment=self.environment,
            account_id=account_id if account_id is not None else self.account_id,
            github_owner=self.github_owner,
            github_repository=self.github_repository,
            dns_public_domain=self.dns_public_domain,
            bootloaders=self.bootloaders,
            identifiers=dict(identifiers or {}),
        )


def default_spec() -> dict[str, typing.Any]:
    return {
        "account_id": "",
        "addons": [str(a) for a in pegasus.AddOns],
        "bootloaders": ["infrastructure", "security"],
        "branch_prefix": pegasus.DEFAULT_BRANCH_PREFIX,
        "commit_author": pegasus.DEFAULT_COMMIT_AUTHOR,
        "commit_email": pegasus.DEFAULT_COMMIT_EMAIL,
        "resolve_timeout": pegasus.DEFAULT_RESOLVE_TIMEOUT,
    }


def settings_from_dict(cfg_dict: dict[str, typing.Any]) -> PipelineSettings:
    spec = default_spec()
    cfg_spec = dict(cfg_dict.get("spec") or {})

    if "repository" in cfg_spec:
        warnings.warn(
            "'spec.repository' found in pegasus config; this should be at 'spec.github_repository'",
            stacklevel=2,
        )
        cfg_spec.setdefault("github_repository", cfg_spec.pop("repository"))

    # lists replace rather than append so a config can narrow the add-on set
    merger = deepmerge.Merger(
        [(list, ["override"]), (dict, ["merge"]), (set, ["union"])],
        ["override"],
        ["override"],
    )
    merger.merge(spec, cfg_spec)

    for key in list(spec.keys()):
        spec[key.replace("-", "_")] = spec.pop(key)

    fields = {f.name for f in dataclasses.fields(PipelineSettings)}
    unknown = set(spec) - fields
    if unknown:
        msg = f"Unknown keys in pegasus config spec: {sorted(unknown)}"
        raise ValueError(msg)

    spec["bootloaders"] = tuple(spec["bootloaders"])
    spec["addons"] = tuple(spec["addons"])

    return PipelineSettings(**spec)


def load_settings(paths: pegasus.paths.Paths | None = None) -> PipelineSettings:
    settings_yaml = (paths or pegasus.paths.Paths()).settings

    if not settings_yaml.exists():
        msg = f"pegasus config not found at {settings_yaml}"
        raise FileNotFoundError(msg)

    return settings_from_dict(yaml.safe_load(settings_yaml.read_text()) or {})
