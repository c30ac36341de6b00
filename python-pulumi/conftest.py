"""Shared pytest fixtures for pegasus tests.

This module provides common fixtures used across test files:
- pegasus_root: Sets PEGASUS_ROOT environment variable
- settings: PipelineSettings for a "dev" cluster with sensible defaults
- identifiers / context: provisioned identifiers and the ClusterContext built from them
- recording_git_host: in-memory GitHost that records every call
"""

import asyncio
import pathlib
import sys
import typing

import pytest

HERE = pathlib.Path(__file__).absolute().parent

sys.path.insert(0, str(HERE / "src"))

import pegasus  # noqa: E402
import pegasus.git_host  # noqa: E402
import pegasus.settings  # noqa: E402

ACCOUNT_ID = "783634644742"


# ============================================================================
# Environment Setup Fixtures
# ============================================================================


@pytest.fixture
def pegasus_root(monkeypatch: pytest.MonkeyPatch, tmp_path: pathlib.Path) -> pathlib.Path:
    """Set PEGASUS_ROOT environment variable to a temporary directory.

    Usage:
        def test_something(pegasus_root):
            (pegasus_root / "pegasus.yaml").write_text(...)
            settings = pegasus.settings.load_settings()
    """
    monkeypatch.setenv("PEGASUS_ROOT", str(tmp_path))
    return tmp_path


# ============================================================================
# Pipeline Fixtures
# ============================================================================


@pytest.fixture
def settings() -> pegasus.settings.PipelineSettings:
    """PipelineSettings for cluster "dev" in us-west-2 publishing to number3ai/caprica."""
    return pegasus.settings.PipelineSettings(
        cluster_name="dev",
        region="us-west-2",
        environment="dev",
        github_owner="number3ai",
        github_repository="caprica",
        account_id=ACCOUNT_ID,
        dns_public_domain="domain.com",
        resolve_timeout=2.0,
    )


@pytest.fixture
def identifiers() -> dict[str, str]:
    """A role ARN for every add-on plus the VPC id and certificate ARN."""
    ids = {pegasus.role_arn_key(addon): f"arn:aws:iam::{ACCOUNT_ID}:role/{addon}-sa" for addon in pegasus.AddOns}
    ids[pegasus.Identifiers.VPC_ID] = "vpc-0123456789abcdef0"
    ids[pegasus.Identifiers.CERTIFICATE_ARN] = f"arn:aws:acm:us-west-2:{ACCOUNT_ID}:certificate/wildcard"
    return ids


@pytest.fixture
def context(settings: pegasus.settings.PipelineSettings, identifiers: dict[str, str]) -> pegasus.ClusterContext:
    return settings.context(identifiers)


class RecordingGitHost(pegasus.git_host.GitHost):
    """In-memory Git host.

    Every call is appended to ``calls`` as ``(operation, target)`` so tests can
    check protocol ordering. ``fail`` maps ``(operation, target)`` to the
    exception that call should raise.
    """

    def __init__(self, branches: typing.Iterable[str] = (pegasus.MAIN,)):
        self.branches: set[str] = set(branches)
        self.files: dict[tuple[str, str], str] = {}
        self.commits: list[dict[str, typing.Any]] = []
        self.pull_requests: list[dict[str, str]] = []
        self.calls: list[tuple[str, str]] = []
        self.fail: dict[tuple[str, str], Exception] = {}

    def _record(self, operation: str, target: str) -> None:
        self.calls.append((operation, target))
        if (operation, target) in self.fail:
            raise self.fail[(operation, target)]

    def operations(self) -> list[str]:
        return [op for op, _ in self.calls]

    def files_on(self, branch: str) -> dict[str, str]:
        return {path: content for (b, path), content in self.files.items() if b == branch}

    async def create_branch(self, branch: str, base: str = pegasus.MAIN) -> None:
        await asyncio.sleep(0)
        self._record("create_branch", branch)

        if branch in self.branches:
            msg = f"branch {branch!r} already exists"
            raise pegasus.NamingCollisionError(msg, status_code=422)

        if base not in self.branches:
            msg = f"base {base!r} does not exist"
            raise pegasus.GitTransportError(msg, status_code=404)

        self.branches.add(branch)
        for path, content in self.files_on(base).items():
            self.files[(branch, path)] = content

    async def put_file(
        self,
        branch: str,
        path: str,
        content: str,
        message: str,
        identity: pegasus.GitIdentity,
        *,
        overwrite: bool = True,
    ) -> None:
        await asyncio.sleep(0)
        self._record("put_file", path)

        if branch not in self.branches:
            msg = f"branch {branch!r} does not exist"
            raise pegasus.GitTransportError(msg, status_code=404)

        if (branch, path) in self.files and not overwrite:
            msg = f"{path} already exists"
            raise pegasus.GitTransportError(msg, status_code=422)

        self.files[(branch, path)] = content
        self.commits.append(
            {"branch": branch, "path": path, "message": message, "author": identity.author, "email": identity.email}
        )

    async def create_pull_request(self, base: str, head: str, title: str, body: str) -> str:
        await asyncio.sleep(0)
        self._record("create_pull_request", head)

        self.pull_requests.append({"base": base, "head": head, "title": title, "body": body})
        return f"https://github.test/number3ai/caprica/pull/{len(self.pull_requests)}"


@pytest.fixture
def recording_git_host() -> type[RecordingGitHost]:
    """Returns the RecordingGitHost class so tests can construct hosts with custom branches."""
    return RecordingGitHost


@pytest.fixture
def git_host() -> RecordingGitHost:
    return RecordingGitHost()
