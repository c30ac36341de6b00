from __future__ import annotations

import pulumi
import pulumi_github as github

import pegasus
from pegasus.git_host import GitHost


class PulumiGitHubHost(GitHost):
    """Declares the publish protocol as pulumi_github resources.

    Nothing talks to GitHub while the program runs; the engine performs the
    calls in dependency order. Every file depends on the branch resource and
    the pull request depends on every file, which gives the same ordering the
    REST host gets by awaiting each step.
    """

    repository: str
    branches: dict[str, github.Branch]
    files: dict[str, list[github.RepositoryFile]]
    pull_requests: dict[str, github.RepositoryPullRequest]

    def __init__(
        self,
        repository: str,
        parent: pulumi.Resource | None = None,
        provider: pulumi.ProviderResource | None = None,
    ):
        self.repository = repository
        self._parent = parent
        self._provider = provider

        self.branches = {}
        self.files = {}
        self.pull_requests = {}

    def _opts(self, **kwargs) -> pulumi.ResourceOptions:
        # merged or abandoned release branches must outlive the next run of the program
        return pulumi.ResourceOptions(parent=self._parent, provider=self._provider, retain_on_delete=True, **kwargs)

    def declare_branch(self, branch: str, base: str = pegasus.MAIN) -> github.Branch:
        self.branches[branch] = github.Branch(
            f"{branch}-git-branch",
            repository=self.repository,
            branch=branch,
            source_branch=base,
            opts=self._opts(ignore_changes=["*"]),
        )

        return self.branches[branch]

    def declare_file(
        self,
        branch: str,
        path: str,
        content: str,
        message: str,
        identity: pegasus.GitIdentity,
        *,
        overwrite: bool = True,
    ) -> github.RepositoryFile:
        if branch not in self.branches:
            msg = f"branch {branch!r} must be declared before committing {path}"
            raise pegasus.GitTransportError(msg)

        branch_resource = self.branches[branch]
        repository_file = github.RepositoryFile(
            f"{path.replace('/', '-')}-git",
            repository=self.repository,
            branch=branch_resource.branch,
            file=path,
            content=content,
            commit_author=identity.author,
            commit_email=identity.email,
            commit_message=message,
            overwrite_on_create=overwrite,
            opts=self._opts(depends_on=[branch_resource]),
        )
        self.files.setdefault(branch, []).append(repository_file)

        return repository_file

    def declare_pull_request(self, base: str, head: str, title: str, body: str) -> github.RepositoryPullRequest:
        if head not in self.branches:
            msg = f"branch {head!r} must be declared before opening a pull request"
            raise pegasus.GitTransportError(msg)

        self.pull_requests[head] = github.RepositoryPullRequest(
            f"{head}-git-pr",
            base_repository=self.repository,
            base_ref=base,
            head_ref=self.branches[head].branch,
            title=title,
            body=body,
            opts=self._opts(depends_on=list(self.files.get(head, [])), ignore_changes=["*"]),
        )

        return self.pull_requests[head]

    async def create_branch(self, branch: str, base: str = pegasus.MAIN) -> None:
        self.declare_branch(branch, base)

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
        # pulumi_github base64-encodes the content itself
        self.declare_file(branch, path, content, message, identity, overwrite=overwrite)

    async def create_pull_request(self, base: str, head: str, title: str, body: str) -> str:
        self.declare_pull_request(base, head, title, body)

        return f"{self.repository}:{head}->{base}"
