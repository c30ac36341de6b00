from __future__ import annotations

import asyncio
import os
import typing
import urllib.parse

import httpx

import pegasus
import pegasus.serializer
from pegasus.git_host import GitHost

GITHUB_TOKEN_ENV_VAR = "GITHUB_TOKEN"  # noqa: S105
DEFAULT_TIMEOUT = 30.0


def github_token(exe_env: dict[str, str] | None = None) -> str:
    exe_env = exe_env or os.environ.copy()

    token = exe_env.get(GITHUB_TOKEN_ENV_VAR, "")
    if token == "":
        msg = f"{GITHUB_TOKEN_ENV_VAR} environment variable not set."
        raise RuntimeError(msg)

    return token


class GitHubHost(GitHost):
    """GitHub REST v3 implementation of the publish protocol."""

    owner: str
    repository: str

    def __init__(
        self,
        owner: str,
        repository: str,
        token: str | None = None,
        *,
        client: httpx.AsyncClient | None = None,
        base_url: str = pegasus.GITHUB_API_URL,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        self.owner = owner
        self.repository = repository

        if client is None:
            headers = {
                "Accept": "application/vnd.github+json",
                "Authorization": f"Bearer {token or github_token()}",
                "X-GitHub-Api-Version": "2022-11-28",
            }
            client = httpx.AsyncClient(base_url=base_url, headers=headers, timeout=timeout)

        self._client = client
        self._locks: dict[str, asyncio.Lock] = {}

    @property
    def repo_url(self) -> str:
        return f"/repos/{self.owner}/{self.repository}"

    async def __aenter__(self) -> GitHubHost:
        return self

    async def __aexit__(self, *exc_info: typing.Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def create_branch(self, branch: str, base: str = pegasus.MAIN) -> None:
        base_ref = await self._request("GET", f"{self.repo_url}/git/ref/heads/{base}")

        try:
            base_sha = base_ref["object"]["sha"]
        except (KeyError, TypeError) as exc:
            msg = f"ref heads/{base} of {self.owner}/{self.repository} has no object sha"
            raise pegasus.GitTransportError(msg) from exc

        try:
            await self._request(
                "POST",
                f"{self.repo_url}/git/refs",
                json={"ref": f"refs/heads/{branch}", "sha": base_sha},
            )
        except pegasus.GitTransportError as exc:
            # GitHub answers 422 "Reference already exists" for a taken branch name
            if exc.status_code == httpx.codes.UNPROCESSABLE_ENTITY:
                msg = f"branch {branch!r} already exists in {self.owner}/{self.repository}"
                raise pegasus.NamingCollisionError(msg, status_code=exc.status_code) from exc
            raise

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
        # every contents PUT moves the branch head; GitHub answers 409 to parallel writes on one branch
        async with self._branch_lock(branch):
            existing_sha = await self._file_sha(branch, path)

            if existing_sha is not None and not overwrite:
                msg = f"{path} already exists on {branch} and overwrite is disabled"
                raise pegasus.GitTransportError(msg)

            signature = {"name": identity.author, "email": identity.email}
            payload: dict[str, typing.Any] = {
                "message": message,
                "content": pegasus.serializer.wire_encode(content),
                "branch": branch,
                "author": signature,
                "committer": signature,
            }
            if existing_sha is not None:
                payload["sha"] = existing_sha

            await self._request("PUT", self._contents_url(path), json=payload)

    async def create_pull_request(self, base: str, head: str, title: str, body: str) -> str:
        pull = await self._request(
            "POST",
            f"{self.repo_url}/pulls",
            json={"title": title, "body": body, "head": head, "base": base},
        )

        if not pull.get("html_url"):
            msg = f"pull request from {head} to {base} was created but GitHub returned no html_url"
            raise pegasus.GitTransportError(msg)

        return pull["html_url"]

    def _branch_lock(self, branch: str) -> asyncio.Lock:
        return self._locks.setdefault(branch, asyncio.Lock())

    def _contents_url(self, path: str) -> str:
        return f"{self.repo_url}/contents/{urllib.parse.quote(path)}"

    async def _file_sha(self, branch: str, path: str) -> str | None:
        try:
            existing = await self._request("GET", self._contents_url(path), params={"ref": branch})
        except pegasus.GitTransportError as exc:
            if exc.status_code == httpx.codes.NOT_FOUND:
                return None
            raise

        return existing.get("sha")

    async def _request(self, method: str, url: str, **kwargs: typing.Any) -> dict[str, typing.Any]:
        try:
            response = await self._client.request(method, url, **kwargs)
        except httpx.HTTPError as exc:
            msg = f"{method} {url} failed: {exc}"
            raise pegasus.GitTransportError(msg) from exc

        if response.is_error:
            msg = f"{method} {url} returned {response.status_code}: {response.text}"
            raise pegasus.GitTransportError(msg, status_code=response.status_code)

        if not response.content:
            return {}

        try:
            body = response.json()
        except ValueError as exc:
            msg = f"{method} {url} returned {response.status_code} with a body that is not JSON: {exc}"
            raise pegasus.GitTransportError(msg, status_code=response.status_code) from exc

        if not isinstance(body, dict):
            kind = type(body).__name__
            msg = f"{method} {url} returned {response.status_code} with a {kind} body, expected an object"
            raise pegasus.GitTransportError(msg, status_code=response.status_code)

        return body
