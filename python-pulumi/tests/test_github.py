import asyncio
import json

import httpx
import pytest

import pegasus
import pegasus.github
from pegasus.github import GitHubHost
from pegasus.publisher import GitPublisher
from pegasus.serializer import RenderedFragment

IDENTITY = pegasus.GitIdentity()


class FakeGitHub:
    """Just enough of the GitHub REST API for the publish protocol."""

    def __init__(self):
        self.refs = {"main": "sha-main"}
        self.contents: dict[tuple[str, str], dict] = {}
        self.requests: list[httpx.Request] = []
        self.pulls: list[dict] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        prefix = "/repos/number3ai/caprica"

        if request.method == "GET" and path.startswith(f"{prefix}/git/ref/heads/"):
            name = path.removeprefix(f"{prefix}/git/ref/heads/")
            if name not in self.refs:
                return httpx.Response(404, json={"message": "Not Found"})
            return httpx.Response(200, json={"object": {"sha": self.refs[name]}})

        if request.method == "POST" and path == f"{prefix}/git/refs":
            body = json.loads(request.content)
            name = body["ref"].removeprefix("refs/heads/")
            if name in self.refs:
                return httpx.Response(422, json={"message": "Reference already exists"})
            self.refs[name] = body["sha"]
            return httpx.Response(201, json={"ref": body["ref"]})

        if path.startswith(f"{prefix}/contents/"):
            file_path = path.removeprefix(f"{prefix}/contents/")

            if request.method == "GET":
                key = (request.url.params["ref"], file_path)
                if key not in self.contents:
                    return httpx.Response(404, json={"message": "Not Found"})
                return httpx.Response(200, json={"sha": self.contents[key]["sha"]})

            body = json.loads(request.content)
            key = (body["branch"], file_path)
            if key in self.contents and body.get("sha") != self.contents[key]["sha"]:
                return httpx.Response(409, json={"message": "sha mismatch"})
            self.contents[key] = {**body, "sha": f"sha-{len(self.requests)}"}
            return httpx.Response(201, json={"content": {"path": file_path}})

        if request.method == "POST" and path == f"{prefix}/pulls":
            body = json.loads(request.content)
            self.pulls.append(body)
            return httpx.Response(
                201, json={"html_url": f"https://github.com/number3ai/caprica/pull/{len(self.pulls)}"}
            )

        return httpx.Response(500, text="unexpected request")


@pytest.fixture
def fake() -> FakeGitHub:
    return FakeGitHub()


def make_host(fake: FakeGitHub) -> GitHubHost:
    client = httpx.AsyncClient(base_url="https://api.github.test", transport=httpx.MockTransport(fake.handler))
    return GitHubHost("number3ai", "caprica", client=client)


def run(fake: FakeGitHub, operation):
    async def go():
        async with make_host(fake) as host:
            return await operation(host)

    return asyncio.run(go())


def test_github_token(monkeypatch: pytest.MonkeyPatch) -> None:
    assert pegasus.github.github_token({"GITHUB_TOKEN": "ghp_abc"}) == "ghp_abc"

    monkeypatch.delenv("GITHUB_TOKEN", raising=False)
    with pytest.raises(RuntimeError, match="GITHUB_TOKEN environment variable not set"):
        pegasus.github.github_token()


def test_create_branch_from_base(fake: FakeGitHub) -> None:
    run(fake, lambda host: host.create_branch("pr-abc"))

    assert fake.refs["pr-abc"] == "sha-main"


def test_create_branch_collision(fake: FakeGitHub) -> None:
    fake.refs["pr-abc"] = "sha-old"

    with pytest.raises(pegasus.NamingCollisionError) as exc_info:
        run(fake, lambda host: host.create_branch("pr-abc"))

    assert exc_info.value.status_code == 422


def test_create_branch_missing_base(fake: FakeGitHub) -> None:
    with pytest.raises(pegasus.GitTransportError) as exc_info:
        run(fake, lambda host: host.create_branch("pr-abc", base="does-not-exist"))

    assert exc_info.value.status_code == 404
    assert not isinstance(exc_info.value, pegasus.NamingCollisionError)


def test_put_file_creates_with_base64_content(fake: FakeGitHub) -> None:
    fake.refs["pr-abc"] = "sha-main"

    run(
        fake,
        lambda host: host.put_file(
            "pr-abc", "releases/dev/a.generated.yaml", "x: 1\n", "Add new file", IDENTITY
        ),
    )

    stored = fake.contents[("pr-abc", "releases/dev/a.generated.yaml")]
    assert stored["content"] == "eDogMQo="
    assert stored["message"] == "Add new file"
    assert stored["author"] == {"name": "Pulumi Bot", "email": "bot@pulumi.com"}
    assert stored["committer"] == stored["author"]
    assert "sha" not in json.loads(fake.requests[-1].content)


def test_put_file_overwrites_existing_with_sha(fake: FakeGitHub) -> None:
    fake.contents[("pr-abc", "releases/dev/a.generated.yaml")] = {"sha": "sha-existing"}

    run(
        fake,
        lambda host: host.put_file("pr-abc", "releases/dev/a.generated.yaml", "x: 2\n", "Update", IDENTITY),
    )

    assert json.loads(fake.requests[-1].content)["sha"] == "sha-existing"
    assert fake.contents[("pr-abc", "releases/dev/a.generated.yaml")]["content"] == "eDogMgo="


def test_put_file_without_overwrite(fake: FakeGitHub) -> None:
    fake.contents[("pr-abc", "releases/dev/a.generated.yaml")] = {"sha": "sha-existing"}

    with pytest.raises(pegasus.GitTransportError, match="overwrite is disabled"):
        run(
            fake,
            lambda host: host.put_file(
                "pr-abc", "releases/dev/a.generated.yaml", "x: 2\n", "Update", IDENTITY, overwrite=False
            ),
        )


def test_create_pull_request(fake: FakeGitHub) -> None:
    url = run(fake, lambda host: host.create_pull_request("main", "pr-abc", "Automated PR", "body"))

    assert url == "https://github.com/number3ai/caprica/pull/1"
    assert fake.pulls == [{"title": "Automated PR", "body": "body", "head": "pr-abc", "base": "main"}]


def test_server_error_is_transport_error(fake: FakeGitHub) -> None:
    with pytest.raises(pegasus.GitTransportError, match="returned 500") as exc_info:
        run(fake, lambda host: host._request("DELETE", "/repos/number3ai/caprica"))

    assert exc_info.value.status_code == 500


def test_connection_error_is_transport_error() -> None:
    def refuse(request: httpx.Request) -> httpx.Response:
        msg = "connection refused"
        raise httpx.ConnectError(msg, request=request)

    client = httpx.AsyncClient(base_url="https://api.github.test", transport=httpx.MockTransport(refuse))

    async def go():
        async with GitHubHost("number3ai", "caprica", client=client) as host:
            await host.create_pull_request("main", "pr-abc", "title", "body")

    with pytest.raises(pegasus.GitTransportError, match="connection refused") as exc_info:
        asyncio.run(go())

    assert exc_info.value.status_code is None


class BusyGitHub(FakeGitHub):
    """Answers 409 to a contents PUT while another PUT on the same branch is in flight."""

    def __init__(self):
        super().__init__()
        self.writing: set[str] = set()
        self.conflicts = 0

    async def slow_handler(self, request: httpx.Request) -> httpx.Response:
        if request.method != "PUT":
            return self.handler(request)

        branch = json.loads(request.content)["branch"]
        if branch in self.writing:
            self.conflicts += 1
            return httpx.Response(409, json={"message": "reference does not match the expected head"})

        self.writing.add(branch)
        try:
            await asyncio.sleep(0.01)
            return self.handler(request)
        finally:
            self.writing.discard(branch)


def test_commits_to_one_branch_do_not_overlap() -> None:
    busy = BusyGitHub()
    files = [
        RenderedFragment(name=name, path=f"releases/dev/{name}.generated.yaml", text=f"{name}: 1\n")
        for name in ("a", "b", "c", "d", "e")
    ]
    client = httpx.AsyncClient(base_url="https://api.github.test", transport=httpx.MockTransport(busy.slow_handler))

    async def go():
        async with GitHubHost("number3ai", "caprica", client=client) as host:
            return await GitPublisher(host).publish("pr-many", files)

    txn = asyncio.run(go())

    assert busy.conflicts == 0
    assert txn.state == pegasus.TransactionState.PULL_REQUEST_OPENED
    assert len(txn.committed) == 5
    assert sorted(path for branch, path in busy.contents if branch == "pr-many") == [f.path for f in files]


def test_non_json_success_body_is_transport_error() -> None:
    def garbled(request: httpx.Request) -> httpx.Response:
        return httpx.Response(201, content=b"<html>proxy</html>")

    client = httpx.AsyncClient(base_url="https://api.github.test", transport=httpx.MockTransport(garbled))

    async def go():
        async with GitHubHost("number3ai", "caprica", client=client) as host:
            await host.create_pull_request("main", "pr-abc", "title", "body")

    with pytest.raises(pegasus.GitTransportError, match="not JSON") as exc_info:
        asyncio.run(go())

    assert exc_info.value.status_code == 201


def test_malformed_success_bodies_are_transport_errors() -> None:
    bodies = {
        "/repos/number3ai/caprica/git/ref/heads/main": {"ref": "refs/heads/main"},
        "/repos/number3ai/caprica/pulls": ["not", "an", "object"],
    }

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=bodies[request.url.path])

    async def attempt(operation):
        client = httpx.AsyncClient(base_url="https://api.github.test", transport=httpx.MockTransport(handler))
        async with GitHubHost("number3ai", "caprica", client=client) as host:
            await operation(host)

    with pytest.raises(pegasus.GitTransportError, match="has no object sha"):
        asyncio.run(attempt(lambda host: host.create_branch("pr-abc")))

    with pytest.raises(pegasus.GitTransportError, match="list body, expected an object"):
        asyncio.run(attempt(lambda host: host.create_pull_request("main", "pr-abc", "title", "body")))


def test_pull_request_without_url_is_transport_error() -> None:
    client = httpx.AsyncClient(
        base_url="https://api.github.test",
        transport=httpx.MockTransport(lambda request: httpx.Response(201, json={"number": 3})),
    )

    async def go():
        async with GitHubHost("number3ai", "caprica", client=client) as host:
            await host.create_pull_request("main", "pr-abc", "title", "body")

    with pytest.raises(pegasus.GitTransportError, match="no html_url"):
        asyncio.run(go())
