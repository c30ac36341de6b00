from __future__ import annotations

import asyncio
import dataclasses
import datetime
import typing

import pulumi

import pegasus
import pegasus.naming

if typing.TYPE_CHECKING:
    import collections.abc

    from pegasus.git_host import GitHost
    from pegasus.serializer import RenderedFragment


@dataclasses.dataclass
class GitPublishTransaction:
    """Progress of one branch/commit/pull request sequence.

    Nothing is rolled back on failure; the recorded state says which artifacts
    exist on the host.
    """

    branch: str
    base: str = pegasus.MAIN
    state: pegasus.TransactionState = pegasus.TransactionState.NOT_STARTED
    committed: list[str] = dataclasses.field(default_factory=list)
    failed: dict[str, str] = dataclasses.field(default_factory=dict)
    pull_request: str | None = None

    def describe(self) -> str:
        if self.state == pegasus.TransactionState.NOT_STARTED:
            return f"branch {self.branch} was not created; nothing was committed"

        parts = [f"branch {self.branch} created from {self.base}"]

        total = len(self.committed) + len(self.failed)
        parts.append(f"{len(self.committed)}/{total} files committed")
        if self.failed:
            parts.append("failed: " + ", ".join(sorted(self.failed)))

        if self.state == pegasus.TransactionState.PULL_REQUEST_OPENED:
            parts.append(f"pull request opened: {self.pull_request}")
        else:
            parts.append("pull request not opened")

        return "; ".join(parts)


class PublishError(pegasus.PegasusError):
    def __init__(self, msg: str, transaction: GitPublishTransaction):
        super().__init__(f"{msg} ({transaction.describe()})")
        self.transaction = transaction


class PartialPublishError(PublishError):
    def __init__(self, transaction: GitPublishTransaction):
        super().__init__("partial publish, manual review required", transaction)


def _reason(exc: Exception) -> str:
    if isinstance(exc, pegasus.GitTransportError):
        return str(exc)

    return f"{type(exc).__name__}: {exc}"


class GitPublisher:
    host: GitHost
    identity: pegasus.GitIdentity
    base: str
    body: str

    def __init__(
        self,
        host: GitHost,
        identity: pegasus.GitIdentity | None = None,
        *,
        base: str = pegasus.MAIN,
        body: str = pegasus.PULL_REQUEST_BODY,
        clock: typing.Callable[[], datetime.datetime] | None = None,
    ):
        self.host = host
        self.identity = identity or pegasus.GitIdentity()
        self.base = base
        self.body = body
        self._clock = clock or (lambda: datetime.datetime.now(tz=datetime.UTC))
        self._inflight: dict[str, asyncio.Task[GitPublishTransaction]] = {}

    async def publish(
        self,
        branch: str,
        files: collections.abc.Sequence[RenderedFragment],
    ) -> GitPublishTransaction:
        """Create ``branch`` from the base, commit every file, then open the pull request.

        A second call for a branch whose publish is still running joins that
        publish instead of starting another one.
        """
        return await self._dedupe(branch, files, create_branch=True)

    async def republish(
        self,
        branch: str,
        files: collections.abc.Sequence[RenderedFragment],
    ) -> GitPublishTransaction:
        """Overwrite the files on an existing branch and open the pull request.

        This is the operator retry path after a partial publish.
        """
        return await self._dedupe(branch, files, create_branch=False)

    async def _dedupe(
        self,
        branch: str,
        files: collections.abc.Sequence[RenderedFragment],
        *,
        create_branch: bool,
    ) -> GitPublishTransaction:
        task = self._inflight.get(branch)

        if task is None:
            task = asyncio.ensure_future(self._transact(branch, list(files), create_branch=create_branch))
            self._inflight[branch] = task
            task.add_done_callback(lambda _: self._inflight.pop(branch, None))
        else:
            pulumi.log.info(f"joining in-flight publish of {branch}")

        return await asyncio.shield(task)

    async def _transact(
        self,
        branch: str,
        files: list[RenderedFragment],
        *,
        create_branch: bool,
    ) -> GitPublishTransaction:
        txn = GitPublishTransaction(branch=branch, base=self.base)

        if not files:
            pulumi.log.info(f"no files to publish, not creating {branch}")
            return txn

        if create_branch:
            try:
                await self.host.create_branch(branch, self.base)
            except Exception as exc:  # noqa: BLE001
                pulumi.log.error(f"could not create branch {branch}: {_reason(exc)}")
                msg = f"branch creation failed: {_reason(exc)}"
                raise PublishError(msg, txn) from exc

        txn.state = pegasus.TransactionState.BRANCH_CREATED

        # commits target the same branch, not each other, so they go out together
        await asyncio.gather(*(self._commit(txn, f) for f in sorted(files, key=lambda f: f.path)))
        txn.committed.sort()

        if txn.failed:
            pulumi.log.error(f"partial publish on {branch}: {sorted(txn.failed)} failed")
            raise PartialPublishError(txn)

        txn.state = pegasus.TransactionState.FILES_COMMITTED

        try:
            txn.pull_request = await self.host.create_pull_request(
                base=self.base,
                head=branch,
                title=pegasus.naming.pull_request_title(self._clock()),
                body=self.body,
            )
        except Exception as exc:  # noqa: BLE001
            pulumi.log.error(f"could not open pull request for {branch}: {_reason(exc)}")
            msg = f"pull request creation failed: {_reason(exc)}"
            raise PublishError(msg, txn) from exc

        txn.state = pegasus.TransactionState.PULL_REQUEST_OPENED
        pulumi.log.info(f"opened pull request {txn.pull_request} from {branch} to {self.base}")

        return txn

    async def _commit(self, txn: GitPublishTransaction, file: RenderedFragment) -> None:
        try:
            await self.host.put_file(
                txn.branch,
                file.path,
                file.text,
                pegasus.naming.commit_message(file.path),
                self.identity,
                overwrite=True,
            )
        except Exception as exc:  # noqa: BLE001
            txn.failed[file.path] = _reason(exc)
            return

        txn.committed.append(file.path)
