from abc import ABC, abstractmethod

import pegasus


class GitHost(ABC):
    """The three Git host operations a publish transaction needs.

    Implementations raise pegasus.GitTransportError (or a subclass) for any
    failure the host reports. ``content`` is always plain text; encoding for
    the wire is the implementation's concern.
    """

    @abstractmethod
    async def create_branch(self, branch: str, base: str = pegasus.MAIN) -> None:
        pass

    @abstractmethod
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
        pass

    @abstractmethod
    async def create_pull_request(self, base: str, head: str, title: str, body: str) -> str:
        pass
