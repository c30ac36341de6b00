from __future__ import annotations

import asyncio
import collections.abc
import copy
import dataclasses
import inspect
import typing

import pulumi

import pegasus
import pegasus.naming


@dataclasses.dataclass(frozen=True)
class ConfigFragment:
    """A named values document destined for exactly one generated file."""

    name: str
    content: collections.abc.Mapping[str, typing.Any]

    def __post_init__(self):
        pegasus.naming.validate_fragment_name(self.name)

        if not isinstance(self.content, collections.abc.Mapping):
            msg = f"fragment {self.name!r} content must be a mapping, got {type(self.content).__name__}"
            raise TypeError(msg)

        # detach from whatever the producer keeps mutating
        object.__setattr__(self, "content", copy.deepcopy(dict(self.content)))


@dataclasses.dataclass(frozen=True)
class FragmentFailure:
    name: str
    error: pegasus.PegasusError

    @property
    def reason(self) -> str:
        return str(self.error)


class AsyncFragmentHandle:
    """Uniform wrapper around a fragment that may not be computed yet.

    The source may be a ConfigFragment, an awaitable of one, a zero-argument
    callable returning either, a pulumi.Output, or another handle. Resolution
    happens at most once; every caller of :meth:`resolve` shares the same task.
    """

    name: str

    def __init__(self, source: typing.Any, name: str | None = None):
        if name is None:
            name = source.name if isinstance(source, ConfigFragment | AsyncFragmentHandle) else "<anonymous>"

        self.name = name
        self._source = source
        self._task: asyncio.Task[ConfigFragment] | None = None

    @classmethod
    def failed(cls, name: str, error: BaseException) -> AsyncFragmentHandle:
        if not isinstance(error, pegasus.ProducerFailure):
            error = pegasus.ProducerFailure(name, f"{type(error).__name__}: {error}")

        async def _raise() -> ConfigFragment:
            raise error

        return cls(_raise, name=name)

    @property
    def done(self) -> bool:
        return self._task is not None and self._task.done()

    def resolve(self) -> asyncio.Task[ConfigFragment]:
        if self._task is None:
            self._task = asyncio.ensure_future(self._resolve())

        return self._task

    async def _resolve(self) -> ConfigFragment:
        try:
            value = self._source

            if callable(value) and not isinstance(value, AsyncFragmentHandle | pulumi.Output):
                value = value()

            if isinstance(value, pulumi.Output):
                value = await value.future()
            elif inspect.isawaitable(value):
                value = await value

            if isinstance(value, AsyncFragmentHandle):
                value = await value.resolve()
        except pegasus.ProducerFailure:
            raise
        except Exception as exc:
            raise pegasus.ProducerFailure(self.name, f"{type(exc).__name__}: {exc}") from exc

        if not isinstance(value, ConfigFragment):
            raise pegasus.ProducerFailure(
                self.name, f"resolved to {type(value).__name__}, expected a ConfigFragment"
            )

        return value

    def __repr__(self) -> str:
        return f"AsyncFragmentHandle(name={self.name!r}, done={self.done})"


@dataclasses.dataclass(frozen=True)
class PublishBatch:
    branch: str
    fragments: tuple[ConfigFragment, ...]

    def __post_init__(self):
        seen: set[str] = set()
        duplicates: set[str] = set()

        for fragment in self.fragments:
            if fragment.name in seen:
                duplicates.add(fragment.name)
            seen.add(fragment.name)

        if duplicates:
            msg = f"fragment names must be unique within a batch, duplicated: {sorted(duplicates)}"
            raise pegasus.DuplicateFragmentError(msg)

        object.__setattr__(self, "fragments", tuple(sorted(self.fragments, key=lambda f: f.name)))

    @property
    def names(self) -> list[str]:
        return [f.name for f in self.fragments]

    def __len__(self) -> int:
        return len(self.fragments)
