from __future__ import annotations

import asyncio
import dataclasses
import typing

import pulumi

import pegasus
import pegasus.junkdrawer
from pegasus.fragments import AsyncFragmentHandle, ConfigFragment, FragmentFailure

if typing.TYPE_CHECKING:
    import collections.abc

Producer = typing.Callable[[pegasus.ClusterContext], typing.Any]


@dataclasses.dataclass(frozen=True)
class Resolution:
    fragments: tuple[ConfigFragment, ...]
    failures: tuple[FragmentFailure, ...]

    @property
    def names(self) -> list[str]:
        return [f.name for f in self.fragments]


def as_handles(producer: str, output: typing.Any) -> list[AsyncFragmentHandle]:
    """Normalize whatever a producer returned into a list of handles.

    A producer may return nothing, a single value, or a list of values. Values
    without a name of their own are named after the producer, with an index
    suffix when there is more than one.
    """
    if output is None:
        return []

    items = pegasus.junkdrawer.flatten(output) if isinstance(output, list | tuple) else [output]

    handles = []
    for i, item in enumerate(items):
        if isinstance(item, AsyncFragmentHandle):
            handles.append(item)
            continue

        name = item.name if isinstance(item, ConfigFragment) else producer
        if len(items) > 1 and not isinstance(item, ConfigFragment):
            name = f"{producer}[{i}]"

        handles.append(AsyncFragmentHandle(item, name=name))

    return handles


def run_producers(
    producers: collections.abc.Mapping[str, Producer],
    context: pegasus.ClusterContext,
) -> list[AsyncFragmentHandle]:
    handles: list[AsyncFragmentHandle] = []

    # registry order is irrelevant to the output; resolution sorts by fragment name
    for name, producer in producers.items():
        try:
            output = producer(context)
        except Exception as exc:  # noqa: BLE001
            pulumi.log.warn(f"producer {name} raised before returning a fragment: {exc}")
            handles.append(AsyncFragmentHandle.failed(name, exc))
            continue

        handles.extend(as_handles(name, output))

    return handles


async def _settle(handle: AsyncFragmentHandle, timeout: float | None) -> ConfigFragment | FragmentFailure:
    try:
        if timeout is None:
            return await handle.resolve()

        return await asyncio.wait_for(asyncio.shield(handle.resolve()), timeout)
    except TimeoutError:
        error = pegasus.ResolutionTimeout(handle.name, f"did not resolve within {timeout}s")
        return FragmentFailure(name=handle.name, error=error)
    except pegasus.ProducerFailure as exc:
        return FragmentFailure(name=handle.name, error=exc)


async def resolve_fragments(
    handles: collections.abc.Iterable[AsyncFragmentHandle],
    timeout: float | None = pegasus.DEFAULT_RESOLVE_TIMEOUT,
) -> Resolution:
    """Wait for every handle concurrently and split the results.

    Failures are isolated per handle. The run only fails outright when there was
    at least one handle and none of them resolved.
    """
    handles = list(handles)

    settled = await asyncio.gather(*(_settle(h, timeout) for h in handles))

    fragments = [s for s in settled if isinstance(s, ConfigFragment)]
    failures = [s for s in settled if isinstance(s, FragmentFailure)]

    for failure in failures:
        pulumi.log.warn(f"skipping fragment {failure.name}: {failure.reason}")

    if handles and not fragments:
        msg = f"all {len(handles)} fragment producers failed: " + "; ".join(f.reason for f in failures)
        raise pegasus.ResolutionError(msg)

    return Resolution(
        fragments=tuple(sorted(fragments, key=lambda f: f.name)),
        failures=tuple(sorted(failures, key=lambda f: f.name)),
    )
