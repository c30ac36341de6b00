from __future__ import annotations

import base64
import collections.abc
import dataclasses
import typing

import pulumi
import yaml

import pegasus
import pegasus.naming
from pegasus.fragments import ConfigFragment, FragmentFailure


class _CanonicalDumper(yaml.SafeDumper):
    # anchors and aliases depend on object identity, not content
    def ignore_aliases(self, data: typing.Any) -> bool:  # noqa: ARG002
        return True


_CanonicalDumper.add_representer(tuple, yaml.SafeDumper.represent_list)
_CanonicalDumper.add_multi_representer(str, yaml.SafeDumper.represent_str)


@dataclasses.dataclass(frozen=True)
class RenderedFragment:
    name: str
    path: str
    text: str


def _check_acyclic(value: typing.Any, ancestors: tuple[int, ...] = ()) -> None:
    if isinstance(value, collections.abc.Mapping):
        children: collections.abc.Iterable[typing.Any] = value.values()
    elif isinstance(value, list | tuple):
        children = value
    else:
        return

    if id(value) in ancestors:
        msg = "content contains a reference cycle"
        raise pegasus.SerializationFailure(msg)

    for child in children:
        _check_acyclic(child, (*ancestors, id(value)))


def canonical_yaml(content: collections.abc.Mapping[str, typing.Any]) -> str:
    """Render content as block-style YAML with sorted keys.

    Equal content always renders to identical text, which keeps diffs between
    runs limited to actual value changes.
    """
    _check_acyclic(content)

    try:
        return yaml.dump(
            dict(content),
            Dumper=_CanonicalDumper,
            sort_keys=True,
            default_flow_style=False,
            allow_unicode=True,
            width=float("inf"),
        )
    except (yaml.YAMLError, TypeError) as exc:
        msg = f"content cannot be rendered as YAML: {exc}"
        raise pegasus.SerializationFailure(msg) from exc


def render(fragment: ConfigFragment, environment: str) -> RenderedFragment:
    try:
        text = canonical_yaml(fragment.content)
    except pegasus.SerializationFailure as exc:
        msg = f"{fragment.name}: {exc}"
        raise pegasus.SerializationFailure(msg) from exc

    return RenderedFragment(
        name=fragment.name,
        path=pegasus.naming.fragment_path(fragment.name, environment),
        text=text,
    )


def render_all(
    fragments: collections.abc.Iterable[ConfigFragment],
    environment: str,
) -> tuple[list[RenderedFragment], list[FragmentFailure]]:
    rendered: list[RenderedFragment] = []
    failures: list[FragmentFailure] = []

    for fragment in fragments:
        try:
            rendered.append(render(fragment, environment))
        except pegasus.SerializationFailure as exc:
            pulumi.log.warn(f"skipping fragment {fragment.name}: {exc}")
            failures.append(FragmentFailure(name=fragment.name, error=exc))

    return rendered, failures


def wire_encode(text: str) -> str:
    return base64.b64encode(text.encode("utf-8")).decode("ascii")


def wire_decode(payload: str) -> str:
    return base64.b64decode(payload).decode("utf-8")
