from __future__ import annotations

import hashlib
import json
import typing

import click


def print_steps(steps: list[tuple[str, typing.Any]]):
    click.secho(
        "∙ " + ("\n∙ ".join([name for name, _ in steps])) + "\n\n",
        fg="white",
        bold=True,
    )


def json_signature(obj: typing.Any) -> str:
    return hashlib.sha256(
        json.dumps(obj, sort_keys=True).encode(),
        usedforsecurity=False,
    ).hexdigest()


def flatten(items: typing.Iterable[typing.Any]) -> list[typing.Any]:
    flat: list[typing.Any] = []

    for item in items:
        if isinstance(item, list | tuple):
            flat.extend(flatten(item))
        else:
            flat.append(item)

    return flat
