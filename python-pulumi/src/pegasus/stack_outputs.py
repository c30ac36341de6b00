from __future__ import annotations

import functools
import json
import subprocess
import typing

import pegasus

if typing.TYPE_CHECKING:
    import collections.abc
    import pathlib

ROLE_ARNS_OUTPUT = "role_arns"

sh = functools.partial(
    subprocess.run,
    check=True,
    capture_output=True,
    text=True,
)


def read_stack_outputs(stack: str, cwd: pathlib.Path | None = None) -> dict[str, typing.Any]:
    try:
        ret = sh(
            ["pulumi", "stack", "output", "--json", "--show-secrets", "--stack", stack],  # noqa: S607
            cwd=cwd,
        )
    except (subprocess.CalledProcessError, FileNotFoundError) as exc:
        msg = f"could not read outputs of stack {stack!r}: {exc}"
        raise RuntimeError(msg) from exc

    return json.loads(ret.stdout)


def identifiers_from_outputs(outputs: collections.abc.Mapping[str, typing.Any]) -> dict[str, typing.Any]:
    """Map provisioning stack outputs onto producer identifier keys.

    The provisioning stack exports ``role_arns`` as a mapping of add-on name to
    IRSA role ARN, plus ``vpc_id`` and ``certificate_arn``. Flat
    ``role_arn/<add-on>`` keys are passed through unchanged.
    """
    identifiers: dict[str, typing.Any] = {}

    for addon, arn in (outputs.get(ROLE_ARNS_OUTPUT) or {}).items():
        identifiers[pegasus.role_arn_key(addon)] = arn

    for key, value in outputs.items():
        if key in pegasus.Identifiers or key.startswith(pegasus.role_arn_key("")):
            identifiers[key] = value

    return identifiers
