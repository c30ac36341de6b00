from __future__ import annotations

import datetime
import secrets

import pegasus
import pegasus.junkdrawer

BRANCH_HASH_LENGTH = 12
NONCE_BYTES = 8


def validate_fragment_name(name: str) -> str:
    """Reject names that are empty or could leave the releases directory.

    Path separators, ``..`` and leading dots are refused rather than rewritten so
    that two different fragment names can never collapse onto the same file.
    """
    if not isinstance(name, str) or not name:
        msg = "fragment name must be a non-empty string"
        raise pegasus.InvalidFragmentNameError(msg)

    if "/" in name or "\\" in name:
        msg = f"fragment name contains a path separator: {name!r}"
        raise pegasus.InvalidFragmentNameError(msg)

    if ".." in name:
        msg = f"fragment name contains '..': {name!r}"
        raise pegasus.InvalidFragmentNameError(msg)

    if pegasus.SAFE_NAME_REGEX.match(name) is None:
        msg = f"fragment name is not path-safe: {name!r}"
        raise pegasus.InvalidFragmentNameError(msg)

    return name


def validate_environment(environment: str) -> str:
    try:
        return validate_fragment_name(environment)
    except pegasus.InvalidFragmentNameError as exc:
        msg = f"environment label is not path-safe: {environment!r}"
        raise pegasus.InvalidFragmentNameError(msg) from exc


def fragment_path(name: str, environment: str, ext: str = pegasus.GENERATED_EXT) -> str:
    validate_fragment_name(name)
    validate_environment(environment)

    return f"{pegasus.RELEASES_DIR}/{environment}/{name}.generated.{ext}"


def new_nonce() -> str:
    return secrets.token_hex(NONCE_BYTES)


def branch_name(
    label: str | None = None,
    nonce: str | None = None,
    prefix: str = pegasus.DEFAULT_BRANCH_PREFIX,
) -> str:
    # the nonce is always mixed in; a timestamp alone collides on quick re-runs
    if label is None:
        label = str(timestamp_ms())

    if nonce is None:
        nonce = new_nonce()

    if not prefix or pegasus.SAFE_NAME_REGEX.match(prefix) is None:
        msg = f"branch prefix is not a valid ref component: {prefix!r}"
        raise ValueError(msg)

    digest = pegasus.junkdrawer.json_signature({"label": label, "nonce": nonce})

    return f"{prefix}-{digest[:BRANCH_HASH_LENGTH]}"


def commit_message(path: str) -> str:
    return f"Add new file to the repository: {path}"


def timestamp_ms(now: datetime.datetime | None = None) -> int:
    now = now or datetime.datetime.now(tz=datetime.UTC)

    return int(now.timestamp() * 1000)


def pull_request_title(now: datetime.datetime | None = None) -> str:
    return f"{pegasus.PULL_REQUEST_TITLE} - {timestamp_ms(now)}"
