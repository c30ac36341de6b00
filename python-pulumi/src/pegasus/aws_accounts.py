from __future__ import annotations

import os
import typing

import boto3


class AWSCallerIdentity(typing.TypedDict):
    UserId: str
    Account: str
    Arn: str


def aws_whoami(exe_env: dict[str, str] | None = None) -> tuple[AWSCallerIdentity, bool]:
    session = boto3.Session(
        aws_access_key_id=exe_env.get("AWS_ACCESS_KEY_ID") if exe_env else None,
        aws_secret_access_key=exe_env.get("AWS_SECRET_ACCESS_KEY") if exe_env else None,
        aws_session_token=exe_env.get("AWS_SESSION_TOKEN") if exe_env else None,
    )
    sts_client = session.client("sts")

    try:
        response = sts_client.get_caller_identity()
    except Exception:  # noqa: BLE001
        return typing.cast(AWSCallerIdentity, {}), False
    else:
        return response, True


def aws_current_account_id(exe_env: dict[str, str] | None = None) -> str:
    """Get the AWS account id the generated values should reference.

    PEGASUS_AWS_ACCOUNT_ID wins when set. Otherwise STS GetCallerIdentity is
    asked with the ambient credentials; an empty string means neither worked.
    """
    env = exe_env or os.environ.copy()

    account_id = env.get("PEGASUS_AWS_ACCOUNT_ID", "").strip()
    if account_id != "":
        return account_id

    awh, ok = aws_whoami(exe_env=exe_env)
    if ok:
        return awh["Account"]

    return ""
