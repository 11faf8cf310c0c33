"""boto3 session and client construction shared by every AWS wrapper."""

import boto3
from botocore.client import BaseClient
from botocore.config import Config

# Throttled calls are retried by botocore with bounded attempts.
RETRY_CONFIG = Config(retries={"mode": "standard", "max_attempts": 8})


def build_session(region: str | None = None, profile: str | None = None) -> boto3.session.Session:
    kwargs = {}
    if region:
        kwargs["region_name"] = region
    if profile:
        kwargs["profile_name"] = profile
    return boto3.session.Session(**kwargs)


def client(session: boto3.session.Session, service: str) -> BaseClient:
    return session.client(service, config=RETRY_CONFIG)
