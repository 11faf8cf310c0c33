"""Post drift reports to Slack via incoming webhook."""

import logging
import os
from urllib.parse import urlparse

import requests

from cfndrift.errors import ConfigError

logger = logging.getLogger(__name__)

WEBHOOK_ENV_VAR = "CFNDRIFT_SLACK_WEBHOOK"
ALLOWED_SLACK_HOSTS = {"hooks.slack.com", "hooks.slack-gov.com"}


def webhook_from_env() -> str:
    webhook_url = os.environ.get(WEBHOOK_ENV_VAR)
    if not webhook_url:
        raise ConfigError(f"{WEBHOOK_ENV_VAR} env var not set.")
    return webhook_url


def validate_webhook(webhook_url: str) -> None:
    parsed = urlparse(webhook_url)
    if parsed.scheme != "https":
        raise ConfigError("Slack webhook URL must use HTTPS")
    if parsed.hostname not in ALLOWED_SLACK_HOSTS:
        raise ConfigError(
            f"Invalid Slack webhook host {parsed.hostname!r}: "
            f"must be one of {sorted(ALLOWED_SLACK_HOSTS)}"
        )


def post_to_slack(report: str, webhook_url: str, timeout: int = 30) -> None:
    """Post a markdown drift report to a Slack incoming webhook."""
    validate_webhook(webhook_url)
    logger.info("Posting drift report to Slack")
    response = requests.post(
        webhook_url,
        json={"text": report, "mrkdwn": True},
        timeout=timeout,
    )
    response.raise_for_status()
