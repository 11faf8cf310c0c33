"""CLI entrypoint for cfndrift."""

import logging
import sys

import click
import requests
from botocore.exceptions import BotoCoreError, ClientError
from rich.console import Console
from rich.logging import RichHandler

from cfndrift.aws.client import CloudFormationClient
from cfndrift.aws.ec2 import Ec2Client
from cfndrift.aws.resources import ResourceLister
from cfndrift.aws.session import build_session
from cfndrift.config import DriftConfig, load_settings
from cfndrift.detector import DriftOrchestrator
from cfndrift.errors import DriftError
from cfndrift.formatter import FORMATTERS, format_markdown
from cfndrift.integrations.slack import post_to_slack, validate_webhook, webhook_from_env

logger = logging.getLogger(__name__)


def _configure_logging(debug: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )
    # botocore is chatty at DEBUG.
    for name in ("botocore", "boto3", "urllib3"):
        logging.getLogger(name).setLevel(logging.WARNING)


def _split(value: str | None) -> list[str]:
    if not value:
        return []
    return [v.strip() for v in value.split(",") if v.strip()]


@click.command()
@click.option("--stack", required=True, help="Stack name to check.")
@click.option("--results-only", is_flag=True, help="Use the last detection results without re-running detection.")
@click.option("--separate-properties", is_flag=True, help="Emit one row per drifted property or rule.")
@click.option("--verbose", is_flag=True, help="Include customer-managed prefix list routes.")
@click.option("--ignore-tags", default=None, help="Comma-separated tag ignore rules.")
@click.option("--config", "config_path", default=None, help="Path to a cfndrift YAML config file.")
@click.option(
    "--format",
    "output_format",
    type=click.Choice(sorted(FORMATTERS)),
    default="table",
    help="Output format.",
)
@click.option("--region", default=None, help="AWS region.")
@click.option("--profile", default=None, help="AWS named profile.")
@click.option(
    "--max-concurrent",
    type=click.IntRange(1, 50),
    default=1,
    help="Max resources reconciled concurrently.",
)
@click.option("--timeout", type=float, default=None, help="Overall run timeout in seconds.")
@click.option("--post-slack", is_flag=True, help="Post report to Slack webhook.")
@click.option("--debug", is_flag=True, help="Enable debug logging on stderr.")
def main(
    stack,
    results_only,
    separate_properties,
    verbose,
    ignore_tags,
    config_path,
    output_format,
    region,
    profile,
    max_concurrent,
    timeout,
    post_slack,
    debug,
):
    """Detect CloudFormation stack drift, including NACL entries and routes."""
    _configure_logging(debug)

    try:
        config = DriftConfig.from_settings(
            load_settings(config_path),
            extra_ignore_tags=_split(ignore_tags),
            separate_properties=separate_properties,
            results_only=results_only,
            verbose=verbose,
        )
        webhook_url = None
        if post_slack:
            webhook_url = webhook_from_env()
            validate_webhook(webhook_url)

        session = build_session(region, profile)
        orchestrator = DriftOrchestrator(
            CloudFormationClient(session=session),
            Ec2Client(session=session),
            ResourceLister(session=session),
            config,
            max_concurrent=max_concurrent,
            timeout=timeout,
        )
        report = orchestrator.run(stack)
    except (DriftError, ClientError, BotoCoreError) as exc:
        logger.debug("Drift run failed", exc_info=True)
        click.echo(f"Error: {exc}", err=True)
        sys.exit(2)

    click.echo(FORMATTERS[output_format](report))

    if webhook_url:
        try:
            post_to_slack(report=format_markdown(report), webhook_url=webhook_url)
        except requests.RequestException as exc:
            click.echo(f"Error: {exc}", err=True)
            sys.exit(2)

    sys.exit(1 if report.has_drift else 0)
