import asyncio
import json
import sys
from pathlib import Path
from typing import Any, List, Optional

import click
import yaml
from loguru import logger

from webhook_dispatch.admin.server import run_server
from webhook_dispatch.common.config import ServiceConfig
from webhook_dispatch.common.log import configure_logging
from webhook_dispatch.common.models import DeliveryOutcome, WebhookEvent
from webhook_dispatch.dispatcher.dispatcher import create_dispatcher


def load_config_from_file(config_path: str) -> ServiceConfig:
    """Load configuration from a YAML file."""
    file_path = Path(config_path)
    if not file_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(file_path, "r") as f:
        config_data = yaml.safe_load(f) or {}

    return ServiceConfig.model_validate(config_data)


def setup_app(config: ServiceConfig) -> None:
    """Configure logging and check the configuration before starting anything."""
    configure_logging(config.log_level)
    config.validate_registry_config()
    logger.info("Webhook Dispatch initialized")


async def send_event(
    config: ServiceConfig, tenant_id: str, event: WebhookEvent, data: Any
) -> List[DeliveryOutcome]:
    """Dispatch one event and wait for every delivery to finish."""
    dispatcher = create_dispatcher(config)
    try:
        return await dispatcher.run_dispatch(tenant_id, event, data)
    finally:
        await dispatcher.close()


@click.group()
def cli():
    """Webhook Dispatch CLI"""
    pass


@cli.command("serve")
@click.option(
    "--config",
    "-c",
    required=True,
    help="Path to configuration file",
)
def serve(config: str):
    """Start the admin API and dispatcher."""
    try:
        config_obj = load_config_from_file(config)
        setup_app(config_obj)
        run_server(config_obj)
    except Exception as e:
        logger.error(f"Failed to start webhook dispatch: {e}")
        sys.exit(1)


@cli.command("send-event")
@click.option(
    "--config",
    "-c",
    required=True,
    help="Path to configuration file",
)
@click.option("--tenant", "tenant_id", required=True, help="Tenant (organization) ID")
@click.option(
    "--event",
    required=True,
    type=click.Choice([event.value for event in WebhookEvent]),
    help="Event name",
)
@click.option("--data", default=None, help="Event payload as JSON")
def send_event_command(config: str, tenant_id: str, event: str, data: Optional[str]):
    """Dispatch a single event and report each delivery outcome."""
    try:
        config_obj = load_config_from_file(config)
        setup_app(config_obj)
        payload = json.loads(data) if data else {}
    except Exception as e:
        logger.error(f"Failed to send event: {e}")
        sys.exit(1)

    outcomes = asyncio.run(send_event(config_obj, tenant_id, WebhookEvent(event), payload))
    if not outcomes:
        click.echo("No endpoints subscribed to this event")
    for outcome in outcomes:
        status = "ok" if outcome.success else "failed"
        detail = outcome.status_code if outcome.status_code is not None else outcome.error
        click.echo(f"{outcome.endpoint_id} {outcome.delivery_id} {status} ({detail})")


if __name__ == "__main__":
    cli()
