"""Admin API and CLI for the webhook dispatch service."""

from webhook_dispatch.admin.app import (
    cli,
    load_config_from_file,
    send_event,
    setup_app,
)
from webhook_dispatch.admin.server import create_app, run_server

__all__ = [
    "load_config_from_file",
    "send_event",
    "setup_app",
    "cli",
    "create_app",
    "run_server",
]
