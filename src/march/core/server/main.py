"""Entry point for the M.A.R.C.H. phase server (``march-server``).

Startup runs in a fixed order: logging, the bind-address check, the phase
engine config, then the app. An unsafe bind or a bad config file stops the
process before anything listens.
"""

from __future__ import annotations

import logging
from ipaddress import ip_address

from march.core.config.settings import Settings, get_settings
from march.core.server.app import create_app
from march.domains.phase.domain_logic.march_config import MarchConfig, load_march_config

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

logger = logging.getLogger(__name__)


def is_loopback_host(host: str) -> bool:
    if host.strip().lower() == "localhost":
        return True
    try:
        return ip_address(host.strip()).is_loopback
    except ValueError:
        return False


def check_bind(settings: Settings) -> None:
    """Refuse a non-loopback bind unless MARCH_ALLOW_INSECURE_BIND is set.

    Raises:
        RuntimeError: The host is reachable from other machines and the
            override is not set.
    """
    if is_loopback_host(settings.march_host):
        return
    if not settings.march_allow_insecure_bind:
        raise RuntimeError(
            f"Refusing to bind the phase server to {settings.march_host}: client health data "
            "would be reachable without authentication. "
            "Set MARCH_ALLOW_INSECURE_BIND=true to override (unsafe)."
        )
    logger.warning(
        "Binding to non-loopback host %s with no auth layer in front of the tools",
        settings.march_host,
    )


def describe_startup(settings: Settings, config: MarchConfig) -> dict[str, object]:
    """What the server is about to run with. Never includes key material."""
    return {
        "address": f"{settings.march_host}:{settings.march_port}",
        "config": settings.march_config_path or "defaults",
        "storage": settings.db_path if settings.encryption_key else "in-memory",
        "history_limit": settings.history_default_limit,
        "low_data_days": config.confidence.low_data_threshold,
    }


def run() -> None:
    """Start the phase server with Streamable HTTP transport."""
    settings = get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.march_log_level.upper(), logging.INFO),
        format=LOG_FORMAT,
    )

    check_bind(settings)
    config = load_march_config(settings.march_config_path or None)

    summary = describe_startup(settings, config)
    logger.info(
        "Starting M.A.R.C.H. phase server (%s)",
        ", ".join(f"{key}={value}" for key, value in summary.items()),
    )

    mcp = create_app(config_override=config)
    mcp.run(
        transport="streamable-http",
        host=settings.march_host,
        port=settings.march_port,
    )


if __name__ == "__main__":
    run()
