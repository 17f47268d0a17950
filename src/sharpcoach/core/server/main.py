"""SharpCoach server entry point: ``python -m sharpcoach.core.server.main``."""

from __future__ import annotations

import logging
from ipaddress import ip_address

from sharpcoach.core.config.settings import get_settings
from sharpcoach.core.server.app import create_app


def _is_loopback_host(host: str) -> bool:
    if host == "localhost":
        return True
    try:
        return ip_address(host).is_loopback
    except ValueError:
        return False


def run() -> None:
    """Start the SharpCoach MCP server with Streamable HTTP transport."""
    settings = get_settings()
    logging.basicConfig(level=getattr(logging, settings.sharpcoach_log_level.upper(), logging.INFO))

    logger = logging.getLogger(__name__)
    if not settings.sharpcoach_allow_insecure_bind and not _is_loopback_host(settings.sharpcoach_host):
        raise RuntimeError(
            "Refusing to bind SharpCoach to a non-loopback host without an auth layer. "
            "Set SHARPCOACH_ALLOW_INSECURE_BIND=true to override (unsafe)."
        )
    logger.info("Starting SharpCoach server on %s:%d", settings.sharpcoach_host, settings.sharpcoach_port)

    mcp = create_app()
    mcp.run(
        transport="streamable-http",
        host=settings.sharpcoach_host,
        port=settings.sharpcoach_port,
    )


if __name__ == "__main__":
    run()
