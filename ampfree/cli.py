"""CLI interface for ampfree."""

import asyncio
import logging
import sys
from typing import NoReturn

import click
from rich.console import Console
from rich.markup import escape

from ampfree.config import (
    DEBUG_MODE,
    DEFAULT_CONFIG_PATH,
    DEFAULT_LISTEN_HOST,
    DEFAULT_PROXY_PORT,
    DEFAULT_UPSTREAM,
    LOG_FORMAT,
)
from ampfree.proxy import ensure_port_available, start_mitmproxy
from ampfree.settings import ConfigError, ProxySettings, load_settings

console = Console()
err_console = Console(stderr=True)

logger = logging.getLogger(__name__)


def _log_settings(settings: ProxySettings) -> None:
    """Log the effective settings once at startup."""
    for mapping in settings.model_mappings:
        logger.info("Model mapping: %s -> %s", mapping.source, mapping.target)
    logger.info("Free search enabled: %s", settings.enable_free_search)
    logger.info("Model mapping enabled: %s", settings.enable_model_mapping)
    if settings.enable_model_mapping and settings.model_mappings:
        logger.info("Loaded %d model mapping(s)", len(settings.model_mappings))


def _fail(message: str) -> NoReturn:
    logger.error(message)
    err_console.print(f"[red]{escape(message)}[/red]")
    sys.exit(1)


@click.command(context_settings={"help_option_names": ["-h", "-help", "--help"]})
@click.option("-port", "--port", "port", type=int, default=DEFAULT_PROXY_PORT, show_default=True,
              help="Port to listen on (a nonzero port in the config file wins)")
@click.option("-upstream", "--upstream", "upstream", default=DEFAULT_UPSTREAM, show_default=True,
              help="Upstream URL (an upstream in the config file wins)")
@click.option("-config", "--config", "config_path", default=DEFAULT_CONFIG_PATH, show_default=True,
              help="Path to config file (YAML)")
@click.option("-host", "--host", "host", default=DEFAULT_LISTEN_HOST, show_default=True,
              help="Address to listen on")
@click.option("-debug", "--debug", "debug", is_flag=True, default=DEBUG_MODE,
              help="Verbose logging (also AMPFREE_DEBUG=true)")
def main(port: int, upstream: str, config_path: str, host: str, debug: bool):
    """ampfree - rewriting reverse proxy for the Amp API.

    Forwards everything to the upstream, flipping web search and page
    extraction calls to the free tier and redirecting mapped models.

        ampfree                      # listen on 8318, read ./config.yaml
        ampfree -port 9000 -config ~/ampfree.yaml
    """
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format=LOG_FORMAT,
    )

    try:
        settings = load_settings(config_path, port=port, upstream=upstream)
    except ConfigError as e:
        _fail(f"Failed to load config: {e}")

    try:
        ensure_port_available(host, settings.port)
    except OSError as e:
        _fail(f"Cannot listen on {host}:{settings.port}: {e}")

    _log_settings(settings)

    console.print(f"[green]ampfree listening on {host}:{settings.port}, forwarding to {settings.upstream}[/green]")
    console.print(f"[dim]Configure upstream to: http://127.0.0.1:{settings.port}[/dim]")

    try:
        asyncio.run(start_mitmproxy(settings, host=host))
    except KeyboardInterrupt:
        pass
    except OSError as e:
        _fail(f"Server error: {e}")


if __name__ == "__main__":
    main()
