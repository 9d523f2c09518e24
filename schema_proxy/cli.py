"""
Schema Proxy CLI
Starts the proxy; command-line options override the environment.
"""

import asyncio
import logging
import sys
from typing import Optional

import click

from .config import ConfigError, load_config
from .server import run_server
from .upstream import TRANSPORTS
from .version import __version__


@click.command('schema-proxy')
@click.option('--upstream-url', help='Upstream MCP endpoint (env: MCP_UPSTREAM_URL)')
@click.option('--transport', type=click.Choice(TRANSPORTS, case_sensitive=False),
              help='Upstream transport (env: MCP_UPSTREAM_TRANSPORT)')
@click.option('--host', help='Listen host (env: PROXY_HOST)')
@click.option('--port', type=int, help='Listen port (env: PROXY_PORT)')
@click.option('--verbose', is_flag=True, help='Debug logging')
@click.version_option(__version__, prog_name='schema-proxy')
def main(
    upstream_url: Optional[str],
    transport: Optional[str],
    host: Optional[str],
    port: Optional[int],
    verbose: bool,
):
    """Proxy an MCP server and repair its tool input schemas."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        config = load_config().with_overrides(
            upstream_url=upstream_url,
            upstream_transport=transport.lower() if transport else None,
            host=host,
            port=port,
        )
    except ConfigError as e:
        click.echo(f"Error: {e}", err=True)
        click.echo("Set it in your .env file or environment", err=True)
        sys.exit(1)

    asyncio.run(run_server(config, verbose=verbose))


if __name__ == '__main__':
    main()
