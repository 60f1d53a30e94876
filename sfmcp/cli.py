"""Command-line entry point.

Usage:
    sfmcp --stdio     Serve one client over stdin/stdout (default)
    sfmcp --http      Serve many clients over HTTP on /mcp
    sfmcp --help
    sfmcp --version
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import NoReturn

import yaml

from sfmcp import __version__
from sfmcp.framework.errors import MCPError, PortExhaustedError
from sfmcp.observability.logging import SEVERITY_TO_LOGGING, configure_logging
from sfmcp.server.config import load_config
from sfmcp.server.context import RouterContext
from sfmcp.server.transport import TransportMode, connect_transport
from sfmcp.tools import build_default_registry

logger = logging.getLogger(__name__)

PROG = "sfmcp"

EPILOG = """
Examples:
  sfmcp --stdio
  sfmcp --http
  sfmcp --http --config sfmcp_config.yml

Environment Variables:
  LOG_LEVEL              Client log notification floor (default: info)
  MCP_LOCAL_LOG_LEVEL    Local diagnostic floor (default: notice)
  MCP_HTTP_HOST          HTTP bind address (default: 127.0.0.1)
  MCP_HTTP_PORT          HTTP port for --http transport (default: 3000)
  MCP_LOG_PREFIX         Label shown in log prefixes
  MCP_LOG_FORMAT         Local diagnostic format: text | json
"""


class _ArgumentParser(argparse.ArgumentParser):
    """argparse with exit code 1 for usage errors."""

    def error(self, message: str) -> NoReturn:
        self.print_usage(sys.stderr)
        self.exit(1, f"❌ Error: {message}\n")


def build_parser() -> argparse.ArgumentParser:
    parser = _ArgumentParser(
        prog=PROG,
        description="IBM Salesforce MCP Server",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=EPILOG,
    )

    transport = parser.add_mutually_exclusive_group()
    transport.add_argument(
        "--stdio",
        dest="transport",
        action="store_const",
        const=TransportMode.STDIO.value,
        help="Use stdio transport (default)",
    )
    transport.add_argument(
        "--http",
        dest="transport",
        action="store_const",
        const=TransportMode.HTTP.value,
        help="Use HTTP transport",
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"IBM Salesforce MCP Server v{__version__}",
    )

    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to YAML configuration file (default: ./sfmcp_config.yml)",
    )

    parser.add_argument(
        "--log-level",
        type=str.lower,
        default="info",
        choices=list(SEVERITY_TO_LOGGING),
        help="Local diagnostic logging level (default: info)",
    )

    return parser


def _reject_transport(raw: str) -> int:
    if not raw.startswith("--"):
        print("❌ Error: Transport argument must start with --", file=sys.stderr)
        print(f"Usage: {PROG} --stdio | --http", file=sys.stderr)
    else:
        print(f"❌ Error: Invalid transport argument: {raw}", file=sys.stderr)
        print("Valid options: --stdio | --http", file=sys.stderr)
    print(f'Run "{PROG} --help" for more information', file=sys.stderr)
    return 1


def main(argv: list[str] | None = None) -> int:
    """Parse arguments, load configuration and serve until the transport stops.

    Returns:
        Process exit code (0 on clean shutdown, 1 on usage or startup errors)
    """
    parser = build_parser()
    args, extra = parser.parse_known_args(argv)
    if extra:
        return _reject_transport(extra[0])

    try:
        config = load_config(args.config)
    except (OSError, ValueError, yaml.YAMLError) as e:
        print(f"❌ Error: Invalid configuration: {e}", file=sys.stderr)
        return 1

    configure_logging(args.log_level, config.server.log_format)

    mode = TransportMode.parse(args.transport or TransportMode.STDIO.value)
    context = RouterContext(config, build_default_registry(), mode)

    try:
        asyncio.run(connect_transport(context))
    except KeyboardInterrupt:
        logger.info("Server stopped by user")
        return 0
    except PortExhaustedError as e:
        logger.error("Failed to start HTTP server: %s", e.message)
        return 1
    except MCPError as e:
        logger.error("Error starting IBM MCP Salesforce server: %s", e.message)
        return 1
    except Exception as e:
        logger.exception("Error starting IBM MCP Salesforce server: %s", e)
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
