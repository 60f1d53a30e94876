"""Configuration management with validation.

This module provides centralized configuration for the MCP server with:
- YAML file support (sfmcp_config.yml)
- Environment variable overrides
- Validation in frozen dataclasses
- Type-safe configuration classes

Configuration precedence (highest to lowest):
1. Environment variables
2. YAML config file
3. Default values

Example sfmcp_config.yml:
    server:
      http_host: "127.0.0.1"
      http_port: 3000
      log_level: "info"
      local_log_level: "notice"

    server_info:
      name: "IBM Salesforce MCP Server"
      protocol_version: "2025-06-18"

Usage:
    config = load_config()
    port = config.server.http_port
"""

import logging
import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

import yaml

from sfmcp import __version__

logger = logging.getLogger(__name__)

# Syslog-style severities, lower value = more severe
LOG_LEVEL_PRIORITIES: dict[str, int] = {
    "emergency": 0,
    "alert": 1,
    "critical": 2,
    "error": 3,
    "warning": 4,
    "notice": 5,
    "info": 6,
    "debug": 7,
}

DEFAULT_CONFIG_FILE = "sfmcp_config.yml"

DEFAULT_INSTRUCTIONS = """
# Agent instructions
- Always answer in the user's language.
- Always follow the tool instructions, especially those marked IMPORTANT.
- Use the provided tools instead of the Salesforce CLI unless told otherwise.
- Show lists as Markdown tables.
- Get API names with describeObject. Never invent them.
- Current date/time: use salesforceMcpUtils (getCurrentDatetime).
""".strip()


def _validate_level(name: str, value: str) -> None:
    if value not in LOG_LEVEL_PRIORITIES:
        msg = f"{name} must be one of {list(LOG_LEVEL_PRIORITIES)}, got '{value}'"
        raise ValueError(msg)


@dataclass(frozen=True)
class ServerConfig:
    """Transport and logging configuration.

    Attributes:
        http_host: HTTP server bind address
        http_port: Requested HTTP port (falls back upward on conflict)
        port_max_attempts: Number of consecutive ports tried at startup
        log_level: Default floor for log notifications sent to clients
        local_log_level: Floor for local diagnostic output when the client
            cannot receive log notifications
        log_prefix: Optional label shown in front of every log line
        log_format: Local diagnostic format ("text" | "json")
        stdio_settle_seconds: Delay before the stdio channel is declared ready
        outbox_size: Maximum log notifications in flight per session
    """

    http_host: str = "127.0.0.1"
    http_port: int = 3000
    port_max_attempts: int = 10
    log_level: str = "info"
    local_log_level: str = "notice"
    log_prefix: str = ""
    log_format: str = "text"
    stdio_settle_seconds: float = 0.4
    outbox_size: int = 1000

    def __post_init__(self) -> None:
        """Validate configuration."""
        # Normalize case (use object.__setattr__ for frozen dataclass)
        object.__setattr__(self, "log_level", self.log_level.lower())
        object.__setattr__(self, "local_log_level", self.local_log_level.lower())
        _validate_level("log_level", self.log_level)
        _validate_level("local_log_level", self.local_log_level)

        # YAML may hand over the port as a string
        if isinstance(self.http_port, bool) or not isinstance(self.http_port, int):
            try:
                object.__setattr__(self, "http_port", int(str(self.http_port).strip()))
            except ValueError as e:
                msg = f"http_port must be an integer, got {self.http_port!r}"
                raise ValueError(msg) from e

        if not (1 <= self.http_port <= 65535):
            msg = f"http_port must be 1-65535, got {self.http_port}"
            raise ValueError(msg)

        if self.port_max_attempts < 1:
            msg = f"port_max_attempts must be >= 1, got {self.port_max_attempts}"
            raise ValueError(msg)

        if self.log_format not in ["text", "json"]:
            msg = f"log_format must be 'text' or 'json', got '{self.log_format}'"
            raise ValueError(msg)

        if self.stdio_settle_seconds < 0:
            msg = f"stdio_settle_seconds must be >= 0, got {self.stdio_settle_seconds}"
            raise ValueError(msg)

        if self.outbox_size < 1:
            msg = f"outbox_size must be >= 1, got {self.outbox_size}"
            raise ValueError(msg)


@dataclass(frozen=True)
class ServerInfoConfig:
    """Identity announced to clients during initialization.

    Attributes:
        name: Server display name
        alias: Short server alias
        version: Server version
        protocol_version: Preferred MCP protocol version
        instructions: Agent instructions returned by initialize
    """

    name: str = "IBM Salesforce MCP Server"
    alias: str = "ibm-sf-mcp"
    version: str = __version__
    protocol_version: str = "2025-06-18"
    instructions: str = DEFAULT_INSTRUCTIONS


@dataclass
class Config:
    """Root configuration object.

    Attributes:
        server: Transport and logging configuration
        server_info: Server identity
        config_path: Path of the YAML file the values came from, if any
    """

    server: ServerConfig = field(default_factory=ServerConfig)
    server_info: ServerInfoConfig = field(default_factory=ServerInfoConfig)
    config_path: Path | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert configuration to dictionary."""
        return {
            "server": self.server.__dict__.copy(),
            "server_info": self.server_info.__dict__.copy(),
        }


def _from_section(cls: type, current: Any, section: dict[str, Any]) -> Any:
    unknown = set(section) - set(current.__dict__)
    if unknown:
        logger.warning("Ignoring unknown %s keys: %s", cls.__name__, sorted(unknown))
    known = {k: v for k, v in section.items() if k in current.__dict__}
    try:
        return cls(**{**current.__dict__, **known})
    except (TypeError, AttributeError) as e:
        msg = f"Invalid {cls.__name__} value: {e}"
        raise ValueError(msg) from e


def load_config(config_path: Path | None = None) -> Config:
    """Load configuration from YAML file and environment variables.

    Precedence (highest to lowest):
    1. Environment variables
    2. YAML config file
    3. Default values

    Args:
        config_path: Optional path to config YAML file (default: ./sfmcp_config.yml)

    Returns:
        Config object

    Raises:
        ValueError: If a value fails validation

    Environment variables:
        MCP_HTTP_HOST: HTTP server host
        MCP_HTTP_PORT: HTTP server port
        LOG_LEVEL: Client notification floor
        MCP_LOCAL_LOG_LEVEL: Local diagnostic floor
        MCP_LOG_PREFIX: Log line prefix
        MCP_LOG_FORMAT: Local diagnostic format (text/json)
    """
    config = Config()

    if config_path is None:
        config_path = Path(DEFAULT_CONFIG_FILE)

    if config_path.exists():
        logger.info("Loading configuration from %s", config_path)
        with open(config_path) as f:
            yaml_config = yaml.safe_load(f) or {}

        if "server" in yaml_config:
            config.server = _from_section(ServerConfig, config.server, yaml_config["server"])

        if "server_info" in yaml_config:
            config.server_info = _from_section(
                ServerInfoConfig, config.server_info, yaml_config["server_info"]
            )

        config.config_path = config_path
    else:
        logger.debug("No config file at %s, using defaults", config_path)

    # Environment overrides (highest precedence)
    overrides: dict[str, Any] = {}

    if os.getenv("MCP_HTTP_HOST"):
        overrides["http_host"] = os.getenv("MCP_HTTP_HOST")

    raw_port = os.getenv("MCP_HTTP_PORT")
    if raw_port:
        try:
            overrides["http_port"] = int(raw_port)
        except ValueError:
            logger.warning(
                "Ignoring non-numeric MCP_HTTP_PORT %r, using port %s",
                raw_port,
                config.server.http_port,
            )

    if os.getenv("LOG_LEVEL"):
        overrides["log_level"] = os.getenv("LOG_LEVEL")

    if os.getenv("MCP_LOCAL_LOG_LEVEL"):
        overrides["local_log_level"] = os.getenv("MCP_LOCAL_LOG_LEVEL")

    if os.getenv("MCP_LOG_PREFIX"):
        overrides["log_prefix"] = os.getenv("MCP_LOG_PREFIX")

    if os.getenv("MCP_LOG_FORMAT"):
        overrides["log_format"] = os.getenv("MCP_LOG_FORMAT")

    if overrides:
        try:
            config.server = replace(config.server, **overrides)
        except ValueError as e:
            logger.exception("Configuration validation failed: %s", e)
            raise

    return config


__all__ = [
    "LOG_LEVEL_PRIORITIES",
    "Config",
    "ServerConfig",
    "ServerInfoConfig",
    "load_config",
]
