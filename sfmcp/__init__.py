"""
sfmcp: Salesforce MCP Server

Exposes Salesforce tools to AI-agent clients over the Model Context Protocol,
either on a single stdio stream or on a session-multiplexed HTTP endpoint.

Public API modules:
- sfmcp.server: Transport routing, sessions, capability negotiation, logging gate
- sfmcp.tools: Tool registry and per-request execution context
- sfmcp.framework.errors: Error taxonomy shared by all layers
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("salesforce-mcp-server")
except PackageNotFoundError:
    # Development checkout, not installed via pip
    __version__ = "0.1.0"

__all__ = ["__version__"]
