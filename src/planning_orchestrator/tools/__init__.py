"""MCP tool registration."""

from mcp.server.fastmcp import FastMCP

from ..config import Config
from .planning import register_planning_tools


def register_all_tools(mcp: FastMCP, config: Config) -> None:
	"""Register all MCP tools."""
	register_planning_tools(mcp, config)
