"""MCP server exposing the Metabase REST API as agent tools."""

__version__ = "1.0.0"
