"""MCP server exposing settlement tools."""
