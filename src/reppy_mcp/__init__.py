"""Read-only MCP server over the Reppy database."""
