"""MCP trigger layer: FastMCP server, sync tools and the JSONL audit trail."""
