"""JSON-RPC 2.0 dispatch for the MCP endpoint."""
