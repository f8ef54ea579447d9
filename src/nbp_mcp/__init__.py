"""NBP Exchange MCP server: Polish National Bank rates behind a token ledger."""

__version__ = "1.0.0"
