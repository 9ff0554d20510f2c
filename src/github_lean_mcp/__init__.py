"""GitHub Lean MCP Server.

Exposes GitHub's REST and GraphQL APIs as a small, uniform tool surface with
normalized pagination, rate-limit and error envelopes.
"""

__version__ = "0.1.0"

# Conditional import to allow testing without MCP
try:
    from .server import run_server, test_server
    __all__ = ["run_server", "test_server"]
except ImportError:
    # MCP not available, skip server imports for testing
    __all__ = []
