#!/usr/bin/env python3
"""github-lean-mcp MCP Server entry point.

Run:
  python -m github_lean_mcp                # start server (stdio)
  python -m github_lean_mcp --test         # list tools/resources then exit
"""

import argparse
import asyncio
import sys

from github_lean_mcp.server import run_server, test_server


def parse_args(argv: list[str]) -> argparse.Namespace:
    """Parse CLI arguments."""
    parser = argparse.ArgumentParser(prog="github-lean-mcp", add_help=True)
    parser.add_argument(
        "--test",
        action="store_true",
        help="Build the tool & resource listings without connecting to GitHub, then exit.",
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> None:
    """CLI dispatcher for the MCP server."""
    args = parse_args(sys.argv[1:] if argv is None else argv)
    try:
        if args.test:
            asyncio.run(test_server())
        else:
            asyncio.run(run_server())
    except KeyboardInterrupt:
        print("\nServer stopped by user", file=sys.stderr)
    except Exception as exc:  # pylint: disable=broad-exception-caught
        print(f"Server error: {type(exc).__name__}", file=sys.stderr)
        raise


if __name__ == "__main__":
    main()
