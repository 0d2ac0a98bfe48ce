"""Main entry point for threadwise."""

from threadwise.cli import app


def main() -> None:
    """Run the threadwise CLI (serves the MCP server by default)."""
    app()


if __name__ == "__main__":
    main()
