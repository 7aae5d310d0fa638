import argparse
import os


def main():
    from tsserver_mcp.server import mcp

    parser = argparse.ArgumentParser(description="tsserver_mcp server")
    parser.add_argument(
        "--transport",
        type=str,
        choices=["stdio", "sse", "http", "streamable-http", "streamable_http"],
        default="stdio",
        help=(
            "Transport method for the server. Accepts 'stdio', 'sse', 'http', "
            "or 'streamable-http' (with 'streamable_http' alias). Default is 'stdio'."
        ),
    )
    parser.add_argument(
        "--host",
        type=str,
        default="127.0.0.1",
        help="Host address for transport",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=8000,
        help="Host port for transport",
    )
    parser.add_argument(
        "--project",
        type=str,
        default=None,
        help="TypeScript project root (overrides TS_PROJECT_PATH)",
    )
    args = parser.parse_args()
    if args.project:
        os.environ["TS_PROJECT_PATH"] = args.project
    mcp.settings.host = args.host
    mcp.settings.port = args.port

    # Normalize transport aliases for FastMCP
    transport = args.transport
    if transport in {"http", "streamable_http"}:
        transport = "streamable-http"

    mcp.run(transport=transport)
