"""CLI entrypoint for the game asset server.

Usage:
    python -m main serve --root game --port 9696
    python -m main serve --mime .pck=application/octet-stream --sessions
    python -m main check --root game
    python -m main mime app.wasm report.symbols.json
"""
import argparse
import logging
import sys
import time

from config import GAME_MIME_OVERRIDES, ConfigurationError, ServerConfig, parse_mime_override
from mimetable import MimeTable
from server import AssetServer, BindError, ServerState


def mime_overrides(args) -> dict:
    overrides = dict(GAME_MIME_OVERRIDES)
    overrides.update(parse_mime_override(m) for m in args.mime or [])
    return overrides


def build_config(args) -> ServerConfig:
    # flags left unset fall back to ASSET_SERVER_* and then the defaults
    return ServerConfig.from_env(
        root=args.root,
        host=args.host,
        port=args.port,
        mime_overrides=mime_overrides(args),
        content_caching=False if args.no_cache else None,
        session_affinity=True if args.sessions else None,
    )


def cmd_serve(args):
    config = build_config(args)
    server = AssetServer(config)
    server.start()
    print(f"Serving {config.root} at {server.url} (Ctrl+C to stop)")
    try:
        while server.state is ServerState.LISTENING:
            time.sleep(0.2)
    except KeyboardInterrupt:
        print("\nShutting down...")
    finally:
        server.stop()


def cmd_check(args):
    config = build_config(args)
    root = config.validate_root()
    print(f"Root:     {root}")
    print(f"URL:      {config.url}")
    print(f"Caching:  {'on' if config.content_caching else 'off'}")
    print(f"Sessions: {'on' if config.session_affinity else 'off'}")
    print("MIME overrides:")
    for ext, ctype in sorted(config.mime_overrides.items()):
        print(f"  {ext} -> {ctype}")


def cmd_mime(args):
    table = MimeTable(mime_overrides(args))
    for name in args.files:
        print(f"{name}: {table.lookup(name)}")


def _add_server_args(p):
    p.add_argument("--root", help="Directory to serve (default: $ASSET_SERVER_ROOT or ./game)")
    p.add_argument("--host", help="Host to bind (default: $ASSET_SERVER_HOST or 127.0.0.1)")
    p.add_argument("--port", type=int, help="Port to bind (default: $ASSET_SERVER_PORT or 9696)")
    p.add_argument("--mime", action="append", metavar=".EXT=TYPE", help="Extra content type mapping (repeatable)")
    p.add_argument("--no-cache", action="store_true", help="Disable ETag / 304 handling")
    p.add_argument("--sessions", action="store_true", help="Enable session affinity cookie")


def make_parser():
    parser = argparse.ArgumentParser(prog="asset-server", description="Serve a game build directory over HTTP")
    parser.add_argument("--log-level", default="INFO", choices=["DEBUG", "INFO", "WARNING", "ERROR"], type=str.upper, help="Logging level (default: INFO)")
    sub = parser.add_subparsers(dest="cmd")

    p_serve = sub.add_parser("serve", help="Start the server and block until Ctrl+C")
    _add_server_args(p_serve)
    p_serve.set_defaults(func=cmd_serve)

    p_check = sub.add_parser("check", help="Validate the configuration")
    _add_server_args(p_check)
    p_check.set_defaults(func=cmd_check)

    p_mime = sub.add_parser("mime", help="Show the content type served for file names")
    p_mime.add_argument("files", nargs="+", help="File names to look up")
    p_mime.add_argument("--mime", action="append", metavar=".EXT=TYPE", help="Extra content type mapping (repeatable)")
    p_mime.set_defaults(func=cmd_mime)
    return parser


def main(argv=None):
    parser = make_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(level=args.log_level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    if not hasattr(args, "func"):
        parser.print_help()
        return 0
    try:
        args.func(args)
    except (ConfigurationError, BindError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
