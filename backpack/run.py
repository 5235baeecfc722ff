#!/usr/bin/env python3
"""
Backpack CLI Runner
Serve the gateway or manage credentials from the command line, output JSON

Usage:
    backpack serve --port 8787
    backpack init-db
    backpack create-user --email user@example.com --password secret123
    backpack issue-token --client-id ... --client-secret ...
"""
import argparse
import json
import os
import sys

from backpack.core.auth import (
    create_oauth_token,
    create_user,
    get_user_by_email,
    verify_oauth_client_credentials,
)
from backpack.core.config import Settings, configure_logging
from backpack.core.store import StoreError, open_store


def serve(settings: Settings, args) -> int:
    import uvicorn

    uvicorn.run(
        "backpack.gateway.mcp.http_server:create_app",
        factory=True,
        host=args.host or settings.host,
        port=args.port or settings.port,
        log_level=settings.log_level.lower(),
    )
    return 0


def init_db(settings: Settings, args) -> int:
    store = open_store(settings.database_url)
    store.close()
    print(json.dumps({"database": store.name, "initialized": True}, indent=2))
    return 0


def _require_database(settings: Settings, command: str) -> bool:
    if settings.database_url:
        return True
    print(f"Error: {command} needs DATABASE_URL; the in-memory store does not outlive this process", file=sys.stderr)
    return False


def add_user(settings: Settings, args) -> int:
    if not _require_database(settings, "create-user"):
        return 1

    if len(args.password) < settings.min_password_length:
        print(f"Error: password must be at least {settings.min_password_length} characters", file=sys.stderr)
        return 1

    store = open_store(settings.database_url)
    try:
        if get_user_by_email(store, args.email):
            print(f"Error: user {args.email} already exists", file=sys.stderr)
            return 1
        user = create_user(store, args.email, args.password)
    finally:
        store.close()

    if user is None:
        print("Error: failed to create user", file=sys.stderr)
        return 1

    print(json.dumps(user.to_dict(), indent=2))
    return 0


def issue_token(settings: Settings, args) -> int:
    if not _require_database(settings, "issue-token"):
        return 1

    store = open_store(settings.database_url)
    try:
        user = verify_oauth_client_credentials(store, args.client_id, args.client_secret)
        if user is None:
            print("Error: invalid client credentials", file=sys.stderr)
            return 1
        token = create_oauth_token(store, user.id, ttl=settings.oauth_token_ttl)
    finally:
        store.close()

    if token is None:
        print("Error: failed to issue token", file=sys.stderr)
        return 1

    print(json.dumps({**token, "token_type": "Bearer"}, indent=2))
    return 0


COMMANDS = {
    "serve": serve,
    "init-db": init_db,
    "create-user": add_user,
    "issue-token": issue_token,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Backpack - personal MCP server for AI assistants",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__
    )
    parser.add_argument("--config", "-c", help="YAML settings file (overrides BACKPACK_CONFIG)")

    subparsers = parser.add_subparsers(dest="command", required=True)

    serve_parser = subparsers.add_parser("serve", help="Run the HTTP server")
    serve_parser.add_argument("--host", help="Bind address")
    serve_parser.add_argument("--port", type=int, help="Bind port")

    subparsers.add_parser("init-db", help="Create database tables")

    user_parser = subparsers.add_parser("create-user", help="Create a user and print its credentials")
    user_parser.add_argument("--email", required=True)
    user_parser.add_argument("--password", required=True)

    token_parser = subparsers.add_parser("issue-token", help="Issue an OAuth access token")
    token_parser.add_argument("--client-id", required=True)
    token_parser.add_argument("--client-secret", required=True)

    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    if args.config:
        # create_app() reloads settings in the uvicorn factory
        os.environ["BACKPACK_CONFIG"] = args.config

    settings = Settings.load(args.config)
    configure_logging(settings.log_level)

    try:
        return COMMANDS[args.command](settings, args)
    except StoreError as e:
        print(f"Error ({e.kind.value}): {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("\nInterrupted")
        return 130


if __name__ == "__main__":
    sys.exit(main())
