#!/usr/bin/env python3
"""
Personal Storage Server -- command-line entry point.

Usage:
  python main.py serve
  python main.py serve --host 0.0.0.0 --port 8080
  python main.py add-admin alice1:Secret123

Configuration comes from environment variables or a .env file (see
core/config.py). At minimum set SECRET_KEY (32+ chars), or DEBUG=true for a
throwaway development key.
"""

import argparse
import sys

from core.config import get_settings
from core.errors import ConflictError


def _add_admin(credentials: str) -> int:
    """Create an admin account so the first login is possible."""
    from auth.models import User
    from auth.store import UserStore
    from auth.tokens import hash_password

    username, sep, password = credentials.partition(":")
    if not sep or not username or not password:
        print("  [!] Expected credentials as <username>:<password>")
        return 2

    store = UserStore(get_settings().database_url)
    try:
        store.create_user(User(username=username, hashed_password=hash_password(password), admin=True))
    except ConflictError as exc:
        print(f"  [!] {exc.message}")
        return 1
    finally:
        store.close()
    print(f"  Admin '{username}' created.")
    return 0


def _serve(host: str | None, port: int | None) -> int:
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "api.main:app",
        host=host or settings.host,
        port=port or settings.port,
        log_level="info" if settings.verbose_logs else "warning",
    )
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="pss",
        description="Personal Storage Server",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Run the HTTP server")
    serve.add_argument("--host", help="Bind address (default: HOST setting)")
    serve.add_argument("--port", type=int, help="Bind port (default: PORT setting)")

    add_admin = sub.add_parser("add-admin", help="Create an admin account")
    add_admin.add_argument("credentials", metavar="USERNAME:PASSWORD")

    args = parser.parse_args()

    if args.command == "serve":
        sys.exit(_serve(args.host, args.port))
    sys.exit(_add_admin(args.credentials))


if __name__ == "__main__":
    main()
