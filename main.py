"""Command-line interface for the portal API service."""

from __future__ import annotations
import argparse
import logging
import sys
from datetime import timedelta
from getpass import getpass
from typing import Sequence

import httpx

from portal.config import load_settings
from portal.database import Database, current_timestamp, resolve_database_path
from portal.factory import Services, build_services

logger = logging.getLogger("portal.main")

_DEFAULT_SERVICE_URL = "http://localhost:8000"
_MIN_PASSWORD_LENGTH = 8

KNOWN_COMMANDS = {
    "serve",
    "init-db",
    "create-user",
    "create-api-key",
    "list-api-keys",
    "revoke-api-key",
    "check-expired-trials",
    "prune-tokens",
    "health",
}


def _parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Portal API utilities")
    subparsers = parser.add_subparsers(dest="command")

    parser.set_defaults(command="serve")

    serve_parser = subparsers.add_parser("serve", help="Start the HTTP API")
    serve_parser.add_argument("--host", default="0.0.0.0", help="Bind address for the API")
    serve_parser.add_argument("--port", type=int, default=8000, help="Port for the API (default: 8000)")
    serve_parser.add_argument("--ssl-certfile", default=None, help="Path to the TLS certificate chain in PEM format")
    serve_parser.add_argument("--ssl-keyfile", default=None, help="Path to the TLS private key in PEM format")
    serve_parser.add_argument(
        "--ssl-keyfile-password",
        default=None,
        help="Password for the TLS private key, if encrypted",
    )

    init_parser = subparsers.add_parser("init-db", help="Initialise the portal database")
    init_parser.add_argument(
        "--seed-api-keys",
        action="store_true",
        help="Insert the development API keys when no key exists yet",
    )

    user_parser = subparsers.add_parser("create-user", help="Create a user account")
    user_parser.add_argument("name", help="Display name for the user")
    user_parser.add_argument("email", help="Unique email address for login")
    user_parser.add_argument(
        "--role",
        action="append",
        dest="roles",
        default=None,
        help="Role to assign (repeatable, default: free)",
    )

    key_parser = subparsers.add_parser("create-api-key", help="Create a client API key")
    key_parser.add_argument("name", help="Friendly name for the API key")
    key_parser.add_argument("--service", required=True, help="Service the key is issued for (e.g. web-frontend)")
    key_parser.add_argument(
        "--environment",
        default="production",
        help="Environment the key is issued for (default: production)",
    )
    key_parser.add_argument("--description", default=None, help="Optional description")
    key_parser.add_argument("--expires-days", type=int, default=None, help="Expire the key after this many days")

    list_parser = subparsers.add_parser("list-api-keys", help="List client API keys")
    list_parser.add_argument("--service", default=None, help="Only show keys for this service")
    list_parser.add_argument("--environment", default=None, help="Only show keys for this environment")
    list_parser.add_argument("--include-deleted", action="store_true", help="Include soft-deleted keys")

    revoke_parser = subparsers.add_parser("revoke-api-key", help="Deactivate a client API key")
    revoke_parser.add_argument("key_id", help="Identifier of the key to revoke")
    revoke_parser.add_argument("--delete", action="store_true", help="Soft-delete the key instead of deactivating it")

    trials_parser = subparsers.add_parser(
        "check-expired-trials",
        help="Downgrade users whose trial ended without a paid subscription",
    )
    trials_parser.add_argument("--dry-run", action="store_true", help="Report without making changes")

    subparsers.add_parser("prune-tokens", help="Delete expired access and password reset tokens")

    health_parser = subparsers.add_parser("health", help="Query the health endpoint of a running service")
    health_parser.add_argument(
        "--service-url",
        default=_DEFAULT_SERVICE_URL,
        help=f"Base URL of the running service (default: {_DEFAULT_SERVICE_URL})",
    )

    args_list = list(argv) if argv is not None else sys.argv[1:]

    if not args_list:
        args_list = ["serve"]
    else:
        first = args_list[0]
        if first in ("-h", "--help"):
            return parser.parse_args(args_list)
        if first not in KNOWN_COMMANDS:
            if any(flag in args_list for flag in ("-h", "--help")):
                return parser.parse_args(args_list)
            args_list = ["serve", *args_list]

    return parser.parse_args(args_list)


def _initialise_database() -> Database:
    settings = load_settings()
    db_path = resolve_database_path(settings.db_path)
    database = Database(db_path)
    database.initialize()
    logger.info("Database initialised at %s", db_path)
    return database


def _serve(
    *,
    services: Services,
    host: str,
    port: int,
    ssl_certfile: str | None,
    ssl_keyfile: str | None,
    ssl_keyfile_password: str | None,
) -> None:
    from portal.api import create_app
    import uvicorn

    if bool(ssl_certfile) ^ bool(ssl_keyfile):
        raise SystemExit("Both --ssl-certfile and --ssl-keyfile must be provided together.")

    protocol = "https" if ssl_certfile and ssl_keyfile else "http"
    logger.info("Starting portal API on %s://%s:%s", protocol, host, port)

    app = create_app(services=services)
    uvicorn.run(
        app,
        host=host,
        port=port,
        log_level="info",
        ssl_certfile=ssl_certfile,
        ssl_keyfile=ssl_keyfile,
        ssl_keyfile_password=ssl_keyfile_password,
    )


def _prompt_for_password() -> str | None:
    for _ in range(3):
        password = getpass(f"Password (min {_MIN_PASSWORD_LENGTH} characters): ")
        if len(password) < _MIN_PASSWORD_LENGTH:
            print("Password is too short. Please try again.")
            continue
        confirmation = getpass("Confirm password: ")
        if password != confirmation:
            print("Passwords do not match. Please try again.")
            continue
        return password
    return None


def _create_user(services: Services, name: str, email: str, roles: Sequence[str] | None) -> int:
    password = _prompt_for_password()
    if password is None:
        print("Aborted creating user.", file=sys.stderr)
        return 1

    try:
        user = services.users.create({"name": name, "email": email, "password": password})
    except ValueError as exc:
        print(f"Failed to create user: {exc}", file=sys.stderr)
        return 1

    services.users.sync_roles(user, list(roles or ["free"]))
    services.activity.record("created by administrator", user=user)
    print(f"Created user {user.uuid}: {user.name} <{user.email}>")
    return 0


def _create_api_key(services: Services, args: argparse.Namespace) -> int:
    expires_at = None
    if args.expires_days is not None:
        if args.expires_days <= 0:
            print("--expires-days must be a positive number of days.", file=sys.stderr)
            return 1
        expires_at = current_timestamp() + timedelta(days=args.expires_days)

    try:
        api_key, plain_text = services.api_keys.create_key(
            args.name,
            args.service,
            args.environment,
            args.description,
            expires_at,
        )
    except ValueError as exc:
        print(f"Failed to create API key: {exc}", file=sys.stderr)
        return 1

    print(f"Created API key {api_key.id} for {api_key.service} ({api_key.environment}):")
    print(plain_text)
    print("\nStore this value securely; it will not be shown again.")
    return 0


def _list_api_keys(services: Services, args: argparse.Namespace) -> int:
    keys = services.api_keys.list_keys(
        include_deleted=args.include_deleted,
        filters={"service": args.service, "environment": args.environment},
    )
    if not keys:
        print("No API keys found.")
        return 0

    print(f"{len(keys)} API key(s) found:")
    print(f"{'ID':<36}  {'Name':<28}  {'Service':<14}  {'Environment':<12}  State")
    print("-" * 110)
    for key in keys:
        if key.deleted_at is not None:
            state = "deleted"
        elif not key.is_active:
            state = "revoked"
        elif key.is_expired():
            state = "expired"
        else:
            state = "active"
        print(f"{key.id:<36}  {key.name:<28}  {key.service:<14}  {key.environment:<12}  {state}")
    return 0


def _revoke_api_key(services: Services, key_id: str, delete: bool) -> int:
    api_key = services.api_keys.find_key(key_id)
    if api_key is None:
        print(f"No API key with id {key_id!r} found.", file=sys.stderr)
        return 1

    changed = services.api_keys.delete_key(api_key) if delete else services.api_keys.revoke_key(api_key)
    if not changed:
        print(f"API key {key_id} was not changed.", file=sys.stderr)
        return 1
    print(f"API key {key_id} {'deleted' if delete else 'revoked'}.")
    return 0


def _check_health(service_url: str) -> int:
    endpoint = service_url.rstrip("/") + "/api/up"
    try:
        response = httpx.get(endpoint, timeout=10.0)
    except httpx.HTTPError as exc:
        print(f"Failed to contact portal service: {exc}", file=sys.stderr)
        return 1

    if response.status_code != 200:
        print(f"Service responded with {response.status_code}: {response.text.strip()}", file=sys.stderr)
        return 1

    try:
        payload = response.json()
    except ValueError:
        print("Service returned an unexpected response format.", file=sys.stderr)
        return 1

    print(f"Service is {payload.get('status', 'unknown')} (version {payload.get('version', '?')})")
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for CLI usage."""

    logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(message)s")

    args = _parse_args(argv)

    if args.command == "health":
        return _check_health(args.service_url)

    database = _initialise_database()
    services = build_services(load_settings(), database)

    if args.command == "serve":
        _serve(
            services=services,
            host=args.host,
            port=args.port,
            ssl_certfile=args.ssl_certfile,
            ssl_keyfile=args.ssl_keyfile,
            ssl_keyfile_password=args.ssl_keyfile_password,
        )
    elif args.command == "init-db":
        if args.seed_api_keys:
            seeded = services.api_keys.seed_default_keys()
            print(f"Seeded {len(seeded)} development API key(s).")
        print("Database initialisation complete.")
    elif args.command == "create-user":
        return _create_user(services, args.name, args.email, args.roles)
    elif args.command == "create-api-key":
        return _create_api_key(services, args)
    elif args.command == "list-api-keys":
        return _list_api_keys(services, args)
    elif args.command == "revoke-api-key":
        return _revoke_api_key(services, args.key_id, args.delete)
    elif args.command == "check-expired-trials":
        results = services.subscriptions.expire_trials(dry_run=args.dry_run)
        prefix = "Would downgrade" if args.dry_run else "Downgraded"
        print(
            f"{prefix} {results['downgraded']} user(s); "
            f"{results['premium_retained']} kept premium; {results['skipped']} skipped."
        )
    elif args.command == "prune-tokens":
        removed = services.tokens.prune_expired()
        print(f"Removed {removed} expired token(s).")
        resets = services.password_reset.prune_expired()
        print(f"Removed {resets} expired password reset token(s).")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
