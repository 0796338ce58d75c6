"""CLI entrypoints for identity service operational tasks."""

from __future__ import annotations

import argparse
import asyncio
import json
from collections.abc import Sequence

from authcore.config import configure_structlog, get_settings
from authcore.core.jwt import generate_rsa_keypair
from authcore.core.scheduler import sweep_expired_tokens
from authcore.core.tokens import get_token_ledger
from authcore.db.session import dispose_engine, get_session_factory
from authcore.services.user_service import UserServiceError, get_user_service


async def _run_cleanup_tokens() -> int:
    """Run one expired-token sweep."""
    configure_structlog(get_settings())
    try:
        result = await sweep_expired_tokens(get_token_ledger())
    finally:
        await dispose_engine()
    print(json.dumps({"deactivated": result.deactivated, "deleted": result.deleted}))
    return 0


def _run_generate_jwt_keys(key_size: int) -> int:
    """Print a fresh RS256 keypair as JSON."""
    private_key_pem, public_key_pem = generate_rsa_keypair(key_size=key_size)
    print(json.dumps({"private_key_pem": private_key_pem, "public_key_pem": public_key_pem}))
    return 0


async def _run_create_admin(email: str, password: str, first_name: str, last_name: str) -> int:
    """Bootstrap an administrator bound to the default admin role."""
    settings = get_settings()
    configure_structlog(settings)
    user_service = get_user_service()
    try:
        async with get_session_factory()() as db_session:
            try:
                admin = await user_service.create_admin(
                    db_session=db_session,
                    email=email,
                    password=password,
                    first_name=first_name,
                    last_name=last_name,
                    role_name=settings.roles.default_admin_role,
                )
                await db_session.commit()
            except UserServiceError as exc:
                await db_session.rollback()
                print(json.dumps({"detail": exc.detail, "code": exc.code}))
                return 1
    finally:
        await dispose_engine()
    print(json.dumps({"id": str(admin.id), "email": admin.email}))
    return 0


def _build_parser() -> argparse.ArgumentParser:
    """Build command-line parser for supported operational commands."""
    parser = argparse.ArgumentParser(prog="python -m authcore.cli")
    subcommands = parser.add_subparsers(dest="command", required=True)

    subcommands.add_parser("cleanup-tokens", help="Deactivate and purge expired tokens.")

    keys_parser = subcommands.add_parser("generate-jwt-keys", help="Print a new RS256 keypair.")
    keys_parser.add_argument("--key-size", type=int, default=2048)

    admin_parser = subcommands.add_parser("create-admin", help="Create an administrator.")
    admin_parser.add_argument("--email", required=True)
    admin_parser.add_argument("--password", required=True)
    admin_parser.add_argument("--first-name", required=True)
    admin_parser.add_argument("--last-name", required=True)
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    """Run CLI command."""
    parser = _build_parser()
    args = parser.parse_args(argv)
    if args.command == "cleanup-tokens":
        return asyncio.run(_run_cleanup_tokens())
    if args.command == "generate-jwt-keys":
        return _run_generate_jwt_keys(key_size=args.key_size)
    if args.command == "create-admin":
        return asyncio.run(
            _run_create_admin(
                email=args.email,
                password=args.password,
                first_name=args.first_name,
                last_name=args.last_name,
            )
        )
    parser.error("Unsupported command")
    return 2


if __name__ == "__main__":
    raise SystemExit(main())
