"""Store a new Paddle webhook secret in the payment_gateways row."""

from __future__ import annotations

import argparse
import asyncio
import sys
from typing import Any

from indexnow.database import close_engine, get_session_factory

from api.services.paddle_config import load_paddle_config, save_paddle_config


async def rotate_webhook_secret(
    *,
    secret: str | None,
    is_active: bool | None,
    dry_run: bool,
) -> dict[str, Any]:
    """Apply the requested changes and return the masked gateway view."""
    payload: dict[str, Any] = {}
    if secret is not None:
        payload["webhook_secret"] = secret
    if is_active is not None:
        payload["is_active"] = is_active

    factory = get_session_factory()
    try:
        async with factory() as db:
            if not payload:
                return await load_paddle_config(db)
            result = await save_paddle_config(db, payload)
            if dry_run:
                await db.rollback()
            else:
                await db.commit()
            return result
    finally:
        await close_engine()


def _parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Rotate the Paddle webhook signing secret.")
    parser.add_argument(
        "--secret",
        help="New webhook secret from the Paddle dashboard. Omit to show the current config.",
    )
    active = parser.add_mutually_exclusive_group()
    active.add_argument(
        "--activate",
        dest="is_active",
        action="store_const",
        const=True,
        help="Mark the gateway active (webhooks are rejected while inactive).",
    )
    active.add_argument(
        "--deactivate",
        dest="is_active",
        action="store_const",
        const=False,
        help="Mark the gateway inactive.",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Validate and encrypt without committing database writes.",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    args = _parser().parse_args(argv)
    secret = args.secret.strip() if args.secret is not None else None
    if secret is not None and not secret:
        print("paddle-webhook-secret: --secret must not be empty", file=sys.stderr)
        return 2

    config = asyncio.run(
        rotate_webhook_secret(secret=secret, is_active=args.is_active, dry_run=bool(args.dry_run))
    )
    print(
        "paddle-webhook-secret:",
        f"slug={config['slug']}",
        f"active={config['is_active']}",
        f"secret={config['webhook_secret_masked'] or '(unset)'}",
        "(dry-run)" if args.dry_run else "",
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
