"""
Connect a social account for a user (operator tool).

Usage::

    # 1. Print the consent URL (and PKCE verifier for Twitter):
    python connect_account.py authorize twitter --redirect-uri https://example.com/cb

    # 2. Exchange the returned code and store the credential:
    python connect_account.py exchange twitter USER_ID CODE \\
        --redirect-uri https://example.com/cb \\
        --account-id 12345 --account-name "@brand" --code-verifier VERIFIER

    # Facebook page credentials can be pinned to one page:
    python connect_account.py exchange facebook USER_ID CODE \\
        --redirect-uri https://example.com/cb --account-id 987 --page-id 555
"""

import argparse
import asyncio
import logging
import sys

from dotenv import load_dotenv

load_dotenv()

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-8s %(name)s | %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("connect_account")


def _parse_args() -> argparse.Namespace:
    from social_engine.config import PLATFORM_NAMES

    parser = argparse.ArgumentParser(description="Connect a social account")
    commands = parser.add_subparsers(dest="command", required=True)

    authorize = commands.add_parser("authorize", help="Print the consent URL")
    authorize.add_argument("platform", choices=PLATFORM_NAMES)
    authorize.add_argument("--redirect-uri", required=True)
    authorize.add_argument("--state", help="Anti-CSRF state (random when omitted)")

    exchange = commands.add_parser("exchange", help="Exchange a code and store the credential")
    exchange.add_argument("platform", choices=PLATFORM_NAMES)
    exchange.add_argument("user_id")
    exchange.add_argument("code")
    exchange.add_argument("--redirect-uri", required=True)
    exchange.add_argument("--account-id", required=True)
    exchange.add_argument("--account-name", default="")
    exchange.add_argument("--code-verifier", help="PKCE verifier printed by 'authorize'")
    exchange.add_argument("--page-id", help="Facebook page to publish to")
    return parser.parse_args()


async def main() -> int:
    args = _parse_args()

    from social_engine.config import get_settings
    from social_engine.credentials import build_authorization_url
    from social_engine.exceptions import ConfigurationError
    from social_engine.models import Platform

    platform = Platform(args.platform)
    settings = get_settings()

    if args.command == "authorize":
        try:
            app = settings.oauth_app(platform.value)
        except ConfigurationError as exc:
            logger.error("%s", exc)
            return 1
        url, verifier = build_authorization_url(platform, app, args.redirect_uri, args.state)
        print(url)
        if verifier:
            print(f"code_verifier: {verifier}")
        return 0

    # --- exchange -----------------------------------------------------
    import httpx

    from social_engine.credentials import CredentialManager, OAuthClient
    from social_engine.database import get_db

    db = await get_db()
    logger.info("Database connected")

    async with httpx.AsyncClient(timeout=settings.http_timeout_seconds) as http:
        oauth = OAuthClient(http)
        manager = CredentialManager(db, oauth)
        try:
            token = await oauth.exchange_code(
                platform, args.code, args.redirect_uri, code_verifier=args.code_verifier
            )
        except (ConfigurationError, httpx.HTTPError, ValueError) as exc:
            logger.error("Code exchange failed: %s", exc)
            return 1

        metadata = {"page_id": args.page_id} if args.page_id else {}
        credential = await manager.connect_account(
            args.user_id,
            platform,
            token,
            account_name=args.account_name,
            account_id=args.account_id,
            metadata=metadata,
        )

    print(f"Connected {platform.value} account {credential.account_name or credential.account_id}")
    print(f"  credential_id: {credential.id}")
    print(f"  scopes:        {', '.join(sorted(credential.scopes)) or '(none reported)'}")
    if credential.token_expires_at:
        print(f"  expires_at:    {credential.token_expires_at.isoformat()}")
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
