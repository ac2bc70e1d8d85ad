#!/usr/bin/env python3
"""CLI script to refresh CRM access tokens that are about to expire.

Usage:
    uv run python scripts/refresh_tokens.py
    uv run python scripts/refresh_tokens.py --provider salesforce
    uv run python scripts/refresh_tokens.py --watch

Connects directly to the database using DATABASE_URL from environment or .env file.
Without --watch, runs one sweep per provider and exits non-zero if any refresh failed.
With --watch, keeps the sweeps running every TOKEN_SWEEP_INTERVAL_SECONDS until interrupted.
"""

from __future__ import annotations

import argparse
import asyncio
import os
import sys

# Ensure project root is on sys.path so we can import src.scribe
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from dotenv import load_dotenv  # noqa: E402

# Load .env from project root
load_dotenv(os.path.join(os.path.dirname(__file__), "..", ".env"))


async def sweep_once(providers: list[str]) -> int:
    """Run one sweep per provider; return the number of failed refreshes."""
    from src.scribe.config import get_settings
    from src.scribe.core.database import close_db, get_session
    from src.scribe.core.logging_config import configure_structlog
    from src.scribe.crm.schemas import Provider
    from src.scribe.crm.service import build_refresh_sweeps
    from src.scribe.crm.store import SqlCredentialStore

    settings = get_settings()
    configure_structlog(settings)

    store = SqlCredentialStore(get_session)
    sweeps = build_refresh_sweeps(settings, store, [Provider(p) for p in providers])

    failed = 0
    try:
        for sweep in sweeps:
            result = await sweep.run()
            print(
                f"{result.provider}: checked={result.checked} "
                f"refreshed={result.refreshed} failed={result.failed}"
            )
            failed += result.failed
    finally:
        await close_db()
    return failed


async def watch(providers: list[str]) -> None:
    """Run the sweep scheduler until cancelled."""
    from src.scribe.config import get_settings
    from src.scribe.core.database import close_db, get_session
    from src.scribe.core.logging_config import configure_structlog
    from src.scribe.crm.schemas import Provider
    from src.scribe.crm.service import build_refresh_sweeps
    from src.scribe.crm.store import SqlCredentialStore
    from src.scribe.crm.sweep import TokenRefreshScheduler

    settings = get_settings()
    configure_structlog(settings)

    store = SqlCredentialStore(get_session)
    sweeps = build_refresh_sweeps(settings, store, [Provider(p) for p in providers])
    scheduler = TokenRefreshScheduler(sweeps, interval_seconds=settings.TOKEN_SWEEP_INTERVAL_SECONDS)

    # First pass immediately, then on the interval
    for sweep in sweeps:
        await sweep.run()

    scheduler.start()
    print(f"Watching {', '.join(providers)} every {settings.TOKEN_SWEEP_INTERVAL_SECONDS}s (Ctrl+C to stop)")
    try:
        await asyncio.Event().wait()
    finally:
        scheduler.shutdown()
        await close_db()


def main() -> None:
    parser = argparse.ArgumentParser(description="Refresh CRM tokens that are about to expire")
    parser.add_argument(
        "--provider",
        choices=["hubspot", "salesforce"],
        action="append",
        default=None,
        help="Provider to sweep (repeatable; default: all)",
    )
    parser.add_argument("--watch", action="store_true", help="Keep sweeping on the configured interval")
    args = parser.parse_args()

    providers = args.provider or ["hubspot", "salesforce"]

    if args.watch:
        try:
            asyncio.run(watch(providers))
        except KeyboardInterrupt:
            print("Stopped.")
        return

    failed = asyncio.run(sweep_once(providers))
    sys.exit(1 if failed else 0)


if __name__ == "__main__":
    main()
