"""Proactive token refresh sweep and its background scheduler.

Provides:
- RefreshSweep: one pass over a provider's credentials, refreshing every
  token that expires within the look-ahead window (10 minutes).
- TokenRefreshScheduler: APScheduler wrapper running each sweep on a fixed
  interval, independent of user-triggered requests.

A sweep always completes: per-credential failures are logged and counted,
never raised, so one user's broken refresh token cannot block the rest.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import timedelta

import structlog
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from src.scribe.core.monitoring import crm_token_sweep_credentials_total
from src.scribe.crm.schemas import Credential, SweepResult
from src.scribe.crm.store import CredentialStore
from src.scribe.crm.tokens import TokenLifecycle, as_utc

logger = structlog.get_logger(__name__)

DEFAULT_SWEEP_WINDOW = timedelta(minutes=10)


class RefreshSweep:
    """Refreshes all of one provider's credentials that are about to expire.

    Args:
        tokens: TokenLifecycle for the provider being swept.
        store: Credential store to list candidates from (defaults to the
            lifecycle's own store).
        window: Credentials expiring within this window are refreshed.
    """

    def __init__(
        self,
        tokens: TokenLifecycle,
        store: CredentialStore | None = None,
        window: timedelta = DEFAULT_SWEEP_WINDOW,
    ) -> None:
        self._tokens = tokens
        self._store = store or tokens.store
        self._window = window

    @property
    def provider(self) -> str:
        return self._tokens.provider.value

    async def find_expiring(self) -> list[Credential]:
        """Credentials with a known expiry at or before now + window."""
        threshold = self._tokens.now() + self._window
        credentials = await self._store.list_by_provider(self.provider)
        return [
            cred
            for cred in credentials
            if cred.expires_at is not None and as_utc(cred.expires_at) <= threshold
        ]

    async def run(self) -> SweepResult:
        """Run one sweep. Never raises."""
        result = SweepResult(provider=self.provider)
        logger.info("token_sweep.started", provider=self.provider)

        try:
            credentials = await self.find_expiring()
        except Exception as exc:
            logger.error(
                "token_sweep.list_failed",
                provider=self.provider,
                error=str(exc),
            )
            return result

        if not credentials:
            logger.debug("token_sweep.nothing_to_refresh", provider=self.provider)
            return result

        result.checked = len(credentials)
        logger.info(
            "token_sweep.processing",
            provider=self.provider,
            credential_count=len(credentials),
        )

        for credential in credentials:
            try:
                await self._tokens.refresh(credential)
            except Exception as exc:
                result.failed += 1
                crm_token_sweep_credentials_total.labels(
                    provider=self.provider, outcome="failed"
                ).inc()
                logger.error(
                    "token_sweep.refresh_failed",
                    provider=self.provider,
                    credential_id=credential.id,
                    user_id=credential.user_id,
                    error=str(exc),
                    error_type=type(exc).__name__,
                )
            else:
                result.refreshed += 1
                crm_token_sweep_credentials_total.labels(
                    provider=self.provider, outcome="refreshed"
                ).inc()

        logger.info(
            "token_sweep.completed",
            provider=self.provider,
            refreshed=result.refreshed,
            failed=result.failed,
        )
        return result


class TokenRefreshScheduler:
    """Runs refresh sweeps on a fixed interval with an AsyncIOScheduler.

    Args:
        sweeps: One RefreshSweep per provider.
        interval_seconds: Seconds between sweep runs.
    """

    def __init__(self, sweeps: Sequence[RefreshSweep], interval_seconds: int = 300) -> None:
        self._sweeps = list(sweeps)
        self._interval_seconds = interval_seconds
        self._scheduler: AsyncIOScheduler | None = None

    @property
    def running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    def start(self) -> None:
        """Register one interval job per sweep and start the scheduler."""
        self._scheduler = AsyncIOScheduler()

        for sweep in self._sweeps:
            self._scheduler.add_job(
                sweep.run,
                trigger=IntervalTrigger(seconds=self._interval_seconds),
                id=f"token_sweep_{sweep.provider}",
                name=f"Proactive {sweep.provider} token refresh",
                max_instances=1,
                coalesce=True,
                misfire_grace_time=self._interval_seconds,
            )

        self._scheduler.start()
        logger.info(
            "token_scheduler.started",
            providers=[s.provider for s in self._sweeps],
            interval_seconds=self._interval_seconds,
        )

    def shutdown(self) -> None:
        if self._scheduler is not None and self._scheduler.running:
            self._scheduler.shutdown(wait=False)
            logger.info("token_scheduler.stopped")
        self._scheduler = None
