"""Unit tests for the proactive token refresh sweep and its scheduler."""

from __future__ import annotations

from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock, patch

from src.scribe.crm.errors import NoRefreshTokenError, TokenRefreshFailedError
from src.scribe.crm.schemas import Provider
from src.scribe.crm.sweep import RefreshSweep, TokenRefreshScheduler


# ── Helpers ────────────────────────────────────────────────────────────────


def _mock_tokens(store, now, provider: Provider = Provider.HUBSPOT) -> MagicMock:
    """TokenLifecycle double: refresh echoes back a rotated credential."""
    tokens = MagicMock()
    tokens.provider = provider
    tokens.store = store
    tokens.now.return_value = now
    tokens.refresh = AsyncMock(
        side_effect=lambda cred: cred.model_copy(update={"access_token": "access-new"})
    )
    return tokens


# ── RefreshSweep ───────────────────────────────────────────────────────────


class TestRefreshSweep:
    """One sweep pass over a provider's credentials."""

    async def test_refreshes_only_credentials_inside_window(self, store, make_credential, now):
        make_credential(id="soon", expires_at=now + timedelta(minutes=5))
        make_credential(id="later", expires_at=now + timedelta(hours=1))
        make_credential(id="expired", expires_at=now - timedelta(minutes=1))
        make_credential(id="boundary", expires_at=now + timedelta(minutes=10))
        tokens = _mock_tokens(store, now)

        result = await RefreshSweep(tokens).run()

        refreshed_ids = sorted(call.args[0].id for call in tokens.refresh.await_args_list)
        assert refreshed_ids == ["boundary", "expired", "soon"]
        assert result.checked == 3
        assert result.refreshed == 3
        assert result.failed == 0

    async def test_null_expiry_skipped(self, store, make_credential, now):
        make_credential(id="no-expiry", expires_at=None)
        tokens = _mock_tokens(store, now)

        result = await RefreshSweep(tokens).run()

        tokens.refresh.assert_not_awaited()
        assert result.checked == 0

    async def test_other_providers_ignored(self, store, make_credential, now):
        make_credential(id="sf", provider="salesforce", expires_at=now)
        tokens = _mock_tokens(store, now)

        result = await RefreshSweep(tokens).run()

        tokens.refresh.assert_not_awaited()
        assert result.provider == "hubspot"

    async def test_failures_counted_and_sweep_continues(self, store, make_credential, now):
        make_credential(id="a", expires_at=now)
        make_credential(id="b", expires_at=now, refresh_token=None)
        make_credential(id="c", expires_at=now)
        tokens = _mock_tokens(store, now)

        async def refresh(cred):
            if cred.id == "b":
                raise NoRefreshTokenError(cred.id)
            if cred.id == "c":
                raise TokenRefreshFailedError(400, {"error": "invalid_grant"})
            return cred

        tokens.refresh.side_effect = refresh

        result = await RefreshSweep(tokens).run()

        assert tokens.refresh.await_count == 3
        assert result.checked == 3
        assert result.refreshed == 1
        assert result.failed == 2

    async def test_unexpected_exception_does_not_escape(self, store, make_credential, now):
        make_credential(id="a", expires_at=now)
        tokens = _mock_tokens(store, now)
        tokens.refresh.side_effect = RuntimeError("boom")

        result = await RefreshSweep(tokens).run()

        assert result.failed == 1

    async def test_listing_failure_yields_empty_result(self, store, now):
        store.fail_list_with = ConnectionError("database unavailable")
        tokens = _mock_tokens(store, now)

        result = await RefreshSweep(tokens).run()

        assert result.checked == 0
        assert result.refreshed == 0
        tokens.refresh.assert_not_awaited()

    async def test_custom_window(self, store, make_credential, now):
        make_credential(id="in-30", expires_at=now + timedelta(minutes=30))
        tokens = _mock_tokens(store, now)

        result = await RefreshSweep(tokens, window=timedelta(hours=1)).run()

        assert result.refreshed == 1

    async def test_sweep_refreshes_non_stale_tokens(self, store, make_credential, now):
        """The sweep's look-ahead is wider than the on-demand buffer."""
        make_credential(id="eight-min", expires_at=now + timedelta(minutes=8))
        tokens = _mock_tokens(store, now)

        expiring = await RefreshSweep(tokens).find_expiring()

        assert [c.id for c in expiring] == ["eight-min"]


# ── TokenRefreshScheduler ──────────────────────────────────────────────────


class TestTokenRefreshScheduler:
    """APScheduler wiring: one interval job per provider sweep."""

    def _sweep(self, provider: str) -> MagicMock:
        sweep = MagicMock(spec=RefreshSweep)
        sweep.provider = provider
        return sweep

    def test_registers_one_job_per_sweep(self):
        sweeps = [self._sweep("hubspot"), self._sweep("salesforce")]

        with patch("src.scribe.crm.sweep.AsyncIOScheduler") as scheduler_cls:
            scheduler = TokenRefreshScheduler(sweeps, interval_seconds=120)
            scheduler.start()

        instance = scheduler_cls.return_value
        job_ids = [call.kwargs["id"] for call in instance.add_job.call_args_list]
        assert job_ids == ["token_sweep_hubspot", "token_sweep_salesforce"]
        for call in instance.add_job.call_args_list:
            assert call.kwargs["max_instances"] == 1
            assert call.kwargs["coalesce"] is True
            assert call.kwargs["trigger"].interval == timedelta(seconds=120)
        instance.start.assert_called_once()

    def test_jobs_run_the_sweep(self):
        sweep = self._sweep("hubspot")

        with patch("src.scribe.crm.sweep.AsyncIOScheduler") as scheduler_cls:
            TokenRefreshScheduler([sweep]).start()

        job_func = scheduler_cls.return_value.add_job.call_args.args[0]
        assert job_func is sweep.run

    def test_shutdown_stops_running_scheduler(self):
        with patch("src.scribe.crm.sweep.AsyncIOScheduler") as scheduler_cls:
            scheduler = TokenRefreshScheduler([self._sweep("hubspot")])
            scheduler.start()
            scheduler_cls.return_value.running = True

            assert scheduler.running is True
            scheduler.shutdown()

        scheduler_cls.return_value.shutdown.assert_called_once_with(wait=False)
        assert scheduler.running is False

    def test_shutdown_before_start_is_noop(self):
        scheduler = TokenRefreshScheduler([])
        scheduler.shutdown()
        assert scheduler.running is False

