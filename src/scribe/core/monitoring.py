"""Prometheus metrics for CRM token refreshes and provider API calls.

Provides:
- crm_token_refresh_total: refresh attempts by provider and outcome
- crm_api_requests_total / crm_api_request_duration_seconds: provider API calls
- crm_token_sweep_credentials_total: per-credential outcomes of refresh sweeps
- track_crm_call(): async context manager recording one provider API call
"""

from __future__ import annotations

import time
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from prometheus_client import Counter, Histogram

# ── Token Metrics ────────────────────────────────────────────────────────────

crm_token_refresh_total = Counter(
    "crm_token_refresh_total",
    "OAuth token refresh attempts",
    ["provider", "outcome"],
)

crm_token_sweep_credentials_total = Counter(
    "crm_token_sweep_credentials_total",
    "Credentials processed by the proactive refresh sweep",
    ["provider", "outcome"],
)

# ── Provider API Metrics ─────────────────────────────────────────────────────

crm_api_requests_total = Counter(
    "crm_api_requests_total",
    "Total CRM provider API requests",
    ["provider", "operation", "outcome"],
)

crm_api_request_duration_seconds = Histogram(
    "crm_api_request_duration_seconds",
    "CRM provider API request duration in seconds",
    ["provider", "operation"],
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
)


@asynccontextmanager
async def track_crm_call(provider: str, operation: str) -> AsyncGenerator[None, None]:
    """Context manager that records count and duration of one CRM API call.

    Usage:
        async with track_crm_call("salesforce", "get_contact"):
            response = await client.get(...)

    The outcome label is the exception class name when the block raises,
    otherwise "success".
    """
    start_time = time.perf_counter()
    outcome = "success"

    try:
        yield
    except Exception as exc:
        outcome = type(exc).__name__
        raise
    finally:
        duration = time.perf_counter() - start_time

        crm_api_requests_total.labels(
            provider=provider,
            operation=operation,
            outcome=outcome,
        ).inc()

        crm_api_request_duration_seconds.labels(
            provider=provider,
            operation=operation,
        ).observe(duration)
