"""Preflight — build one client per configured account and probe it.

Usage:
    from preflight.analyzer import build_clients, run_preflight
    clients, skipped = build_clients(settings)
    result = run_preflight(clients)
    # result["accounts"] -> {name: {ok, detail, duration_ms}}
"""
from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from typing import Any, Callable, TypedDict

from collectors.oci_client import build_client
from collectors.provider import ReservationProvider
from config.settings import BotSettings
from schemas.errors import ProviderError

log = logging.getLogger(__name__)

DEFAULT_PROBE_TIMEOUT = 10.0


# ── Types ─────────────────────────────────────────────────────────

class ProbeResult(TypedDict):
    ok: bool
    detail: str
    duration_ms: int


class PreflightResult(TypedDict):
    timestamp: str
    accounts: dict[str, ProbeResult]
    skipped: dict[str, str]


# ── Client construction ──────────────────────────────────────────

def build_clients(
    settings: BotSettings,
    factory: Callable[..., Any] = build_client,
) -> tuple[dict[str, ReservationProvider], dict[str, str]]:
    """Clients for every usable account; broken ones are skipped with a reason."""
    clients: dict[str, ReservationProvider] = {}
    skipped: dict[str, str] = {}
    for account in settings.accounts:
        try:
            clients[account.name] = factory(account, poll_seconds=settings.timeouts.poll)
        except ProviderError as e:
            log.warning("Failed to create OCI client for [%s]: %s", account.name, e)
            skipped[account.name] = str(e)
            continue
        log.info("Loaded OCI account: [%s] (%s)", account.name, account.region)
    return clients, skipped


# ── Probes ────────────────────────────────────────────────────────

def probe_account(client: ReservationProvider, timeout: float = DEFAULT_PROBE_TIMEOUT) -> ProbeResult:
    """Can we list reserved IPs in this account?"""
    start = time.perf_counter_ns()
    try:
        count = len(client.list(timeout=timeout))
        ms = (time.perf_counter_ns() - start) // 1_000_000
        return {"ok": True, "detail": f"{count} reserved IP(s) visible", "duration_ms": ms}
    except ProviderError as e:
        ms = (time.perf_counter_ns() - start) // 1_000_000
        return {"ok": False, "detail": str(e)[:200], "duration_ms": ms}


def run_preflight(
    clients: dict[str, ReservationProvider],
    skipped: dict[str, str] | None = None,
    *,
    timeout: float = DEFAULT_PROBE_TIMEOUT,
) -> PreflightResult:
    accounts = {name: probe_account(client, timeout) for name, client in clients.items()}
    return {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "accounts": accounts,
        "skipped": dict(skipped or {}),
    }


def print_preflight_report(result: PreflightResult) -> None:
    print("  Preflight:")
    for name, probe in result["accounts"].items():
        icon = "✓" if probe["ok"] else "✗"
        print(f"    {icon} [{name}] {probe['detail']} ({probe['duration_ms']} ms)")
    for name, reason in result["skipped"].items():
        print(f"    ⏭ [{name}] skipped: {reason}")
