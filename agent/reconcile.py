"""Reconciliation — what to do with reserved IPs that already exist.

Before an auto-apply task starts, the target account is listed.  Existing
IPs force an explicit operator choice:

  - purge-then-start: delete each one, in order, with a jittered wait
    between deletions; failures are reported and skipped
  - keep-and-start:   start immediately, leave them alone

There is no default.  Until the operator picks, no task runs.
"""
from __future__ import annotations

import logging
import random
from dataclasses import dataclass, field
from typing import Callable, Optional

from agent.cancellation import CancelToken
from collectors.provider import ReservationProvider
from engine.interval import IntervalRange
from schemas.domain import Resource
from schemas.errors import ProviderError

log = logging.getLogger(__name__)

Progress = Callable[[str], None]


@dataclass
class ReconcilePlan:
    """Result of the pre-flight listing."""
    account_name: str
    existing: list[Resource] = field(default_factory=list)
    list_error: Optional[str] = None

    @property
    def needs_decision(self) -> bool:
        return bool(self.existing)


@dataclass
class PurgeReport:
    total: int = 0
    deleted: int = 0
    failed: int = 0
    cancelled: bool = False


def check_existing(client: ReservationProvider, timeout: float) -> ReconcilePlan:
    """List the account's reserved IPs.

    A listing failure is not a reason to block the operator: the plan
    carries the error and asks for no decision.
    """
    try:
        existing = client.list(timeout=timeout)
    except ProviderError as e:
        log.warning("Pre-flight listing failed for [%s]: %s", client.account_name, e)
        return ReconcilePlan(account_name=client.account_name, list_error=str(e))
    return ReconcilePlan(account_name=client.account_name, existing=existing)


def purge(
    client: ReservationProvider,
    resources: list[Resource],
    interval: IntervalRange,
    *,
    progress: Progress,
    cancel: CancelToken,
    timeout: float,
    rng: Optional[random.Random] = None,
) -> PurgeReport:
    """Delete *resources* sequentially.  Never raises for a single failed delete."""
    report = PurgeReport(total=len(resources))
    for i, resource in enumerate(resources, start=1):
        if cancel.cancelled:
            report.cancelled = True
            break

        progress(f"🗑 Deleting IP ({i}/{report.total}): {resource.address}")
        try:
            client.delete(resource.id, timeout=timeout)
            report.deleted += 1
            log.info("Purged %s (%s)", resource.address, resource.id)
        except ProviderError as e:
            report.failed += 1
            log.warning("Purge of %s failed: %s", resource.address, e)
            progress(f"⚠️ Delete failed: {e}")

        if i < report.total:
            wait = interval.sample(rng)
            progress(f"⏳ Waiting {wait} seconds...")
            if cancel.wait(wait):
                report.cancelled = True
                break
    return report
