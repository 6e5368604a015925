"""Auto-apply controller — create → wait → classify → match → retry.

One attempt:

  1. stop if cancelled (quietly, no failure message)
  2. create a reserved IP                    error → backoff, retry
  3. wait for it to leave PROVISIONING       error → backoff, retry (IP not reaped)
  4. classify its address                    error → keep the IP, backoff, retry
  5. match → cache, clear task, notify, done
     no match → delete the IP (failure only logged), go to 6
  6. sleep a random interval from the task's range, racing cancellation

The loop has no fatal exit: it ends only on a match or a stop request.
In-flight calls are never interrupted; when a stop arrives mid-call the
result is discarded and no further attempt is made.
"""
from __future__ import annotations

import logging
import random
import threading
import time
from enum import Enum
from typing import Callable, Optional

from agent.reconcile import PurgeReport, purge
from agent.session import SessionState, TaskHandle
from collectors.provider import ReservationProvider
from config.settings import Timeouts
from engine.policy import match
from purity.ippure import Classifier
from schemas.domain import Classification, Resource
from schemas.errors import ClassifierError, ProviderError

log = logging.getLogger(__name__)

Notify = Callable[[int, str], None]
OnMatch = Callable[[TaskHandle, Resource, Classification], None]


class Outcome(str, Enum):
    MATCHED = "matched"
    CANCELLED = "cancelled"


class _Step(Enum):
    RETRY = "retry"
    MATCHED = "matched"
    CANCELLED = "cancelled"


def format_match(info: Classification, attempts: int) -> str:
    return (
        "🎉 Found a matching IP!\n\n"
        f"IP: {info.address}\n"
        f"📊 Purity: {info.score_text} ({info.level})\n"
        f"🏢 Type: {info.category}\n"
        f"🌐 Origin: {info.origin}\n"
        f"🔢 Attempts: {attempts}"
    )


class AutoApplyController:
    """Runs one TaskHandle to completion on a detached thread."""

    def __init__(
        self,
        session: SessionState[ReservationProvider],
        classifier: Classifier,
        notify: Notify,
        *,
        timeouts: Optional[Timeouts] = None,
        delete_on_check_failure: bool = False,
        on_match: Optional[OnMatch] = None,
        rng: Optional[random.Random] = None,
    ):
        self.session = session
        self.classifier = classifier
        self.notify = notify
        self.timeouts = timeouts or Timeouts()
        self.delete_on_check_failure = delete_on_check_failure
        self.on_match = on_match
        self._rng = rng or random.Random()

    # ── Entry points ─────────────────────────────────────────────

    def launch(self, handle: TaskHandle, *, purge_first: bool = False) -> threading.Thread:
        thread = threading.Thread(
            target=self.run,
            args=(handle,),
            kwargs={"purge_first": purge_first},
            name=f"auto-apply-{handle.generation}",
            daemon=True,
        )
        thread.start()
        return thread

    def run(self, handle: TaskHandle, *, purge_first: bool = False) -> Outcome:
        client = self.session.client_for(handle.account_name)
        if client is None:
            # Accounts are fixed at startup, so this only happens on a wiring bug.
            log.error("No client for account [%s]; stopping task", handle.account_name)
            self.session.finish_task(handle)
            return Outcome.CANCELLED

        if purge_first:
            report = self._purge_existing(handle, client)
            if report is None:
                self.session.finish_task(handle)
                return Outcome.CANCELLED
            if report.cancelled or handle.cancel.cancelled:
                log.info("Auto-apply cancelled during purge")
                return Outcome.CANCELLED
            self.notify(handle.chat_id, "✅ Existing IPs deleted, starting auto-apply...")

        while True:
            if handle.cancel.cancelled or not handle.active:
                log.info("Auto-apply task cancelled after %d attempt(s)", handle.attempts)
                return Outcome.CANCELLED

            handle.attempts += 1
            log.info("Auto-apply attempt %d on [%s]", handle.attempts, handle.account_name)
            try:
                step = self._attempt(handle, client)
            except Exception:
                log.exception("Unexpected error in auto-apply attempt %d", handle.attempts)
                step = _Step.RETRY

            if step is _Step.MATCHED:
                return Outcome.MATCHED
            if step is _Step.CANCELLED:
                log.info("Auto-apply task cancelled during attempt %d", handle.attempts)
                return Outcome.CANCELLED

            if self._backoff(handle):
                log.info("Auto-apply task cancelled while waiting")
                return Outcome.CANCELLED

    # ── One attempt ──────────────────────────────────────────────

    def _attempt(self, handle: TaskHandle, client: ReservationProvider) -> _Step:
        cancel = handle.cancel
        t = self.timeouts

        name = f"auto-{int(time.time())}"
        try:
            resource = client.create(name, timeout=t.create)
        except ProviderError as e:
            log.warning("Create failed: %s", e)
            return _Step.CANCELLED if cancel.cancelled else _Step.RETRY
        if cancel.cancelled:
            log.info("Stop requested; leaving freshly created %s in place", resource.id)
            return _Step.CANCELLED

        try:
            resource = client.wait_ready(
                resource.id,
                timeout=t.wait_ready,
                interrupted=lambda: cancel.cancelled,
            )
        except ProviderError as e:
            log.warning("Wait for IP ready failed: %s", e)
            return _Step.CANCELLED if cancel.cancelled else _Step.RETRY
        if cancel.cancelled:
            return _Step.CANCELLED

        log.info("IP created: %s. Checking purity...", resource.address)
        try:
            info = self.classifier.classify(resource.address, timeout=t.check)
        except ClassifierError as e:
            if cancel.cancelled:
                return _Step.CANCELLED
            if self.delete_on_check_failure:
                log.warning("Check failed: %s. Deleting %s", e, resource.address)
                self._discard(client, resource)
            else:
                log.warning("Check failed: %s. Keeping %s and continuing", e, resource.address)
            return _Step.RETRY
        if cancel.cancelled:
            return _Step.CANCELLED

        if match(info, handle.policy):
            if not self.session.finish_task(handle, info):
                # Stopped between the check and now: the operator has already been told.
                return _Step.CANCELLED
            log.info("Auto-apply found matching IP %s after %d attempt(s)", resource.address, handle.attempts)
            self.notify(handle.chat_id, format_match(info, handle.attempts))
            if self.on_match is not None:
                try:
                    self.on_match(handle, resource, info)
                except Exception:
                    log.exception("on_match hook failed for %s", resource.address)
            return _Step.MATCHED

        log.info("IP mismatch (%s/%s). Deleting %s", info.score_text, info.origin, resource.address)
        self._discard(client, resource)
        return _Step.RETRY

    # ── Helpers ──────────────────────────────────────────────────

    def _discard(self, client: ReservationProvider, resource: Resource) -> None:
        try:
            client.delete(resource.id, timeout=self.timeouts.delete)
        except ProviderError as e:
            log.warning("Delete of %s failed: %s", resource.address, e)

    def _backoff(self, handle: TaskHandle) -> bool:
        seconds = handle.interval.sample(self._rng)
        log.info("Waiting %d seconds before next attempt", seconds)
        return handle.cancel.wait(seconds)

    def _purge_existing(self, handle: TaskHandle, client: ReservationProvider) -> Optional[PurgeReport]:
        """None when the listing fails; the task is then abandoned."""
        try:
            existing = client.list(timeout=self.timeouts.list)
        except ProviderError as e:
            log.warning("Listing before purge failed: %s", e)
            self.notify(handle.chat_id, f"❌ Failed to list IPs: {e}\nAuto-apply was not started.")
            return None
        report = purge(
            client,
            existing,
            handle.interval,
            progress=lambda text: self.notify(handle.chat_id, text),
            cancel=handle.cancel,
            timeout=self.timeouts.delete,
            rng=self._rng,
        )
        log.info("Purge finished: %d/%d deleted, %d failed", report.deleted, report.total, report.failed)
        return report
