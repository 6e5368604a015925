"""Session state — the one place shared, mutable bot state lives.

Holds the current account, the wizard in progress, the single active
auto-apply task and the purity cache.  Everything goes through accessor
methods that take one short-held lock; callers snapshot what they need,
release, then do blocking cloud / oracle work outside the lock.
"""
from __future__ import annotations

import itertools
import threading
from dataclasses import dataclass, field, replace
from typing import Generic, Optional, TypeVar

from agent.cancellation import CancelToken
from agent.wizard import TaskRequest, WizardEvent, WizardSession, WizardStep
from engine.interval import IntervalRange
from engine.policy import Policy
from purity.cache import ClassificationCache
from schemas.domain import Classification
from schemas.errors import TaskAlreadyRunning, ValidationError

C = TypeVar("C")

NO_WIZARD = "Start the configuration first with /autoip"
STALE_WIZARD = "This configuration has expired, use /autoip again"


@dataclass
class TaskHandle:
    """One live auto-apply run.  ``attempts`` is written only by its controller."""
    policy: Policy
    account_name: str
    interval: IntervalRange
    chat_id: int
    generation: int
    cancel: CancelToken = field(default_factory=CancelToken)
    active: bool = True
    attempts: int = 0


class SessionState(Generic[C]):
    """Lock-guarded session record.  ``C`` is the per-account client type."""

    def __init__(self, clients: dict[str, C], current: Optional[str] = None):
        if not clients:
            raise ValueError("at least one account client is required")
        self._lock = threading.Lock()
        self._clients = dict(clients)
        self._current = current if current in self._clients else next(iter(self._clients))
        self._wizard: Optional[WizardSession] = None
        self._task: Optional[TaskHandle] = None
        self._cache = ClassificationCache()
        self._generations = itertools.count(1)

    # ── Accounts ─────────────────────────────────────────────────

    def account_names(self) -> list[str]:
        return list(self._clients)

    def current(self) -> tuple[str, C]:
        with self._lock:
            return self._current, self._clients[self._current]

    def client_for(self, name: str) -> Optional[C]:
        return self._clients.get(name)

    def switch_account(self, name: str) -> C:
        with self._lock:
            if name not in self._clients:
                raise ValidationError(f"Account does not exist: {name}")
            self._current = name
            return self._clients[name]

    # ── Classification cache ─────────────────────────────────────

    def remember(self, classification: Classification) -> None:
        with self._lock:
            self._cache.put(classification)

    def classification_for(self, address: str) -> Optional[Classification]:
        with self._lock:
            return self._cache.get(address)

    def cache_stats(self) -> dict:
        with self._lock:
            return self._cache.stats()

    # ── Wizard ───────────────────────────────────────────────────

    def begin_wizard(self, chat_id: int) -> WizardSession:
        """Start a fresh wizard, superseding any previous one."""
        with self._lock:
            if self._task is not None and self._task.active:
                raise TaskAlreadyRunning("An auto-apply task is already running, use /stopauto first")
            self._wizard = WizardSession(generation=next(self._generations), chat_id=chat_id)
            return replace(self._wizard)

    def wizard_step(self) -> Optional[WizardStep]:
        with self._lock:
            return self._wizard.step if self._wizard else None

    def _live_wizard(self, generation: Optional[int]) -> WizardSession:
        if self._wizard is None:
            raise ValidationError(NO_WIZARD)
        if generation is not None and generation != self._wizard.generation:
            raise ValidationError(STALE_WIZARD)
        return self._wizard

    def apply_wizard_event(self, event: WizardEvent) -> tuple[WizardSession, Optional[TaskRequest]]:
        """Apply a button event; a stale or out-of-order event changes nothing."""
        with self._lock:
            if event.generation is None and self._wizard is not None:
                raise ValidationError(STALE_WIZARD)
            wizard = self._live_wizard(event.generation)
            scratch = replace(wizard)
            request = scratch.apply(event, self._clients)
            self._wizard = scratch
            return replace(scratch), request

    def enter_interval(self, text: str) -> WizardSession:
        """Free-text input for the interval step of the current wizard."""
        with self._lock:
            wizard = self._live_wizard(None)
            scratch = replace(wizard)
            scratch.enter_interval(text)
            self._wizard = scratch
            return replace(scratch)

    def cancel_wizard(self, generation: Optional[int]) -> None:
        with self._lock:
            if generation is None and self._wizard is not None:
                raise ValidationError(STALE_WIZARD)
            self._live_wizard(generation)
            self._wizard = None

    def pending_request(self, generation: Optional[int]) -> TaskRequest:
        """The confirmed-but-not-started request awaiting a reconciliation choice."""
        with self._lock:
            if generation is None and self._wizard is not None:
                raise ValidationError(STALE_WIZARD)
            wizard = self._live_wizard(generation)
            if wizard.request is None:
                raise ValidationError("Confirm the configuration first")
            return wizard.request

    # ── Task ─────────────────────────────────────────────────────

    def start_task(self, request: TaskRequest) -> TaskHandle:
        """Single-flight: rejected while another task is active; consumes the wizard."""
        with self._lock:
            if self._task is not None and self._task.active:
                raise TaskAlreadyRunning("An auto-apply task is already running, use /stopauto first")
            wizard = self._live_wizard(request.generation)
            if wizard.request is not request:
                raise ValidationError(STALE_WIZARD)
            handle = TaskHandle(
                policy=request.policy,
                account_name=request.account_name,
                interval=request.interval,
                chat_id=request.chat_id,
                generation=next(self._generations),
            )
            self._task = handle
            self._wizard = None
            return handle

    def active_task(self) -> Optional[TaskHandle]:
        with self._lock:
            if self._task is not None and self._task.active:
                return self._task
            return None

    def stop_task(self) -> Optional[TaskHandle]:
        """Cancel and clear the active task; None when nothing is running."""
        with self._lock:
            handle = self._task
            if handle is None or not handle.active:
                return None
            handle.cancel.cancel()
            handle.active = False
            self._task = None
            return handle

    def finish_task(self, handle: TaskHandle, classification: Optional[Classification] = None) -> bool:
        """Controller-side completion.  No-op (False) if *handle* is no longer current."""
        with self._lock:
            handle.active = False
            if classification is not None:
                self._cache.put(classification)
            if self._task is not handle:
                return False
            self._task = None
            return True
