"""Auto-apply wizard — six fixed steps that collect an acceptance Policy.

    ACCOUNT → PURITY → ORIGIN → MODE → INTERVAL → CONFIRM

Every step accepts exactly one event and moves forward; there is no way
back.  Button events carry the generation of the wizard that rendered
them, so a tap on a message from a cancelled or superseded wizard never
lands on the current one.

Callback grammar::

    autoip:<subaction>:<value>:<generation>
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Iterable, Optional

from engine.interval import IntervalRange, parse_interval
from engine.policy import UNLIMITED, MatchMode, OriginRequirement, Policy
from purity.ippure import NATIVE, NON_NATIVE
from schemas.errors import ValidationError

DOMAIN = "autoip"
TOTAL_STEPS = 5  # CONFIRM is a summary, not a question


class WizardStep(IntEnum):
    ACCOUNT = 1
    PURITY = 2
    ORIGIN = 3
    MODE = 4
    INTERVAL = 5
    CONFIRM = 6


class SubAction:
    ACCOUNT = "account"
    PURITY = "purity"
    ORIGIN = "origin"
    MODE = "mode"
    CONFIRM = "confirm"
    CANCEL = "cancel"
    PURGE_ALL = "delall"
    KEEP_AND_START = "keepstart"


# Button choices offered in steps 2 and 3.
THRESHOLD_CHOICES: tuple[int, ...] = (10, 20, 30, 50)
UNLIMITED_VALUE = "any"
ORIGIN_CHOICES: dict[str, str] = {
    "native": NATIVE,
    "nonnative": NON_NATIVE,
}
ANY_ORIGIN_VALUE = "any"

_DIGITS_RE = re.compile(r"[0-9]+")


# ── Callback encoding ─────────────────────────────────────────────

@dataclass(frozen=True)
class WizardEvent:
    subaction: str
    value: str
    generation: Optional[int]


def callback_data(subaction: str, value: str = "", generation: int = 0) -> str:
    return f"{DOMAIN}:{subaction}:{value}:{generation}"


def parse_callback(data: str) -> WizardEvent:
    """``autoip:account:tokyo:7`` → WizardEvent("account", "tokyo", 7).

    A missing or non-numeric generation parses as None, which never
    matches a live wizard.
    """
    parts = data.split(":")
    if len(parts) < 3 or parts[0] != DOMAIN:
        raise ValidationError(f"Malformed wizard action: {data!r}")
    subaction = parts[1]
    if len(parts) == 3:
        return WizardEvent(subaction, parts[2], None)
    generation = int(parts[-1]) if _DIGITS_RE.fullmatch(parts[-1]) else None
    return WizardEvent(subaction, ":".join(parts[2:-1]), generation)


# ── Wizard state ──────────────────────────────────────────────────

@dataclass(frozen=True)
class TaskRequest:
    """A confirmed wizard: everything needed to start one automation task."""
    policy: Policy
    account_name: str
    interval: IntervalRange
    chat_id: int
    generation: int


@dataclass
class WizardSession:
    generation: int
    chat_id: int
    step: WizardStep = WizardStep.ACCOUNT
    account_name: Optional[str] = None
    score_threshold: Optional[int] = UNLIMITED
    origin: Optional[OriginRequirement] = None
    mode: Optional[MatchMode] = None
    interval: Optional[IntervalRange] = None
    request: Optional[TaskRequest] = field(default=None)

    def _expect(self, step: WizardStep) -> None:
        if self.step is not step:
            raise ValidationError(
                f"This option belongs to step {int(step)}, the wizard is at step {int(self.step)}"
            )

    def _advance(self) -> None:
        self.step = WizardStep(self.step + 1)

    # ── Transitions ──────────────────────────────────────────────

    def select_account(self, name: str, known: Iterable[str]) -> None:
        self._expect(WizardStep.ACCOUNT)
        if name not in set(known):
            raise ValidationError(f"Unknown account: {name}")
        self.account_name = name
        self._advance()

    def select_threshold(self, value: str) -> None:
        self._expect(WizardStep.PURITY)
        if value == UNLIMITED_VALUE:
            threshold = UNLIMITED
        elif _DIGITS_RE.fullmatch(value) and 0 <= int(value) <= 100:
            threshold = int(value)
        else:
            raise ValidationError(f"Invalid purity threshold: {value}")
        self.score_threshold = threshold
        self._advance()

    def select_origin(self, value: str) -> None:
        self._expect(WizardStep.ORIGIN)
        if value == ANY_ORIGIN_VALUE:
            origin = OriginRequirement.any()
        elif value in ORIGIN_CHOICES:
            origin = OriginRequirement.required(ORIGIN_CHOICES[value])
        else:
            raise ValidationError(f"Invalid origin requirement: {value}")
        self.origin = origin
        self._advance()

    def select_mode(self, value: str) -> None:
        self._expect(WizardStep.MODE)
        try:
            self.mode = MatchMode(value)
        except ValueError:
            raise ValidationError(f"Invalid match mode: {value}") from None
        self._advance()

    def enter_interval(self, text: str) -> None:
        self._expect(WizardStep.INTERVAL)
        self.interval = parse_interval(text)
        self._advance()

    def confirm(self) -> TaskRequest:
        self._expect(WizardStep.CONFIRM)
        if self.request is not None:
            raise ValidationError("Already confirmed, choose how to handle the existing IPs")
        if not (self.account_name and self.origin and self.mode and self.interval):
            raise ValidationError("Configuration is incomplete, start again with /autoip")
        self.request = TaskRequest(
            policy=Policy(
                score_threshold=self.score_threshold,
                origin=self.origin,
                mode=self.mode,
            ),
            account_name=self.account_name,
            interval=self.interval,
            chat_id=self.chat_id,
            generation=self.generation,
        )
        return self.request

    def apply(self, event: WizardEvent, known_accounts: Iterable[str]) -> Optional[TaskRequest]:
        """Route a button event to its transition.  Returns the request on confirm."""
        if event.subaction == SubAction.ACCOUNT:
            self.select_account(event.value, known_accounts)
        elif event.subaction == SubAction.PURITY:
            self.select_threshold(event.value)
        elif event.subaction == SubAction.ORIGIN:
            self.select_origin(event.value)
        elif event.subaction == SubAction.MODE:
            self.select_mode(event.value)
        elif event.subaction == SubAction.CONFIRM:
            return self.confirm()
        else:
            raise ValidationError(f"Unknown wizard action: {event.subaction}")
        return None
