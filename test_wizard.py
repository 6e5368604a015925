"""Auto-apply wizard: callback grammar and the six-step state machine."""
from __future__ import annotations

import pytest

from agent.wizard import (
    SubAction,
    WizardEvent,
    WizardSession,
    WizardStep,
    callback_data,
    parse_callback,
)
from engine.interval import IntervalRange
from engine.policy import UNLIMITED, MatchMode, OriginRequirement
from purity.ippure import NATIVE, NON_NATIVE
from schemas.errors import ValidationError

ACCOUNTS = ["tokyo", "osaka"]


def _wizard_at_confirm(threshold="20", origin="native", mode="all", interval="60-120") -> WizardSession:
    w = WizardSession(generation=3, chat_id=99)
    w.select_account("tokyo", ACCOUNTS)
    w.select_threshold(threshold)
    w.select_origin(origin)
    w.select_mode(mode)
    w.enter_interval(interval)
    return w


# ── Callback grammar ──────────────────────────────────────────────

def test_callback_data_layout():
    assert callback_data(SubAction.PURITY, "20", 7) == "autoip:purity:20:7"
    assert callback_data(SubAction.CANCEL, "", 7) == "autoip:cancel::7"


def test_parse_callback_reads_generation():
    assert parse_callback("autoip:account:tokyo:7") == WizardEvent("account", "tokyo", 7)
    assert parse_callback("autoip:cancel::12") == WizardEvent("cancel", "", 12)


def test_parse_callback_keeps_colons_in_value():
    assert parse_callback("autoip:account:a:b:5") == WizardEvent("account", "a:b", 5)


def test_parse_callback_without_generation_is_unversioned():
    assert parse_callback("autoip:purity:20").generation is None
    assert parse_callback("autoip:purity:20:x").generation is None
    assert parse_callback("autoip:purity:20:²").generation is None


@pytest.mark.parametrize("data", ["", "autoip", "autoip:purity", "use:tokyo:1"])
def test_parse_callback_rejects_malformed(data):
    with pytest.raises(ValidationError):
        parse_callback(data)


# ── Steps ─────────────────────────────────────────────────────────

def test_happy_path_builds_request():
    w = _wizard_at_confirm()
    assert w.step is WizardStep.CONFIRM
    request = w.confirm()
    assert request.account_name == "tokyo"
    assert request.policy.score_threshold == 20
    assert request.policy.origin == OriginRequirement.required(NATIVE)
    assert request.policy.mode is MatchMode.ALL
    assert request.interval == IntervalRange(60, 120)
    assert request.chat_id == 99
    assert request.generation == 3


def test_unlimited_and_any_choices():
    request = _wizard_at_confirm(threshold="any", origin="any", mode="any").confirm()
    assert request.policy.score_threshold is UNLIMITED
    assert request.policy.origin.is_any
    assert request.policy.mode is MatchMode.ANY


def test_non_native_origin():
    request = _wizard_at_confirm(origin="nonnative").confirm()
    assert request.policy.origin.label == NON_NATIVE


def test_out_of_order_event_is_rejected_without_side_effects():
    w = WizardSession(generation=1, chat_id=99)
    with pytest.raises(ValidationError):
        w.select_threshold("20")
    assert w.step is WizardStep.ACCOUNT
    assert w.score_threshold is UNLIMITED


def test_unknown_account_is_rejected():
    w = WizardSession(generation=1, chat_id=99)
    with pytest.raises(ValidationError, match="Unknown account"):
        w.select_account("frankfurt", ACCOUNTS)
    assert w.step is WizardStep.ACCOUNT


@pytest.mark.parametrize("value", ["", "101", "-1", "abc", "²", "٣", " 20", "20\n"])
def test_invalid_threshold(value):
    w = WizardSession(generation=1, chat_id=99)
    w.select_account("tokyo", ACCOUNTS)
    with pytest.raises(ValidationError):
        w.select_threshold(value)
    assert w.step is WizardStep.PURITY


def test_invalid_interval_keeps_interval_step():
    w = WizardSession(generation=1, chat_id=99)
    w.select_account("tokyo", ACCOUNTS)
    w.select_threshold("20")
    w.select_origin("any")
    w.select_mode("all")
    with pytest.raises(ValidationError):
        w.enter_interval("5")
    assert w.step is WizardStep.INTERVAL


def test_double_confirm_is_rejected():
    w = _wizard_at_confirm()
    w.confirm()
    with pytest.raises(ValidationError, match="Already confirmed"):
        w.confirm()


def test_apply_routes_events():
    w = WizardSession(generation=1, chat_id=99)
    assert w.apply(WizardEvent(SubAction.ACCOUNT, "osaka", 1), ACCOUNTS) is None
    w.apply(WizardEvent(SubAction.PURITY, "10", 1), ACCOUNTS)
    w.apply(WizardEvent(SubAction.ORIGIN, "native", 1), ACCOUNTS)
    w.apply(WizardEvent(SubAction.MODE, "any", 1), ACCOUNTS)
    w.enter_interval("30")
    request = w.apply(WizardEvent(SubAction.CONFIRM, "", 1), ACCOUNTS)
    assert request is not None and request.account_name == "osaka"


def test_apply_rejects_unknown_subaction():
    w = WizardSession(generation=1, chat_id=99)
    with pytest.raises(ValidationError):
        w.apply(WizardEvent("rewind", "", 1), ACCOUNTS)


def test_confirm_requires_every_answer():
    w = WizardSession(generation=1, chat_id=99)
    w.select_account("tokyo", ACCOUNTS)
    w.step = WizardStep.CONFIRM
    with pytest.raises(ValidationError, match="incomplete"):
        w.confirm()
    assert w.request is None
