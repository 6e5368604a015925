# keyboards.py — inline keyboard layouts
#
# Every wizard button carries the wizard generation that rendered it
# (see agent/wizard.py for the callback grammar).
# ──────────────────────────────────────────────────────────────────

from __future__ import annotations

from typing import Any, Iterable, Optional

from agent.wizard import (
    ANY_ORIGIN_VALUE,
    THRESHOLD_CHOICES,
    UNLIMITED_VALUE,
    SubAction,
    callback_data,
)
from schemas.domain import Resource

Keyboard = dict[str, Any]


def button(text: str, data: str) -> dict[str, str]:
    return {"text": text, "callback_data": data}


def url_button(text: str, url: str) -> dict[str, str]:
    return {"text": text, "url": url}


def inline_keyboard(*rows: list[dict[str, str]]) -> Keyboard:
    return {"inline_keyboard": [list(row) for row in rows]}


# ── Accounts & IP lists ──────────────────────────────────────────

def accounts_keyboard(accounts: Iterable[tuple[str, str]], current: str) -> Keyboard:
    rows = []
    for name, region in accounts:
        label = f"{name} ({region})"
        if name == current:
            label = "✅ " + label
        rows.append([button(label, f"use:{name}")])
    return inline_keyboard(*rows)


def ip_list_keyboard(resources: list[Resource]) -> Keyboard:
    rows = [
        [button("🔍 Check", f"check:{r.address}"), button("🗑 Delete", f"del:{r.address}")]
        for r in resources
    ]
    rows.append([button("➕ New IP", "newip:1"), button("🔄 Refresh", "refresh:1")])
    return inline_keyboard(*rows)


def empty_list_keyboard() -> Keyboard:
    return inline_keyboard([button("➕ New IP", "newip:1")])


def created_keyboard(address: str, *, check_url: Optional[str] = None) -> Keyboard:
    """``check_url`` adds a link to the manual purity lookup page."""
    rows = []
    if check_url:
        rows.append([url_button("🔍 Check on ippure", check_url.format(ip=address))])
    rows.append([button("📋 View list", "refresh:1")])
    return inline_keyboard(*rows)


# ── Wizard ────────────────────────────────────────────────────────

def _cancel_row(generation: int) -> list[dict[str, str]]:
    return [button("❌ Cancel", callback_data(SubAction.CANCEL, "", generation))]


def wizard_accounts_keyboard(accounts: Iterable[tuple[str, str]], generation: int) -> Keyboard:
    rows = [
        [button(f"{name} ({region})", callback_data(SubAction.ACCOUNT, name, generation))]
        for name, region in accounts
    ]
    rows.append(_cancel_row(generation))
    return inline_keyboard(*rows)


def purity_keyboard(generation: int) -> Keyboard:
    choices = [
        button(f"{t}%", callback_data(SubAction.PURITY, str(t), generation))
        for t in THRESHOLD_CHOICES
    ]
    return inline_keyboard(
        choices[:3],
        choices[3:] + [button("Unlimited", callback_data(SubAction.PURITY, UNLIMITED_VALUE, generation))],
        _cancel_row(generation),
    )


def origin_keyboard(generation: int) -> Keyboard:
    return inline_keyboard(
        [
            button("🏠 Native IP", callback_data(SubAction.ORIGIN, "native", generation)),
            button("📡 Non-native IP", callback_data(SubAction.ORIGIN, "nonnative", generation)),
        ],
        [button("🔓 Any", callback_data(SubAction.ORIGIN, ANY_ORIGIN_VALUE, generation))],
        _cancel_row(generation),
    )


def mode_keyboard(generation: int) -> Keyboard:
    return inline_keyboard(
        [button("✅ Match all conditions", callback_data(SubAction.MODE, "all", generation))],
        [button("☑️ Match any condition", callback_data(SubAction.MODE, "any", generation))],
        _cancel_row(generation),
    )


def confirm_keyboard(generation: int) -> Keyboard:
    return inline_keyboard(
        [button("▶️ Start auto-apply", callback_data(SubAction.CONFIRM, "", generation))],
        _cancel_row(generation),
    )


def reconcile_keyboard(generation: int) -> Keyboard:
    return inline_keyboard(
        [button("🗑 Delete all, then start", callback_data(SubAction.PURGE_ALL, "", generation))],
        [button("▶️ Keep them and start", callback_data(SubAction.KEEP_AND_START, "", generation))],
        _cancel_row(generation),
    )
