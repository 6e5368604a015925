# telegram_api.py — minimal Telegram Bot API client
#
# Only the four calls the bot needs: getUpdates (long poll), sendMessage,
# answerCallbackQuery, setMyCommands.  Throttles and 5xx are retried with
# a linear backoff; everything else surfaces as TelegramError.
# ──────────────────────────────────────────────────────────────────

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import requests

log = logging.getLogger(__name__)

API = "https://api.telegram.org"
MAX_MESSAGE_LENGTH = 4096
_RETRY_STATUS = (429, 500, 502, 503, 504)


class TelegramError(RuntimeError):
    """Bot API call failed (HTTP error, ok=false, or retries exhausted)."""


@dataclass
class TelegramClient:
    token: str
    base_url: str = API
    request_timeout: float = 30.0

    def _call(self, method: str, payload: Optional[Dict[str, Any]] = None, *, timeout: Optional[float] = None) -> Any:
        url = f"{self.base_url}/bot{self.token}/{method}"
        timeout = timeout or self.request_timeout

        for attempt in range(5):
            try:
                r = requests.post(url, json=payload or {}, timeout=timeout)
            except requests.RequestException as e:
                # The exception text carries the URL, which embeds the token.
                log.warning("%s failed (attempt %d): %s", method, attempt + 1, type(e).__name__)
                time.sleep(1.5 * (attempt + 1))
                continue
            if r.status_code in _RETRY_STATUS:
                retry_after = _retry_after(r)
                time.sleep(retry_after if retry_after is not None else 1.5 * (attempt + 1))
                continue
            return _unwrap(method, r)

        raise TelegramError(f"{method}: retries exhausted")

    # ── Bot API methods ──────────────────────────────────────────

    def get_updates(self, offset: Optional[int] = None, timeout: int = 50) -> List[Dict[str, Any]]:
        payload: Dict[str, Any] = {
            "timeout": timeout,
            "allowed_updates": ["message", "callback_query"],
        }
        if offset is not None:
            payload["offset"] = offset
        return self._call("getUpdates", payload, timeout=timeout + 10)

    def send_message(
        self,
        chat_id: int,
        text: str,
        *,
        reply_markup: Optional[Dict[str, Any]] = None,
        disable_preview: bool = True,
    ) -> Dict[str, Any]:
        if len(text) > MAX_MESSAGE_LENGTH:
            text = text[: MAX_MESSAGE_LENGTH - 1] + "…"
        payload: Dict[str, Any] = {
            "chat_id": chat_id,
            "text": text,
            "disable_web_page_preview": disable_preview,
        }
        if reply_markup is not None:
            payload["reply_markup"] = reply_markup
        return self._call("sendMessage", payload)

    def answer_callback(self, callback_id: str, text: str = "") -> None:
        self._call("answerCallbackQuery", {"callback_query_id": callback_id, "text": text})

    def set_my_commands(self, commands: List[tuple[str, str]]) -> None:
        self._call(
            "setMyCommands",
            {"commands": [{"command": c, "description": d} for c, d in commands]},
        )

    def get_me(self) -> Dict[str, Any]:
        return self._call("getMe")


def _retry_after(r: requests.Response) -> Optional[float]:
    try:
        return float(r.json()["parameters"]["retry_after"])
    except (ValueError, KeyError, TypeError):
        return None


def _unwrap(method: str, r: requests.Response) -> Any:
    try:
        data = r.json()
    except ValueError as e:
        raise TelegramError(f"{method}: HTTP {r.status_code}, non-JSON body") from e
    if not r.ok or not data.get("ok"):
        raise TelegramError(f"{method}: {data.get('description') or f'HTTP {r.status_code}'}")
    return data.get("result")
