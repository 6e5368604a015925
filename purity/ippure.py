"""IPPure purity oracle — classifies an IP address by scraping ippure.com.

The lookup page reports four fields, which are extracted with the same
label patterns the page uses (Chinese or English UI):

    IPPure系数  7% 极度纯净     → score_text="7%", level="极度纯净"
    IP属性      机房IP          → category="Data Center"
    IP来源      原生IP          → origin="Native IP"

A page with none of the fields is a failed lookup, not an Unknown verdict.
Slow (several seconds) and unreliable by nature.  No retry here: the
controller's outer loop owns retries.
"""
from __future__ import annotations

import html
import logging
import re
from typing import Protocol

import requests

from schemas.domain import UNKNOWN, Classification
from schemas.errors import ClassifierError

log = logging.getLogger(__name__)

DEFAULT_CHECK_URL = "https://ippure.com/?ip={ip}"
DEFAULT_CHECK_TIMEOUT = 60.0

_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)

# ── Label normalisation ──────────────────────────────────────────

NATIVE = "Native IP"
NON_NATIVE = "Non-native IP"
BROADCAST = "Broadcast IP"

_ORIGIN_LABELS = {
    "原生IP": NATIVE,
    "Native IP": NATIVE,
    "非原生IP": NON_NATIVE,
    "广播IP": BROADCAST,
    "Broadcast": BROADCAST,
}

_CATEGORY_LABELS = {
    "机房IP": "Data Center",
    "Data Center": "Data Center",
    "住宅IP": "Residential",
    "Residential": "Residential",
}

_PURITY_RE = re.compile(r"IPPure系数\s*\n?\s*(\d+)%\s*([^\n]*)")
_CATEGORY_RE = re.compile(r"IP属性\s*\n?\s*(机房IP|住宅IP|Data Center|Residential)")
_ORIGIN_RE = re.compile(r"IP来源\s*\n?\s*(原生IP|非原生IP|广播IP|Native IP|Broadcast)")

_DROP_BLOCKS_RE = re.compile(r"<(script|style)[^>]*>.*?</\1>", re.S | re.I)
_TAG_RE = re.compile(r"<[^>]+>")
_BLANK_LINES_RE = re.compile(r"\n\s*\n+")


class Classifier(Protocol):
    """Anything that can classify an address within a time bound."""

    def classify(self, address: str, timeout: float) -> Classification:
        """Return the verdict for *address* or raise ClassifierError."""
        ...


def page_text(markup: str) -> str:
    """Roughly what ``document.body.innerText`` would give for *markup*."""
    text = _DROP_BLOCKS_RE.sub("", markup)
    text = _TAG_RE.sub("\n", text)
    text = html.unescape(text)
    lines = (line.strip() for line in text.splitlines())
    return _BLANK_LINES_RE.sub("\n", "\n".join(line for line in lines if line))


def extract_classification(address: str, text: str) -> Classification:
    """Pull the four purity fields out of page text; missing → Unknown."""
    score_text = level = category = origin = UNKNOWN

    m = _PURITY_RE.search(text)
    if m:
        score_text = f"{m.group(1)}%"
        level = m.group(2).strip() or UNKNOWN
    m = _CATEGORY_RE.search(text)
    if m:
        category = _CATEGORY_LABELS[m.group(1)]
    m = _ORIGIN_RE.search(text)
    if m:
        origin = _ORIGIN_LABELS[m.group(1)]

    return Classification(
        address=address,
        score_text=score_text,
        level=level,
        category=category,
        origin=origin,
    )


class IPPureChecker:
    """Classifier backed by an HTTP fetch of the ippure lookup page."""

    def __init__(self, url_template: str = DEFAULT_CHECK_URL):
        self.url_template = url_template

    def classify(self, address: str, timeout: float = DEFAULT_CHECK_TIMEOUT) -> Classification:
        url = self.url_template.format(ip=address)
        try:
            r = requests.get(url, headers={"User-Agent": _USER_AGENT}, timeout=timeout)
            r.raise_for_status()
        except requests.RequestException as e:
            raise ClassifierError(f"purity lookup failed: {e}") from e

        info = extract_classification(address, page_text(r.text))
        if all(v == UNKNOWN for v in (info.score_text, info.category, info.origin)):
            raise ClassifierError("no purity data on page")
        log.debug("ippure %s → %s (%s)", address, info.short(), info.level)
        return info


def format_classification(info: Classification) -> str:
    """Multi-line operator-facing summary."""
    return (
        f"IP: {info.address}\n\n"
        f"📊 Purity: {info.score_text} ({info.level})\n"
        f"🏢 Type: {info.category}\n"
        f"🌐 Origin: {info.origin}"
    )
