"""Bot configuration — INI file + .env overrides, validated with pydantic.

File layout::

    token = 123456:ABC...          # global keys come first, before any section
    chat_id = 42
    auto_check_ip = true

    [tokyo]                        # one section per OCI account
    user = ocid1.user...
    fingerprint = aa:bb:...
    tenancy = ocid1.tenancy...
    region = ap-tokyo-1
    key_file = ~/.oci/tokyo.pem
    compartment_id = ...           # optional, defaults to tenancy

IPBOT_TOKEN / IPBOT_CHAT_ID in the environment (or a .env file) override
the file's token and chat_id.
"""
from __future__ import annotations

import configparser
import os
from pathlib import Path
from typing import Any

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from purity.ippure import DEFAULT_CHECK_URL

_GLOBAL_SECTION = "__global__"

_TIMEOUT_KEYS = {
    "create_timeout": "create",
    "wait_timeout": "wait_ready",
    "check_timeout": "check",
    "delete_timeout": "delete",
    "list_timeout": "list",
    "poll_interval": "poll",
}


class ConfigError(ValueError):
    """Configuration file missing, unreadable or invalid."""


class AccountSettings(BaseModel):
    """One OCI account.  Immutable once loaded."""
    model_config = ConfigDict(frozen=True)

    name: str
    user: str
    fingerprint: str
    tenancy: str
    region: str
    key_file: str
    compartment_id: str = ""

    @model_validator(mode="before")
    @classmethod
    def _default_compartment(cls, data: Any) -> Any:
        if isinstance(data, dict) and not data.get("compartment_id"):
            data = {**data, "compartment_id": data.get("tenancy", "")}
        return data

    @field_validator("user", "fingerprint", "tenancy", "region", "key_file")
    @classmethod
    def _required(cls, value: str, info) -> str:
        value = (value or "").strip()
        if not value:
            raise ValueError(f"{info.field_name} is required")
        return value

    @field_validator("key_file")
    @classmethod
    def _expand_home(cls, value: str) -> str:
        return os.path.expanduser(value)


class Timeouts(BaseModel):
    """Bounds (seconds) for every collaborator call."""
    create: float = 120.0
    wait_ready: float = 60.0
    check: float = 60.0
    delete: float = 30.0
    list: float = 30.0
    poll: float = 2.0


class BotSettings(BaseModel):
    token: str
    chat_id: int
    auto_check_ip: bool = False
    # Classifier failures keep the fresh IP unless this is set.
    delete_on_check_failure: bool = False
    check_url: str = DEFAULT_CHECK_URL
    timeouts: Timeouts = Field(default_factory=Timeouts)
    accounts: list[AccountSettings] = Field(default_factory=list)

    @field_validator("token")
    @classmethod
    def _token_required(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("token is required")
        return value.strip()

    @field_validator("chat_id")
    @classmethod
    def _chat_id_required(cls, value: int) -> int:
        if value == 0:
            raise ValueError("chat_id is required")
        return value

    @field_validator("accounts")
    @classmethod
    def _at_least_one(cls, value: list[AccountSettings]) -> list[AccountSettings]:
        if not value:
            raise ValueError("at least one OCI account section is required")
        names = [a.name for a in value]
        if len(set(names)) != len(names):
            raise ValueError("account section names must be unique")
        return value


# ── Loading ───────────────────────────────────────────────────────

def parse_conf(text: str) -> dict[str, Any]:
    """INI text → raw dict ready for BotSettings (globals + accounts)."""
    parser = configparser.ConfigParser(interpolation=None, inline_comment_prefixes=("#", ";"))
    try:
        parser.read_string(f"[{_GLOBAL_SECTION}]\n{text}")
    except configparser.Error as e:
        raise ConfigError(f"failed to parse config: {e}") from e

    globals_ = dict(parser[_GLOBAL_SECTION])
    raw: dict[str, Any] = {
        "token": globals_.get("token", ""),
        "chat_id": globals_.get("chat_id") or 0,
        "accounts": [],
    }
    for key in ("auto_check_ip", "delete_on_check_failure", "check_url"):
        if globals_.get(key):
            raw[key] = globals_[key]

    timeouts = {
        field: globals_[key] for key, field in _TIMEOUT_KEYS.items() if globals_.get(key)
    }
    if timeouts:
        raw["timeouts"] = timeouts

    for section in parser.sections():
        if section == _GLOBAL_SECTION:
            continue
        raw["accounts"].append({"name": section, **dict(parser[section])})
    return raw


def _apply_env_overrides(raw: dict[str, Any]) -> dict[str, Any]:
    token = os.environ.get("IPBOT_TOKEN")
    chat_id = os.environ.get("IPBOT_CHAT_ID")
    if token:
        raw["token"] = token
    if chat_id:
        raw["chat_id"] = chat_id
    return raw


def load_settings(path: str | Path = "conf", *, use_env: bool = True) -> BotSettings:
    """Read, merge and validate; every failure surfaces as ConfigError."""
    if use_env:
        load_dotenv()
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"failed to open config file: {e}") from e

    raw = parse_conf(text)
    if use_env:
        raw = _apply_env_overrides(raw)
    try:
        return BotSettings.model_validate(raw)
    except ValidationError as e:
        raise ConfigError(_describe(e)) from e


def _describe(error: ValidationError) -> str:
    lines = []
    for item in error.errors():
        where = ".".join(str(p) for p in item.get("loc", ()))
        lines.append(f"{where}: {item.get('msg')}")
    return "configuration error: " + "; ".join(lines)
