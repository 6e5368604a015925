# bot.py — chat front end for the reserved-IP bot
#
# One foreground flow: long-poll updates, handle each one to completion,
# repeat.  The only background work is the auto-apply controller thread,
# which talks to the operator through notify().
#
# Only the configured admin chat is served.
# ──────────────────────────────────────────────────────────────────

from __future__ import annotations

import ipaddress
import logging
import threading
import time
from datetime import datetime, timezone
from typing import Any, Callable, Optional, Protocol

from agent.controller import AutoApplyController
from agent.reconcile import check_existing
from agent.session import SessionState, TaskHandle
from agent.wizard import (
    DOMAIN,
    TOTAL_STEPS,
    SubAction,
    TaskRequest,
    WizardSession,
    WizardStep,
    parse_callback,
)
from collectors.oci_client import find_by_address
from collectors.provider import ReservationProvider
from config.settings import BotSettings
from engine.policy import MatchMode, Policy
from purity.ippure import Classifier, format_classification
from schemas.domain import Classification, Resource, ResourceState
from schemas.errors import ClassifierError, ProviderError, TaskAlreadyRunning, ValidationError
from src import keyboards
from src.telegram_api import TelegramError

logger = logging.getLogger("ipbot")

COMMANDS: list[tuple[str, str]] = [
    ("start", "Show help"),
    ("help", "Show help"),
    ("accounts", "Switch OCI account"),
    ("newip", "Create a reserved IP"),
    ("listip", "List reserved IPs"),
    ("delip", "Delete a reserved IP"),
    ("checkip", "Check IP purity"),
    ("autoip", "Auto-apply until a clean IP is found"),
    ("stopauto", "Stop auto-apply"),
    ("id", "Show your user ID"),
]

_MODE_LABELS = {
    MatchMode.ALL: "Match all conditions",
    MatchMode.ANY: "Match any condition",
}


class ChatTransport(Protocol):
    def send_message(self, chat_id: int, text: str, *, reply_markup: Optional[dict] = None) -> Any:
        ...

    def answer_callback(self, callback_id: str, text: str = "") -> None:
        ...

    def get_updates(self, offset: Optional[int] = None, timeout: int = 50) -> list[dict]:
        ...

    def set_my_commands(self, commands: list[tuple[str, str]]) -> None:
        ...

    def get_me(self) -> dict:
        ...


def _log_command(command: str, chat_id: int, **extra) -> None:
    """Emit a structured log entry for every operator action."""
    logger.info(
        "command_invocation",
        extra={
            "command": command,
            "chat_id": chat_id,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            **extra,
        },
    )


# ══════════════════════════════════════════════════════════════════
# Text rendering
# ══════════════════════════════════════════════════════════════════

def format_ip_list(
    account: str,
    region: str,
    resources: list[Resource],
    lookup: Callable[[str], Optional[Classification]],
    highlight: str = "",
) -> str:
    if not resources:
        return f"📋 [{account}] {region}\n\nNo reserved IPs yet."

    lines = [f"📋 [{account}] {region}: {len(resources)} reserved IP(s)", ""]
    for i, r in enumerate(resources, start=1):
        marker = "⭐ " if highlight and r.address == highlight else ""
        line = f"{i}. {marker}{r.address or '(no address yet)'}"
        if r.state is not ResourceState.AVAILABLE:
            line += f" [{r.state.value}]"
        info = lookup(r.address) if r.address else None
        if info is not None:
            line += f"\n    {info.short()}"
        lines.append(line)
    return "\n".join(lines)


def format_policy(policy: Policy) -> str:
    return (
        f"📊 Purity: {policy.describe_threshold()}\n"
        f"🌐 Origin: {policy.origin.describe()}\n"
        f"🔀 Mode: {_MODE_LABELS[policy.mode]}"
    )


def format_wizard_summary(wizard: WizardSession) -> str:
    if wizard.origin is None or wizard.mode is None or wizard.interval is None:
        raise ValidationError("Configuration is incomplete, start again with /autoip")
    policy = Policy(score_threshold=wizard.score_threshold, origin=wizard.origin, mode=wizard.mode)
    return (
        "📝 Auto-apply configuration\n\n"
        f"🔑 Account: {wizard.account_name}\n"
        f"{format_policy(policy)}\n"
        f"⏱ Interval: {wizard.interval.describe()}\n\n"
        "Start now?"
    )


def _step_header(step: WizardStep) -> str:
    return f"🤖 Auto-apply setup ({int(step)}/{TOTAL_STEPS})"


def _chat_of(update: dict) -> Optional[int]:
    if "message" in update:
        return update["message"].get("chat", {}).get("id")
    query = update.get("callback_query") or {}
    return (query.get("message") or {}).get("chat", {}).get("id")


# ══════════════════════════════════════════════════════════════════
# Bot
# ══════════════════════════════════════════════════════════════════

class IPBot:
    """Routes chat updates to session, provider, classifier and controller."""

    def __init__(
        self,
        api: ChatTransport,
        settings: BotSettings,
        session: SessionState[ReservationProvider],
        classifier: Classifier,
        *,
        controller: Optional[AutoApplyController] = None,
    ):
        self.api = api
        self.settings = settings
        self.session = session
        self.classifier = classifier
        self.timeouts = settings.timeouts
        self.controller = controller or AutoApplyController(
            session,
            classifier,
            self.notify,
            timeouts=settings.timeouts,
            delete_on_check_failure=settings.delete_on_check_failure,
            on_match=self._on_match,
        )
        self._commands: dict[str, Callable[[int, str], None]] = {
            "start": self.cmd_help,
            "help": self.cmd_help,
            "accounts": self.cmd_accounts,
            "use": self.cmd_use,
            "newip": self.cmd_newip,
            "listip": self.cmd_listip,
            "delip": self.cmd_delip,
            "checkip": self.cmd_checkip,
            "autoip": self.cmd_autoip,
            "stopauto": self.cmd_stopauto,
            "id": self.cmd_id,
        }

    # ── Transport ────────────────────────────────────────────────

    def notify(self, chat_id: int, text: str, keyboard: Optional[dict] = None) -> None:
        """Send a message; delivery failures are logged, never raised."""
        try:
            self.api.send_message(chat_id, text, reply_markup=keyboard)
        except TelegramError as e:
            logger.warning("Failed to send message to %s: %s", chat_id, e)

    reply = notify

    def run(self, stop: threading.Event, poll_timeout: int = 50) -> None:
        """Long-poll until *stop* is set."""
        try:
            me = self.api.get_me()
            logger.info("Authorized on account @%s", me.get("username"))
        except TelegramError as e:
            logger.warning("getMe failed: %s", e)
        try:
            self.api.set_my_commands(COMMANDS)
        except TelegramError as e:
            logger.warning("Failed to register bot commands: %s", e)

        offset: Optional[int] = None
        while not stop.is_set():
            try:
                updates = self.api.get_updates(offset, timeout=poll_timeout)
            except TelegramError as e:
                logger.warning("getUpdates failed: %s", e)
                stop.wait(3)
                continue
            for update in updates:
                offset = update["update_id"] + 1
                self.handle_update(update)
        logger.info("Update loop stopped")

    def shutdown(self) -> None:
        handle = self.session.stop_task()
        if handle is not None:
            logger.info("Cancelled auto-apply on [%s] at shutdown", handle.account_name)
        logger.info("Purity cache at shutdown: %s", self.session.cache_stats())

    # ── Dispatch ─────────────────────────────────────────────────

    def handle_update(self, update: dict) -> None:
        try:
            if "callback_query" in update:
                self.handle_callback(update["callback_query"])
            elif "message" in update:
                self.handle_message(update["message"])
        except Exception as e:
            logger.exception("Failed to handle update %s", update.get("update_id"))
            chat_id = _chat_of(update)
            if chat_id is not None:
                self.reply(chat_id, f"❌ Internal error: {e}")

    def _authorized(self, user_id: Optional[int]) -> bool:
        return user_id == self.settings.chat_id

    def handle_message(self, message: dict) -> None:
        text = (message.get("text") or "").strip()
        if not text:
            return
        chat_id = message["chat"]["id"]
        user_id = (message.get("from") or {}).get("id")
        if not self._authorized(user_id):
            logger.warning("Rejected message from unauthorized user %s", user_id)
            self.reply(chat_id, f"⛔ You are not allowed to use this bot.\n\nYour ID: {user_id}")
            return

        if not text.startswith("/"):
            self.handle_text(chat_id, text)
            return

        command, _, args = text[1:].partition(" ")
        command = command.split("@", 1)[0].lower()
        handler = self._commands.get(command)
        if handler is None:
            self.reply(chat_id, "Unknown command. Use /help to see what I can do.")
            return
        _log_command(command, chat_id, command_args=args.strip())
        handler(chat_id, args.strip())

    def handle_callback(self, query: dict) -> None:
        user_id = (query.get("from") or {}).get("id")
        if not self._authorized(user_id):
            logger.warning("Rejected button press from unauthorized user %s", user_id)
            return
        self._answer(query["id"])

        message = query.get("message") or {}
        chat_id = (message.get("chat") or {}).get("id", user_id)
        data = query.get("data") or ""
        kind, _, value = data.partition(":")
        _log_command(f"button:{kind}", chat_id, callback_data=data)

        if kind == DOMAIN:
            self.handle_wizard_callback(chat_id, data)
        elif kind == "use":
            self.switch_account(chat_id, value)
        elif kind == "del":
            self.delete_ip(chat_id, value)
        elif kind == "check":
            self.check_ip(chat_id, value, refresh_list=True)
        elif kind == "newip":
            self.create_ip(chat_id)
        elif kind == "refresh":
            self.show_ip_list(chat_id)
        else:
            logger.warning("Unknown callback data: %r", data)

    def _answer(self, callback_id: str) -> None:
        try:
            self.api.answer_callback(callback_id)
        except TelegramError as e:
            logger.debug("answerCallbackQuery failed: %s", e)

    def handle_text(self, chat_id: int, text: str) -> None:
        """Free text is only meaningful as the wizard's interval answer."""
        if self.session.wizard_step() is not WizardStep.INTERVAL:
            self.reply(chat_id, "Use /help to see the available commands.")
            return
        try:
            wizard = self.session.enter_interval(text)
        except ValidationError as e:
            self.reply(chat_id, f"❌ {e}\n\nSend the interval again, e.g. 60 or 60-120")
            return
        self._render_step(chat_id, wizard)

    # ══════════════════════════════════════════════════════════════
    # Commands
    # ══════════════════════════════════════════════════════════════

    def cmd_help(self, chat_id: int, args: str = "") -> None:
        name, client = self.session.current()
        text = (
            "🤖 OCI reserved IP bot\n\n"
            f"🔑 Current account: {name} ({client.region})\n\n"
            "/accounts - switch account\n"
            "/newip - create a reserved IP\n"
            "/listip - list reserved IPs\n"
            "/delip <ip> - delete a reserved IP\n"
            "/checkip <ip> - check IP purity\n"
            "/autoip - auto-apply until a clean IP is found\n"
            "/stopauto - stop auto-apply\n"
            "/id - show your user ID"
        )
        task = self.session.active_task()
        if task is not None:
            text += f"\n\n🔄 Auto-apply running on [{task.account_name}], attempt {task.attempts}"
        self.reply(chat_id, text)

    def cmd_id(self, chat_id: int, args: str = "") -> None:
        self.reply(chat_id, f"Your user ID: {chat_id}")

    def cmd_accounts(self, chat_id: int, args: str = "") -> None:
        current, _ = self.session.current()
        self.reply(
            chat_id,
            f"🔑 Current account: {current}\n\nChoose an account:",
            keyboards.accounts_keyboard(self._account_regions(), current),
        )

    def cmd_use(self, chat_id: int, args: str = "") -> None:
        if not args:
            self.cmd_accounts(chat_id)
            return
        self.switch_account(chat_id, args)

    def cmd_newip(self, chat_id: int, args: str = "") -> None:
        self.create_ip(chat_id)

    def cmd_listip(self, chat_id: int, args: str = "") -> None:
        self.show_ip_list(chat_id)

    def cmd_delip(self, chat_id: int, args: str = "") -> None:
        if not args:
            self.reply(chat_id, "Usage: /delip <ip>")
            self.show_ip_list(chat_id)
            return
        self.delete_ip(chat_id, args)

    def cmd_checkip(self, chat_id: int, args: str = "") -> None:
        if not args:
            self.reply(chat_id, "Usage: /checkip <ip>")
            return
        self.check_ip(chat_id, args)

    def cmd_autoip(self, chat_id: int, args: str = "") -> None:
        try:
            wizard = self.session.begin_wizard(chat_id)
        except TaskAlreadyRunning:
            task = self.session.active_task()
            where = f" on [{task.account_name}], attempt {task.attempts}" if task else ""
            self.reply(chat_id, f"⚠️ An auto-apply task is already running{where}\nUse /stopauto to stop it.")
            return
        self._render_step(chat_id, wizard)

    def cmd_stopauto(self, chat_id: int, args: str = "") -> None:
        handle = self.session.stop_task()
        if handle is None:
            self.reply(chat_id, "ℹ️ No auto-apply task is running.")
            return
        logger.info("Auto-apply on [%s] stopped by operator", handle.account_name)
        self.reply(chat_id, f"⏹ Auto-apply stopped after {handle.attempts} attempt(s).")

    # ══════════════════════════════════════════════════════════════
    # Manual IP operations
    # ══════════════════════════════════════════════════════════════

    def _account_regions(self) -> list[tuple[str, str]]:
        return [(name, self.session.client_for(name).region) for name in self.session.account_names()]

    def switch_account(self, chat_id: int, name: str) -> None:
        try:
            client = self.session.switch_account(name)
        except ValidationError as e:
            self.reply(chat_id, f"❌ {e}")
            return
        self.reply(chat_id, f"✅ Switched to account: {name} ({client.region})")
        self.show_ip_list(chat_id)

    def show_ip_list(self, chat_id: int, *, highlight: str = "", account: Optional[str] = None) -> None:
        if account is None:
            name, client = self.session.current()
        else:
            name, client = account, self.session.client_for(account)
        if client is None:
            self.reply(chat_id, f"❌ Account does not exist: {name}")
            return
        try:
            resources = client.list(timeout=self.timeouts.list)
        except ProviderError as e:
            self.reply(chat_id, f"❌ [{name}] Failed to list IPs: {e}")
            return
        text = format_ip_list(name, client.region, resources, self.session.classification_for, highlight)
        keyboard = keyboards.ip_list_keyboard(resources) if resources else keyboards.empty_list_keyboard()
        self.reply(chat_id, text, keyboard)

    def create_ip(self, chat_id: int) -> None:
        name, client = self.session.current()
        t = self.timeouts
        self.reply(chat_id, f"⏳ [{name}] Creating reserved IP...")
        try:
            resource = client.create(f"tg-{int(time.time())}", timeout=t.create)
            resource = client.wait_ready(resource.id, timeout=t.wait_ready)
        except ProviderError as e:
            logger.warning("Manual create on [%s] failed: %s", name, e)
            self.reply(chat_id, f"❌ Create failed: {e}")
            return

        address = resource.address
        if not self.settings.auto_check_ip:
            self.reply(
                chat_id,
                f"✅ IP created: {address}",
                keyboards.created_keyboard(address, check_url=self.settings.check_url),
            )
            return

        self.reply(chat_id, f"✅ IP created: {address}\n🔍 Checking purity...")
        try:
            info = self.classifier.classify(address, timeout=t.check)
        except ClassifierError as e:
            self.reply(
                chat_id,
                f"⚠️ Purity check failed: {e}",
                keyboards.created_keyboard(address, check_url=self.settings.check_url),
            )
            return
        self.session.remember(info)
        self.reply(chat_id, "✅ IP created\n\n" + format_classification(info), keyboards.created_keyboard(address))

    def delete_ip(self, chat_id: int, address: str) -> None:
        name, client = self.session.current()
        try:
            resource = find_by_address(client.list(timeout=self.timeouts.list), address)
        except ProviderError as e:
            self.reply(chat_id, f"❌ [{name}] Failed to list IPs: {e}")
            return
        if resource is None:
            self.reply(chat_id, f"❌ IP not found in [{name}]: {address}")
            return
        try:
            client.delete(resource.id, timeout=self.timeouts.delete)
        except ProviderError as e:
            self.reply(chat_id, f"❌ Delete failed: {e}")
            return
        self.reply(chat_id, f"✅ Deleted: {address}")
        self.show_ip_list(chat_id)

    def check_ip(self, chat_id: int, address: str, *, refresh_list: bool = False) -> None:
        try:
            ipaddress.ip_address(address)
        except ValueError:
            self.reply(chat_id, f"❌ Invalid IP address: {address}")
            return
        self.reply(chat_id, f"🔍 Checking {address}...")
        try:
            info = self.classifier.classify(address, timeout=self.timeouts.check)
        except ClassifierError as e:
            self.reply(chat_id, f"❌ Check failed: {e}")
            return
        self.session.remember(info)
        self.reply(chat_id, "🔍 Purity check\n\n" + format_classification(info))
        if refresh_list:
            self.show_ip_list(chat_id)

    # ══════════════════════════════════════════════════════════════
    # Auto-apply wizard
    # ══════════════════════════════════════════════════════════════

    def handle_wizard_callback(self, chat_id: int, data: str) -> None:
        try:
            event = parse_callback(data)
            if event.subaction == SubAction.CANCEL:
                self.session.cancel_wizard(event.generation)
                self.reply(chat_id, "❌ Auto-apply setup cancelled.")
                return
            if event.subaction in (SubAction.PURGE_ALL, SubAction.KEEP_AND_START):
                request = self.session.pending_request(event.generation)
                self._start_task(chat_id, request, purge_first=event.subaction == SubAction.PURGE_ALL)
                return
            wizard, request = self.session.apply_wizard_event(event)
        except ValidationError as e:
            self.reply(chat_id, f"⚠️ {e}")
            return

        if request is None:
            self._render_step(chat_id, wizard)
        else:
            self._reconcile(chat_id, request)

    def _render_step(self, chat_id: int, wizard: WizardSession) -> None:
        g = wizard.generation
        step = wizard.step
        if step is WizardStep.ACCOUNT:
            self.reply(
                chat_id,
                f"{_step_header(step)}\n\nChoose the account:",
                keyboards.wizard_accounts_keyboard(self._account_regions(), g),
            )
        elif step is WizardStep.PURITY:
            self.reply(
                chat_id,
                f"{_step_header(step)}\n\n🔑 Account: {wizard.account_name}\n\n"
                "Choose the purity threshold (lower is cleaner):",
                keyboards.purity_keyboard(g),
            )
        elif step is WizardStep.ORIGIN:
            self.reply(chat_id, f"{_step_header(step)}\n\nChoose the IP origin requirement:", keyboards.origin_keyboard(g))
        elif step is WizardStep.MODE:
            self.reply(chat_id, f"{_step_header(step)}\n\nHow should the conditions combine?", keyboards.mode_keyboard(g))
        elif step is WizardStep.INTERVAL:
            self.reply(
                chat_id,
                f"{_step_header(step)}\n\nSend the retry interval in seconds:\n"
                "  60       fixed 60 s\n"
                "  60-120   random between 60 and 120 s",
            )
        else:
            self.reply(chat_id, format_wizard_summary(wizard), keyboards.confirm_keyboard(g))

    def _reconcile(self, chat_id: int, request: TaskRequest) -> None:
        """Confirmed: look at what the account already holds before starting."""
        client = self.session.client_for(request.account_name)
        if client is None:
            self.reply(chat_id, f"❌ Account does not exist: {request.account_name}")
            return
        self.reply(chat_id, f"🔍 Checking existing IPs in [{request.account_name}]...")
        plan = check_existing(client, timeout=self.timeouts.list)

        if plan.list_error is not None:
            self.reply(chat_id, f"⚠️ Could not list existing IPs: {plan.list_error}\nStarting anyway.")
            self._start_task(chat_id, request)
        elif plan.needs_decision:
            lines = [f"⚠️ [{plan.account_name}] already has {len(plan.existing)} reserved IP(s):", ""]
            lines += [f"{i}. {r.address}" for i, r in enumerate(plan.existing, start=1)]
            lines += ["", "Delete them all before starting, or keep them?"]
            self.reply(chat_id, "\n".join(lines), keyboards.reconcile_keyboard(request.generation))
        else:
            self._start_task(chat_id, request)

    def _start_task(self, chat_id: int, request: TaskRequest, *, purge_first: bool = False) -> None:
        try:
            handle = self.session.start_task(request)
        except ValidationError as e:
            self.reply(chat_id, f"⚠️ {e}")
            return
        _log_command("autoip_start", chat_id, account=handle.account_name, purge_first=purge_first)
        text = (
            "🚀 Auto-apply started\n\n"
            f"🔑 Account: {handle.account_name}\n"
            f"{format_policy(handle.policy)}\n"
            f"⏱ Interval: {handle.interval.describe()}\n\n"
        )
        if purge_first:
            text += "🗑 Existing IPs will be deleted first.\n"
        text += "Use /stopauto to stop."
        self.reply(chat_id, text)
        self.controller.launch(handle, purge_first=purge_first)

    def _on_match(self, handle: TaskHandle, resource: Resource, info: Classification) -> None:
        self.show_ip_list(handle.chat_id, highlight=resource.address, account=handle.account_name)
