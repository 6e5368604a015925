# ip_bot.py — reserved-IP bot entry point
#
# Launched via:  python ip_bot.py [-c conf] [--verbose]
#
# Loads the INI config, builds one OCI client per usable account, probes
# them, then long-polls Telegram until SIGINT / SIGTERM.
# ──────────────────────────────────────────────────────────────────

import argparse
import logging
import signal
import sys
import threading

from agent.session import SessionState
from config.settings import ConfigError, load_settings
from preflight.analyzer import build_clients, print_preflight_report, run_preflight
from purity.ippure import IPPureChecker
from src.bot import IPBot
from src.telegram_api import TelegramClient

logger = logging.getLogger("ipbot")


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Telegram bot for creating and auto-selecting OCI reserved public IPs",
    )
    parser.add_argument("-c", "--config", default="conf", help="Path to the INI config file")
    parser.add_argument("--skip-preflight", action="store_true", help="Do not probe accounts at startup")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    return parser.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)-7s %(name)s: %(message)s",
    )
    # The OCI SDK is chatty at DEBUG.
    logging.getLogger("oci").setLevel(logging.WARNING)

    print("╔══════════════════════════════════════════════════╗")
    print("║   OCI Reserved IP Bot                            ║")
    print("╠══════════════════════════════════════════════════╣")
    print("║  /newip /listip /delip /checkip /autoip          ║")
    print("║  Ctrl+C to stop.                                 ║")
    print("╚══════════════════════════════════════════════════╝")
    print()

    try:
        settings = load_settings(args.config)
    except ConfigError as e:
        print(f"[error] {e}")
        return 1

    clients, skipped = build_clients(settings)
    if not clients:
        print("[error] No usable OCI account in the config.")
        for name, reason in skipped.items():
            print(f"        [{name}] {reason}")
        return 1

    if not args.skip_preflight:
        print_preflight_report(run_preflight(clients, skipped, timeout=settings.timeouts.list))
        print()

    session = SessionState(clients)
    bot = IPBot(
        TelegramClient(settings.token),
        settings,
        session,
        IPPureChecker(settings.check_url),
    )

    stop = threading.Event()

    def _on_signal(signum, _frame):
        logger.info("Received signal %s, shutting down", signum)
        stop.set()
        bot.shutdown()

    signal.signal(signal.SIGINT, _on_signal)
    signal.signal(signal.SIGTERM, _on_signal)

    current, _ = session.current()
    logger.info("Bot started with %d account(s), current: [%s]", len(clients), current)
    bot.run(stop)
    bot.shutdown()
    print("\nBot stopped.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
