from __future__ import annotations

import argparse
import json
import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Any, Sequence, TextIO

import pytz
from dotenv import load_dotenv

from .config import AppConfig, load_config
from .coordinator import EditCoordinator, NotifierContext
from .formatter import build_test_message
from .google_sheets import GoogleSheetsClient
from .settings import PACKAGE_LOGGER_NAME, SettingsStore
from .state import RateLimitStore
from .telegram import NotificationGateway, TelegramClient


def _load_env_files(config_path: Path) -> None:
    """Load environment variables from .env files."""

    # Load default .env in current working directory if present
    load_dotenv(override=False)

    # Load .env placed next to the config file if it exists
    config_env = config_path.parent / ".env"
    if config_env.exists():
        load_dotenv(dotenv_path=config_env, override=False)


LOGGER = logging.getLogger(PACKAGE_LOGGER_NAME)


def _parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Forward spreadsheet status changes and new records to Telegram"
    )
    parser.add_argument("--config", required=True, help="Path to the YAML configuration file")
    parser.add_argument(
        "--event",
        default=None,
        help="Path to a JSON file with the edit event; read from stdin when omitted",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable debug logging",
    )
    parser.add_argument(
        "--test-connection",
        action="store_true",
        help="Send a test message to the configured chat and exit",
    )
    return parser.parse_args(argv)


def _read_event(path: str | None, stdin: TextIO) -> Any:
    if path is None:
        return json.load(stdin)
    with Path(path).expanduser().open("r", encoding="utf-8") as fh:
        return json.load(fh)


def build_context(
    config: AppConfig,
    config_path: Path,
) -> tuple[NotifierContext, RateLimitStore, TelegramClient]:
    state_path = config.state_path or (config_path.parent / "sheet_notifier_state.sqlite")
    tz = pytz.timezone(config.timezone)

    sheets_client = GoogleSheetsClient(config.sheets)
    rate_limit_store = RateLimitStore(state_path)
    settings = SettingsStore(
        sheets_client,
        rate_limit_store,
        settings_sheet_name=config.sheets.settings_sheet_name,
        ttl_seconds=config.settings_cache_ttl_seconds,
    )
    telegram_client = TelegramClient(config.telegram)
    gateway = NotificationGateway(telegram_client, settings)
    context = NotifierContext(
        spreadsheet_id=config.sheets.spreadsheet_id,
        intake_sheet_name=config.sheets.intake_sheet_name,
        reader=sheets_client,
        settings=settings,
        gateway=gateway,
        tz=tz,
        clock=lambda: datetime.now(tz),
    )
    return context, rate_limit_store, telegram_client


def main(argv: Sequence[str] | None = None, stdin: TextIO | None = None) -> int:
    args = _parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    config_path = Path(args.config).expanduser().resolve()
    _load_env_files(config_path)
    config = load_config(config_path)
    context, rate_limit_store, telegram_client = build_context(config, config_path)

    try:
        if args.test_connection:
            LOGGER.info("Sending test message to chat %s", telegram_client.chat_id)
            message = build_test_message(
                telegram_client.bot_username, telegram_client.chat_id, context.now(), context.tz
            )
            result = context.gateway.send(message)
            print(json.dumps({"status": result.status.value, "error": result.error}))
            return 0 if result.ok else 1

        try:
            payload = _read_event(args.event, stdin or sys.stdin)
        except (OSError, json.JSONDecodeError) as exc:
            LOGGER.error("Unable to read edit event: %s", exc)
            return 2

        report = EditCoordinator(context).handle(payload)
        LOGGER.info("Edit event handled: %s", report.outcome.value)
        print(json.dumps(report.to_dict(), ensure_ascii=False))
        return 0
    finally:
        rate_limit_store.close()


def run() -> None:
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        print("Interrupted", file=sys.stderr)
        sys.exit(130)


if __name__ == "__main__":
    run()
