from __future__ import annotations

import logging
import time
from typing import Any, Callable, Dict, Optional, Protocol

import requests

from .config import TelegramConfig
from .models import DeliveryResult, DeliveryStatus
from .settings import SettingsStore

LOGGER = logging.getLogger(__name__)

FALLBACK_TEMPLATE = "❌ Ошибка системы уведомлений: {error}"


class TelegramError(RuntimeError):
    """Raised when the Bot API cannot be reached or rejects a message."""


class MessageTransport(Protocol):
    def send_message(self, text: str, parse_mode: Optional[str] = "Markdown") -> Dict[str, Any]: ...


class TelegramClient:
    """Minimal Bot API client that posts messages to a single chat."""

    def __init__(
        self,
        conf: TelegramConfig,
        session: Optional[requests.Session] = None,
    ) -> None:
        self._conf = conf
        self._token = conf.resolve_token()
        self._chat_id = conf.resolve_chat_id()
        self._session = session or requests.Session()

    @property
    def chat_id(self) -> str:
        return self._chat_id

    @property
    def bot_username(self) -> Optional[str]:
        return self._conf.bot_username

    def _method_url(self, method: str) -> str:
        return f"{self._conf.api_url.rstrip('/')}/bot{self._token}/{method}"

    def send_message(self, text: str, parse_mode: Optional[str] = "Markdown") -> Dict[str, Any]:
        payload: Dict[str, Any] = {"chat_id": self._chat_id, "text": text}
        if parse_mode:
            payload["parse_mode"] = parse_mode

        try:
            response = self._session.post(
                self._method_url("sendMessage"),
                json=payload,
                timeout=self._conf.request_timeout,
            )
        except requests.RequestException as exc:
            # The URL carries the token; keep it out of error text
            raise TelegramError(f"Telegram request failed: {type(exc).__name__}") from exc

        try:
            result = response.json()
        except ValueError as exc:
            raise TelegramError(
                f"Telegram returned a non-JSON response (HTTP {response.status_code})"
            ) from exc

        if not isinstance(result, dict) or not result.get("ok"):
            description = result.get("description") if isinstance(result, dict) else None
            raise TelegramError(
                f"Telegram API error (HTTP {response.status_code}): {description or result}"
            )
        return result


class NotificationGateway:
    """Rate-limited delivery of formatted messages with a plain-text fallback."""

    def __init__(
        self,
        transport: MessageTransport,
        settings: SettingsStore,
        *,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._transport = transport
        self._settings = settings
        self._sleep = sleep

    def send(self, message: str) -> DeliveryResult:
        """Deliver one message; failures come back as a result, never raised."""

        try:
            allowed = self._settings.check_rate_limit()
        except Exception as exc:
            LOGGER.exception("Rate limit check failed; message dropped")
            return DeliveryResult(status=DeliveryStatus.FAILED, error=f"Rate limit check failed: {exc}")

        if not allowed:
            LOGGER.warning("Notification rate limit exceeded; message dropped")
            return DeliveryResult(status=DeliveryStatus.RATE_LIMITED, error="Rate limit exceeded")

        LOGGER.debug("Sending message: %s", message[:100])
        try:
            response = self._transport.send_message(message, parse_mode="Markdown")
        except TelegramError as exc:
            LOGGER.error("Failed to send Telegram message: %s", exc)
            fallback_sent = self._send_fallback(exc)
            return DeliveryResult(
                status=DeliveryStatus.FAILED,
                error=str(exc),
                fallback_sent=fallback_sent,
            )

        LOGGER.debug("Message delivered")
        self._pause()
        return DeliveryResult(status=DeliveryStatus.SENT, response=response)

    def _send_fallback(self, error: BaseException) -> bool:
        try:
            self._transport.send_message(FALLBACK_TEMPLATE.format(error=error), parse_mode=None)
        except TelegramError as exc:
            LOGGER.error("Fallback error message could not be sent either: %s", exc)
            return False
        return True

    def _pause(self) -> None:
        delay = self._settings.notification_delay_seconds()
        if delay > 0:
            LOGGER.debug("Pausing %.3f seconds between notifications", delay)
            self._sleep(delay)
