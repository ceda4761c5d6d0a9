"""
Telegram notifier for Battery Guard
Single best-effort delivery per alert, no retries
"""
import logging
import re
from typing import Optional

import requests

logger = logging.getLogger(__name__)

TELEGRAM_API_URL = 'https://api.telegram.org/bot{token}/sendMessage'
DEFAULT_TIMEOUT_SECONDS = 10

_MARKDOWN_SPECIAL = re.compile(r'([_*\[`])')


class TelegramNotifier:
    """Delivers text messages through the Telegram Bot API"""

    def __init__(self, session: Optional[requests.Session] = None,
                 timeout: float = DEFAULT_TIMEOUT_SECONDS):
        self.session = session or requests.Session()
        self.timeout = timeout

    def deliver(self, token: str, chat_id: str, text: str) -> bool:
        """
        Send `text` to `chat_id` with the bot `token`.

        Returns True on a 2xx response. Missing credentials, network errors
        and non-2xx responses all return False; nothing is raised.
        """
        if not token or not chat_id:
            logger.warning("Telegram not configured: bot token and chat id are required")
            return False

        payload = {
            'chat_id': chat_id,
            'text': text,
            'parse_mode': 'Markdown'
        }

        try:
            response = self.session.post(
                TELEGRAM_API_URL.format(token=token),
                json=payload,
                timeout=self.timeout
            )
        except requests.RequestException as e:
            logger.error("Telegram delivery failed: %s", e)
            return False

        if not 200 <= response.status_code < 300:
            logger.error("Telegram rejected message for chat %s: HTTP %s",
                         chat_id, response.status_code)
            return False

        logger.info("Telegram message delivered to chat %s", chat_id)
        return True

    def close(self):
        self.session.close()


def escape_markdown(text: str) -> str:
    """Escape characters with meaning in Telegram legacy Markdown"""
    return _MARKDOWN_SPECIAL.sub(r'\\\1', text or '')


class NotificationTemplates:
    """Predefined message templates"""

    @staticmethod
    def threshold_alert(device_label: str, percentage: int, threshold: int) -> str:
        return (
            "⚠️ *Battery discharging*\n\n"
            f"📱 Device: {escape_markdown(device_label)}\n"
            f"🔋 Level: {percentage}%\n"
            f"📉 Threshold: {threshold}%\n\n"
            "Please connect the charger!"
        )

    @staticmethod
    def connection_test(device_label: str) -> str:
        return (
            "✅ *Connection established*\n\n"
            f"The bot is ready to send alerts for: {escape_markdown(device_label)}"
        )

    @staticmethod
    def threshold_log_message(threshold: int) -> str:
        return f"Threshold {threshold}% reached."
