"""
ClmmLP - Alert Managers
Delivers bot notifications to Telegram and Discord
"""
import html
import json
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Any, List, Optional

import requests

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT_SECONDS = 10


class Severity(Enum):
    """Notification severity"""
    INFO = 'info'
    SUCCESS = 'success'
    WARNING = 'warning'
    ERROR = 'error'


SEVERITY_EMOJI = {
    Severity.INFO: 'ℹ️',
    Severity.SUCCESS: '✅',
    Severity.WARNING: '⚠️',
    Severity.ERROR: '🚨',
}

# Discord embed colors
SEVERITY_COLOR = {
    Severity.INFO: 0x0099ff,
    Severity.SUCCESS: 0x00ff00,
    Severity.WARNING: 0xffaa00,
    Severity.ERROR: 0xff0000,
}

POSITION_ACTION_SEVERITY = {
    'Created': Severity.SUCCESS,
    'Withdrawn': Severity.WARNING,
    'Rebalanced': Severity.INFO,
}


def _stringify(value: Any) -> str:
    if isinstance(value, (dict, list)):
        return json.dumps(value, default=str)
    return str(value)


class AlertManager:
    """
    Base notification sink.

    Notifications are fire-and-forget: `notify` never raises, delivery
    failures are logged and reported through the boolean return value.
    """

    enabled = False

    def notify(self,
               title: str,
               body: str,
               severity: Severity = Severity.INFO,
               fields: Optional[Dict[str, Any]] = None) -> bool:
        """
        Send a notification

        Args:
            title: Short notification title
            body: Notification text
            severity: Notification severity
            fields: Extra key/value details

        Returns:
            True if the notification was delivered
        """
        if not self.enabled:
            logger.debug(f"Notification not sent (sink disabled): {title}")
            return False

        str_fields = {key: _stringify(value) for key, value in (fields or {}).items()}
        try:
            return self._deliver(title, body, severity, str_fields)
        except Exception as e:
            logger.error(f"Error sending notification '{title}': {e}")
            return False

    def _deliver(self, title: str, body: str, severity: Severity, fields: Dict[str, str]) -> bool:
        raise NotImplementedError

    def send_position_update(self, action: str, details: Dict[str, Any]) -> bool:
        """
        Send a position lifecycle notification

        Args:
            action: 'Created', 'Withdrawn' or 'Rebalanced'
            details: Position details shown as fields
        """
        return self.notify(
            f"Position {action}",
            f"Liquidity position has been {action.lower()}.",
            POSITION_ACTION_SEVERITY.get(action, Severity.INFO),
            details
        )

    def send_error_notification(self, error: Exception, context: Optional[Dict[str, Any]] = None) -> bool:
        """
        Send error notification

        Args:
            error: The exception being reported
            context: Additional context information
        """
        return self.notify(
            'Bot Error',
            f"An error occurred: {error}",
            Severity.ERROR,
            context
        )


class TelegramAlertManager(AlertManager):
    """Sends notifications through the Telegram Bot API"""

    def __init__(self, bot_token: str, chat_id: str):
        """
        Initialize Telegram alert manager

        Args:
            bot_token: Telegram bot token
            chat_id: Destination chat ID
        """
        self.bot_token = bot_token
        self.chat_id = chat_id
        self.enabled = bool(bot_token and chat_id)

        if self.enabled:
            logger.info("Telegram alerts enabled")
        else:
            logger.info("Telegram alerts disabled (missing bot token or chat ID)")

    def test_connection(self) -> bool:
        """
        Test Telegram bot connection

        Returns:
            True if connection successful, False otherwise
        """
        try:
            url = f"https://api.telegram.org/bot{self.bot_token}/getMe"
            response = requests.get(url, timeout=REQUEST_TIMEOUT_SECONDS)
            return response.status_code == 200
        except requests.RequestException as e:
            logger.error(f"Telegram connection test failed: {e}")
            return False

    def format_message(self, title: str, body: str, severity: Severity, fields: Dict[str, str]) -> str:
        """Render a notification as Telegram HTML"""
        timestamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S")

        lines = [
            f"{SEVERITY_EMOJI[severity]} <b>{html.escape(title)}</b>",
            f"⏰ {timestamp}",
            "",
            html.escape(body),
        ]
        if fields:
            lines.append("")
            lines.append("📋 <b>Details:</b>")
            for key, value in fields.items():
                lines.append(f"  • {html.escape(key)}: {html.escape(value)}")

        return "\n".join(lines)

    def _deliver(self, title: str, body: str, severity: Severity, fields: Dict[str, str]) -> bool:
        url = f"https://api.telegram.org/bot{self.bot_token}/sendMessage"
        data = {
            'chat_id': self.chat_id,
            'text': self.format_message(title, body, severity, fields),
            'parse_mode': 'HTML',
            'disable_web_page_preview': True
        }

        response = requests.post(url, data=data, timeout=REQUEST_TIMEOUT_SECONDS)

        if response.status_code == 200:
            logger.debug(f"Telegram message sent: {title}")
            return True

        logger.error(f"Failed to send Telegram message: {response.status_code} - {response.text}")
        return False


class DiscordAlertManager(AlertManager):
    """Sends notifications as Discord webhook embeds"""

    def __init__(self, webhook_url: str):
        self.webhook_url = webhook_url
        self.enabled = bool(webhook_url)

        if self.enabled:
            logger.info("Discord webhook initialized")
        else:
            logger.warning("Discord webhook URL not provided, notifications are disabled")

    def build_payload(self, title: str, body: str, severity: Severity, fields: Dict[str, str]) -> Dict[str, Any]:
        """Build the webhook JSON payload"""
        return {
            'embeds': [{
                'title': title,
                'description': body,
                'color': SEVERITY_COLOR[severity],
                'fields': [
                    {'name': key, 'value': value[:1024], 'inline': True}
                    for key, value in fields.items()
                ],
                'timestamp': datetime.now(timezone.utc).isoformat(),
            }]
        }

    def _deliver(self, title: str, body: str, severity: Severity, fields: Dict[str, str]) -> bool:
        response = requests.post(
            self.webhook_url,
            json=self.build_payload(title, body, severity, fields),
            timeout=REQUEST_TIMEOUT_SECONDS
        )

        # Discord answers 204 No Content on success
        if response.status_code in (200, 204):
            logger.debug(f"Discord notification sent: {title}")
            return True

        logger.error(f"Failed to send Discord notification: {response.status_code} - {response.text}")
        return False


class CompositeAlertManager(AlertManager):
    """Fans a notification out to every enabled sink"""

    def __init__(self, managers: List[AlertManager]):
        self.managers = [manager for manager in managers if manager.enabled]
        self.enabled = bool(self.managers)

    def _deliver(self, title: str, body: str, severity: Severity, fields: Dict[str, str]) -> bool:
        delivered = False
        for manager in self.managers:
            if manager.notify(title, body, severity, fields):
                delivered = True
        return delivered


def create_alert_manager(config) -> AlertManager:
    """
    Build the notification sink from configuration

    Args:
        config: Configuration object

    Returns:
        CompositeAlertManager over the configured Telegram and Discord sinks
    """
    telegram = TelegramAlertManager(config.TELEGRAM_BOT_TOKEN, config.TELEGRAM_CHAT_ID)
    if telegram.enabled and not telegram.test_connection():
        logger.warning("Telegram connection test failed, check TELEGRAM_BOT_TOKEN")

    managers = [
        telegram,
        DiscordAlertManager(config.DISCORD_WEBHOOK_URL),
    ]
    composite = CompositeAlertManager(managers)
    if not composite.enabled:
        logger.warning("No notification sink configured, alerts will only be logged")
    return composite
