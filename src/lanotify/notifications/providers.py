"""
Notification providers for sending notifications via different channels.
"""

import logging
import shutil
import subprocess
from abc import ABC, abstractmethod
from typing import List

import requests

from lanotify.core.config import NotifyConfig
from lanotify.core.exceptions import SinkRejectedError, SinkUnavailableError
from lanotify.notifications.models import Notification

logger = logging.getLogger(__name__)


class NotificationProvider(ABC):
    """Base class for notification providers."""

    @abstractmethod
    def send(self, notification: Notification) -> None:
        """
        Send a notification.

        Args:
            notification: Notification to send

        Raises:
            SinkUnavailableError: If the transport cannot be reached
            SinkRejectedError: If the transport refuses the notification
        """
        pass

    @abstractmethod
    def is_enabled(self) -> bool:
        """Check if provider is properly configured and enabled."""
        pass


class LogProvider(NotificationProvider):
    """Writes every notification to the application log."""

    def is_enabled(self) -> bool:
        return True

    def send(self, notification: Notification) -> None:
        logger.info(f"[{notification.kind.value}] {notification.message}")


class DesktopProvider(NotificationProvider):
    """
    Desktop notification provider using notify-send (libnotify).

    Enabled when configured and notify-send is found on PATH.
    """

    def __init__(self, enabled: bool = True, command: str = "notify-send", timeout: float = 5.0):
        """
        Initialize desktop provider.

        Args:
            enabled: Whether desktop notifications are wanted
            command: notify-send executable
            timeout: Seconds to wait for notify-send
        """
        self.enabled = enabled
        self.command = command
        self.timeout = timeout
        self.executable = shutil.which(command) if enabled else None

        if enabled and not self.executable:
            logger.info(f"DesktopProvider disabled: '{command}' not found on PATH")

    def is_enabled(self) -> bool:
        return bool(self.enabled and self.executable)

    def send(self, notification: Notification) -> None:
        if not self.is_enabled():
            raise SinkUnavailableError("Desktop notifications are not available")

        try:
            result = subprocess.run(
                [
                    self.executable,
                    "--app-name=lanotify",
                    notification.subject,
                    notification.message,
                ],
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            raise SinkUnavailableError(f"notify-send failed: {e}") from e

        if result.returncode != 0:
            raise SinkRejectedError(
                f"notify-send exited with status {result.returncode}: {result.stderr.strip()}"
            )

        logger.debug(f"Sent desktop notification: {notification.subject}")


class WebhookProvider(NotificationProvider):
    """
    Webhook notification provider.

    Sends JSON POST requests to a configured webhook URL.
    """

    def __init__(self, url: str = "", token: str = "", timeout: float = 10.0):
        """
        Initialize webhook provider.

        Args:
            url: Webhook endpoint URL (empty disables the provider)
            token: Optional bearer token
            timeout: Request timeout in seconds
        """
        self.webhook_url = url
        self.webhook_token = token
        self.timeout = timeout

        if self.is_enabled():
            logger.info(f"WebhookProvider configured: {self.webhook_url}")

    def is_enabled(self) -> bool:
        """Check if webhook is properly configured."""
        return bool(self.webhook_url)

    def send(self, notification: Notification) -> None:
        if not self.is_enabled():
            raise SinkUnavailableError("Webhook URL is not configured")

        headers = {
            "Content-Type": "application/json",
            "User-Agent": "lanotify/1.0",
        }
        if self.webhook_token:
            headers["Authorization"] = f"Bearer {self.webhook_token}"

        try:
            response = requests.post(
                self.webhook_url,
                json=notification.to_dict(),
                headers=headers,
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise SinkUnavailableError(f"Webhook request failed: {e}") from e

        if response.status_code >= 400:
            raise SinkRejectedError(
                f"Webhook returned status {response.status_code}: {response.text[:200]}"
            )

        logger.debug(f"Sent webhook notification: {notification.subject}")


def build_providers(config: NotifyConfig) -> List[NotificationProvider]:
    """
    Create the providers selected by the configuration.

    Args:
        config: Notification configuration

    Returns:
        Providers; the log provider is always included
    """
    providers: List[NotificationProvider] = [LogProvider()]
    if config.desktop_enabled:
        providers.append(DesktopProvider())
    if config.webhook_url:
        providers.append(
            WebhookProvider(
                url=config.webhook_url,
                token=config.webhook_token,
                timeout=config.webhook_timeout,
            )
        )
    return providers
