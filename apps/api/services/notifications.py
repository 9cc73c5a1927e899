"""
Notification delivery.

Best effort only. When permission is missing or delivery fails, reminders are
still computed and scheduled but nothing reaches the user; the failure is
logged and never raised to the caller.
"""
import asyncio
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional
import logging

import requests

from core.config import settings
from core.exceptions import PermissionDenied

logger = logging.getLogger(__name__)

WORKOUT_REMINDER_TAG = "workout-reminder"
FOLLOW_UP_TAG = "workout-followup"


class NotificationChannel(ABC):
    """Where notifications go."""

    @abstractmethod
    async def request_permission(self) -> bool:
        raise NotImplementedError

    @abstractmethod
    async def deliver(self, title: str, body: str, tag: str, payload: Dict[str, Any]) -> None:
        raise NotImplementedError


class LogNotificationChannel(NotificationChannel):
    """Writes notifications to the application log. Always permitted."""

    async def request_permission(self) -> bool:
        return True

    async def deliver(self, title: str, body: str, tag: str, payload: Dict[str, Any]) -> None:
        logger.info(
            f"Notification: {title} - {body}",
            extra={"extra_fields": {"tag": tag, "payload": payload}},
        )


class WebhookNotificationChannel(NotificationChannel):
    """POSTs notifications as JSON (ntfy/Gotify/Telegram relay style endpoints)."""

    def __init__(self, url: str, timeout: int = 10):
        self.url = url
        self.timeout = timeout

    async def request_permission(self) -> bool:
        return bool(self.url)

    async def deliver(self, title: str, body: str, tag: str, payload: Dict[str, Any]) -> None:
        data = {"title": title, "body": body, "tag": tag, "data": payload}
        response = await asyncio.to_thread(requests.post, self.url, json=data, timeout=self.timeout)
        if response.status_code in (401, 403):
            raise PermissionDenied(f"Notification endpoint refused delivery: {response.status_code}")
        response.raise_for_status()


def default_channel() -> NotificationChannel:
    if settings.NOTIFY_WEBHOOK_URL:
        return WebhookNotificationChannel(settings.NOTIFY_WEBHOOK_URL)
    return LogNotificationChannel()


class NotificationManager:
    """Tracks permission and shows notifications through a channel."""

    def __init__(self, channel: Optional[NotificationChannel] = None):
        self.channel = channel or default_channel()
        self.permission_granted = False

    async def request_permission(self) -> bool:
        if self.permission_granted:
            return True
        try:
            self.permission_granted = await self.channel.request_permission()
        except Exception as e:
            logger.error(f"Error requesting notification permission: {e}")
            self.permission_granted = False
        return self.permission_granted

    async def show(self, title: str, body: str, tag: str, payload: Optional[Dict[str, Any]] = None) -> bool:
        """Fire-and-forget. Returns whether the channel accepted it."""
        if not self.permission_granted:
            logger.warning(f"Notification permission not granted, dropping '{tag}'")
            return False
        try:
            await self.channel.deliver(title, body, tag, payload or {})
            return True
        except PermissionDenied as e:
            logger.warning(f"Notification permission revoked: {e.detail}")
            self.permission_granted = False
        except requests.RequestException as e:
            logger.warning(f"Notification delivery failed for '{tag}': {e}")
        except Exception as e:
            logger.warning(f"Notification channel error for '{tag}': {e}", exc_info=True)
        return False
