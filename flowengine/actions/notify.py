"""Notification action."""

from typing import Any, Dict, Optional

import requests
from pydantic import BaseModel, ConfigDict, Field

from ..core.logging import get_logger

logger = get_logger(__name__)


class NotificationConfig(BaseModel):
    """Configuration of a ``notification`` action."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    notification_type: str = Field(default="console", alias="notificationType")
    message: str = Field(default="")
    subject: Optional[str] = None
    recipient: Optional[str] = None
    webhook_url: Optional[str] = Field(default=None, alias="webhookUrl")
    webhook_method: str = Field(default="POST", alias="webhookMethod")


class NotificationAction:
    """Delivers a message to the process log or to a webhook."""

    def __init__(self, timeout_ms: float = 30000, session: Optional[requests.Session] = None):
        self.timeout_ms = timeout_ms
        self.session = session or requests.Session()

    def __call__(self, config: Dict[str, Any], input_data: Any) -> Dict[str, Any]:
        settings = NotificationConfig.model_validate(config)
        channel = settings.notification_type.strip().lower()

        if channel == "console":
            subject = f"[{settings.subject}] " if settings.subject else ""
            logger.info(f"Notification: {subject}{settings.message}")
            return {"delivered": True, "channel": "console", "message": settings.message}

        if channel == "webhook":
            return self._send_webhook(settings, input_data)

        if channel == "email":
            raise RuntimeError("Email notifications are not supported: no mail transport is configured")

        raise ValueError(f"Unsupported notification type: {settings.notification_type}")

    def _send_webhook(self, settings: NotificationConfig, input_data: Any) -> Dict[str, Any]:
        if not settings.webhook_url:
            raise ValueError("Webhook notification requires a webhookUrl")

        payload = {"message": settings.message, "subject": settings.subject, "data": input_data}
        response = self.session.request(
            settings.webhook_method.upper(),
            settings.webhook_url,
            json=payload,
            timeout=self.timeout_ms / 1000.0,
        )
        if not 200 <= response.status_code < 300:
            raise RuntimeError(
                f"Webhook {settings.webhook_url} returned {response.status_code}"
            )

        logger.info(f"Webhook notification delivered to {settings.webhook_url}")
        return {"delivered": True, "channel": "webhook", "status": response.status_code}
