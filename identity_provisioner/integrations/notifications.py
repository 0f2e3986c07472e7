"""Notification sinks used to tell the service desk about new accounts."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import aiohttp

from ..config.settings import (
    GRAPH_SCOPES,
    ConfigSource,
    Settings,
    SettingsConfigSource,
    build_azure_credential,
    get_settings,
)
from ..errors import NotificationError


logger = logging.getLogger(__name__)

GRAPH_BASE_URL = "https://graph.microsoft.com/v1.0"


class NotificationSink(ABC):
    @abstractmethod
    async def send(self, address: str, subject: str, body: str) -> None:
        pass


class MockNotificationSink(NotificationSink):
    """Keeps sent messages in memory instead of delivering them."""

    def __init__(self) -> None:
        self.messages: List[Dict[str, str]] = []

    async def send(self, address: str, subject: str, body: str) -> None:
        self.messages.append({"address": address, "subject": subject, "body": body})
        logger.info("Mock notification queued for %s: %s", address, subject)


class GraphMailNotificationSink(NotificationSink):
    """Sends plain-text mail through the Graph ``sendMail`` action.

    The tenant and credential reference come from ``config`` so mail is sent
    from the same tenant the account was created in.
    """

    def __init__(self, settings: Optional[Settings] = None, config: Optional[ConfigSource] = None) -> None:
        self._settings = settings or get_settings()
        self._config = config or SettingsConfigSource(self._settings)
        self.sender: str = self._settings.notification_sender
        self._token: Optional[str] = None

    async def _get_token(self) -> str:
        if self._token:
            return self._token

        tenant_id = self._config.get("tenant_id")
        credential_ref = self._config.get_optional("credential_ref") or "managed_identity"
        credential = build_azure_credential(credential_ref, tenant_id, self._settings)
        try:
            access_token = await credential.get_token(*GRAPH_SCOPES)
        finally:
            await credential.close()

        self._token = access_token.token
        return self._token

    def _build_message(self, address: str, subject: str, body: str) -> Dict[str, Any]:
        return {
            "message": {
                "subject": subject,
                "body": {"contentType": "Text", "content": body},
                "toRecipients": [{"emailAddress": {"address": address}}],
            },
            "saveToSentItems": False,
        }

    async def send(self, address: str, subject: str, body: str) -> None:
        if not self.sender:
            raise NotificationError("NOTIFICATION_SENDER must be configured to send mail via Graph")

        try:
            token = await self._get_token()
        except Exception as exc:
            raise NotificationError(f"Unable to obtain Graph token for mail delivery: {exc}") from exc

        url = f"{GRAPH_BASE_URL}/users/{self.sender}/sendMail"
        headers = {"Authorization": f"Bearer {token}", "Content-Type": "application/json"}
        payload = self._build_message(address, subject, body)

        async with aiohttp.ClientSession() as session:
            async with session.post(url, json=payload, headers=headers) as resp:
                if resp.status >= 400:
                    detail = await resp.text()
                    logger.error(
                        "Failed to send notification mail: status=%s response=%s",
                        resp.status,
                        detail,
                    )
                    raise NotificationError(f"Graph sendMail returned HTTP {resp.status}")

        logger.info("Notification mail sent to %s from %s", address, self.sender)


def get_notification_sink(
    settings: Optional[Settings] = None,
    config: Optional[ConfigSource] = None,
) -> NotificationSink:
    """Return the notification backend selected by configuration."""
    settings = settings or get_settings()

    if settings.notification_provider == "graph_mail":
        logger.info("Using Graph mail notification integration")
        return GraphMailNotificationSink(settings, config=config)

    logger.info("Using mock notification integration")
    return MockNotificationSink()
