"""Fire-and-forget delivery of user lifecycle events."""

from __future__ import annotations

import logging
from typing import Optional

import httpx

from .config import ServiceConfig
from .models import EventKind, UserEvent

logger = logging.getLogger("userservice.notifications")
event_logger = logging.getLogger("userservice.events")


class Notifier:
    """Base class for event sinks.

    Delivery failures are logged here and never reach the caller.
    """

    def notify(self, kind: EventKind, email: str, name: str) -> None:
        event = UserEvent(operation=EventKind(kind), email=email, username=name)
        try:
            self._deliver(event)
        except Exception:
            logger.exception("Failed to publish %s event for %s", event.operation.value, email)

    def close(self) -> None:
        return None

    def _deliver(self, event: UserEvent) -> None:
        raise NotImplementedError


class NullNotifier(Notifier):
    def _deliver(self, event: UserEvent) -> None:
        return None


class LoggingNotifier(Notifier):
    """Record events on the ``userservice.events`` logger."""

    def _deliver(self, event: UserEvent) -> None:
        event_logger.info(
            "Published user event: operation=%s email=%s username=%s",
            event.operation.value,
            event.email,
            event.username,
        )


def _normalize_url(url: str) -> str:
    cleaned = (url or "").strip()
    if not cleaned:
        raise ValueError("Webhook URL must not be empty")
    return cleaned


class WebhookNotifier(Notifier):
    """POST each event as JSON to a configured HTTP endpoint."""

    def __init__(
        self,
        url: str,
        *,
        timeout: float = 5.0,
        client: Optional[httpx.Client] = None,
    ) -> None:
        self._url = _normalize_url(url)
        self._owns_client = client is None
        self._client = client or httpx.Client(timeout=timeout)

    @property
    def url(self) -> str:
        return self._url

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def _deliver(self, event: UserEvent) -> None:
        try:
            response = self._client.post(self._url, json=event.to_dict())
        except httpx.HTTPError as exc:
            logger.warning("Unable to reach webhook %s: %s", self._url, exc)
            return

        if response.is_success:
            logger.info("Delivered %s event for %s", event.operation.value, event.email)
            return

        logger.warning(
            "Webhook %s rejected %s event with status %s: %s",
            self._url,
            event.operation.value,
            response.status_code,
            response.text.strip(),
        )


def build_notifier(config: ServiceConfig) -> Notifier:
    """Return the notifier selected by the service configuration."""

    if config.webhook_url:
        return WebhookNotifier(config.webhook_url, timeout=config.webhook_timeout)
    return LoggingNotifier()


__all__ = [
    "LoggingNotifier",
    "Notifier",
    "NullNotifier",
    "WebhookNotifier",
    "build_notifier",
]
