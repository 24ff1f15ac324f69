"""Push delivery.

The SOS flow only hands over a notification ``kind`` and a flat data map;
deep-link URLs and provider retries are the push provider's job.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol

import httpx

from fastinghero.core.deadline import remaining_timeout
from fastinghero.domain.sos import NotificationKind

logger = logging.getLogger(__name__)


class PushError(Exception):
    """Raised when the push provider rejects or cannot accept a notification."""


class PushGateway(Protocol):
    def send(
        self,
        user_id: int,
        title: str,
        body: str,
        kind: NotificationKind,
        data: dict[str, str] | None = None,
    ) -> None: ...

    def send_batch(
        self,
        user_ids: list[int],
        title: str,
        body: str,
        kind: NotificationKind,
        data: dict[str, str] | None = None,
    ) -> None: ...


class HttpPushGateway:
    """Posts notifications to the push provider's HTTP API."""

    def __init__(self, base_url: str, api_key: str = "", timeout_seconds: float = 10.0) -> None:
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout_seconds = timeout_seconds

    def send(self, user_id, title, body, kind, data=None) -> None:
        self._post(
            "/send",
            {"user_id": user_id, "title": title, "body": body, "kind": kind.value, "data": data or {}},
        )

    def send_batch(self, user_ids, title, body, kind, data=None) -> None:
        if not user_ids:
            return
        self._post(
            "/send-batch",
            {"user_ids": list(user_ids), "title": title, "body": body, "kind": kind.value, "data": data or {}},
        )

    def _post(self, path: str, payload: dict[str, Any]) -> None:
        headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}
        timeout = remaining_timeout(self.timeout_seconds)
        if timeout <= 0:
            raise PushError("Deadline exceeded before push could be sent")
        try:
            response = httpx.post(self.base_url + path, json=payload, headers=headers, timeout=timeout)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise PushError(f"Push request failed: {exc}") from exc


class LogOnlyPushGateway:
    """Used when no push provider is configured. Logs instead of delivering."""

    def send(self, user_id, title, body, kind, data=None) -> None:
        logger.info("push(disabled) user=%s kind=%s title=%r", user_id, kind.value, title)

    def send_batch(self, user_ids, title, body, kind, data=None) -> None:
        logger.info("push(disabled) users=%s kind=%s title=%r", len(user_ids), kind.value, title)
