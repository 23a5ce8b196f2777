"""Webhook dispatcher: best-effort HTTP notification of registry events.

Delivery contract:

- HTTP POST of ``{"event", "timestamp", "data"}`` as JSON.
- ``X-Webhook-Event`` names the event, ``X-Webhook-Delivery`` carries a
  unique id per attempt.
- ``X-Webhook-Signature: sha256=<hmac_hex>`` when the webhook has a secret.
- One attempt per trigger; every attempt is logged as a delivery row.
- A 2xx response resets the failure counter; anything else increments it
  and the webhook is deactivated once it reaches ``max_failures``.

Dispatch never raises into the operation that emitted the event, and the
``on_*`` emitters schedule delivery in the background instead of waiting for
it. Store writes run in worker threads so slow receivers and database waits
never block the event loop.
"""

from __future__ import annotations

import asyncio
import hashlib
import hmac
import json
import logging
import time
import uuid
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Callable, Optional

import httpx

from ..domain import events
from ..domain.models import Webhook, WebhookDelivery

if TYPE_CHECKING:
    from ..store import MetadataStore

LOGGER = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 10.0
DEFAULT_MAX_FAILURES = 5
USER_AGENT = "registry-webhooks/1.0"

DeliveryTask = asyncio.Task[list[WebhookDelivery]]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_uuid() -> str:
    return str(uuid.uuid4())


def sign_payload(secret: str, body: bytes) -> str:
    """HMAC-SHA256 of ``body`` keyed by ``secret``, prefixed ``sha256=``."""

    mac = hmac.new(secret.encode("utf-8"), body, hashlib.sha256)
    return f"sha256={mac.hexdigest()}"


class WebhookDispatcher:
    def __init__(
        self,
        store: "MetadataStore",
        *,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        max_failures: int = DEFAULT_MAX_FAILURES,
        clock: Callable[[], datetime] = _utcnow,
        delivery_id_factory: Callable[[], str] = _new_uuid,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._store = store
        self._client = client
        self._timeout = timeout
        self._max_failures = max_failures
        self._clock = clock
        self._delivery_id_factory = delivery_id_factory
        self._logger = logger or LOGGER
        self._background: set[asyncio.Task[Any]] = set()

    async def trigger(self, event_type: str, data: dict[str, Any]) -> list[WebhookDelivery]:
        """Deliver ``event_type`` to every matching webhook; never raises."""

        try:
            webhooks = await asyncio.to_thread(self._store.list_webhooks_for_event, event_type)
            if not webhooks:
                return []
            payload = {
                "event": event_type,
                "timestamp": self._clock().isoformat(),
                "data": data,
            }
            if self._client is not None:
                return await self._deliver_all(self._client, webhooks, event_type, payload)
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                return await self._deliver_all(client, webhooks, event_type, payload)
        except Exception:  # noqa: BLE001
            self._logger.exception("Webhook dispatch for %s failed", event_type)
            return []

    def trigger_background(self, event_type: str, data: dict[str, Any]) -> DeliveryTask:
        """Schedule ``trigger`` without awaiting it; must run inside an event loop."""

        task = asyncio.get_running_loop().create_task(self.trigger(event_type, data))
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def drain(self) -> None:
        """Wait for background deliveries scheduled so far."""

        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    async def _deliver_all(
        self,
        client: httpx.AsyncClient,
        webhooks: list[Webhook],
        event_type: str,
        payload: dict[str, Any],
    ) -> list[WebhookDelivery]:
        body = json.dumps(payload, default=str).encode("utf-8")
        results = await asyncio.gather(
            *(self._deliver(client, webhook, event_type, payload, body) for webhook in webhooks),
            return_exceptions=True,
        )
        deliveries: list[WebhookDelivery] = []
        for webhook, result in zip(webhooks, results):
            if isinstance(result, BaseException):
                self._logger.error("Recording delivery to webhook %s failed: %s", webhook.id, result)
                continue
            deliveries.append(result)
        return deliveries

    async def _deliver(
        self,
        client: httpx.AsyncClient,
        webhook: Webhook,
        event_type: str,
        payload: dict[str, Any],
        body: bytes,
    ) -> WebhookDelivery:
        delivery_id = self._delivery_id_factory()
        headers = {
            "Content-Type": "application/json",
            "User-Agent": USER_AGENT,
            "X-Webhook-Event": event_type,
            "X-Webhook-Delivery": delivery_id,
        }
        if webhook.secret:
            headers["X-Webhook-Signature"] = sign_payload(webhook.secret, body)

        status_code: Optional[int] = None
        error: Optional[str] = None
        started = time.monotonic()
        try:
            response = await client.post(webhook.url, content=body, headers=headers, timeout=self._timeout)
            status_code = response.status_code
            success = 200 <= status_code < 300
            if not success:
                error = f"HTTP {status_code}"
        except httpx.TimeoutException:
            success = False
            error = f"Timeout after {self._timeout}s"
        except httpx.HTTPError as exc:
            success = False
            error = f"{type(exc).__name__}: {exc}"
        duration_ms = int((time.monotonic() - started) * 1000)

        if success:
            self._logger.info("Webhook %s delivered %s in %sms", webhook.id, event_type, duration_ms)
        else:
            self._logger.warning("Webhook %s delivery of %s failed: %s", webhook.id, event_type, error)
            if webhook.failure_count + 1 >= self._max_failures:
                self._logger.warning(
                    "Webhook %s reached %s consecutive failures; deactivating",
                    webhook.id,
                    self._max_failures,
                )

        return await asyncio.to_thread(
            self._record_attempt,
            webhook,
            delivery_id=delivery_id,
            event_type=event_type,
            payload=payload,
            status_code=status_code,
            success=success,
            error=error,
            duration_ms=duration_ms,
        )

    def _record_attempt(
        self,
        webhook: Webhook,
        *,
        delivery_id: str,
        event_type: str,
        payload: dict[str, Any],
        status_code: Optional[int],
        success: bool,
        error: Optional[str],
        duration_ms: int,
    ) -> WebhookDelivery:
        delivery = self._store.log_webhook_delivery(
            delivery_id=delivery_id,
            webhook_id=webhook.id,
            event_type=event_type,
            payload=payload,
            status_code=status_code,
            success=success,
            error=error,
            duration_ms=duration_ms,
        )
        self._store.record_webhook_result(webhook.id, success=success, max_failures=self._max_failures)
        return delivery

    # -- convenience emitters ------------------------------------------------------

    def on_package_published(
        self,
        *,
        package: str,
        version: str,
        sha256: str,
        user_id: Optional[str] = None,
    ) -> DeliveryTask:
        return self.trigger_background(
            events.PACKAGE_PUBLISHED,
            {"package": package, "version": version, "sha256": sha256, "userId": user_id},
        )

    def on_package_deleted(self, *, package: str, version_count: int) -> DeliveryTask:
        return self.trigger_background(events.PACKAGE_DELETED, {"package": package, "versionCount": version_count})

    def on_version_deleted(self, *, package: str, version: str) -> DeliveryTask:
        return self.trigger_background(events.VERSION_DELETED, {"package": package, "version": version})

    def on_package_discontinued(
        self,
        *,
        package: str,
        replaced_by: Optional[str] = None,
    ) -> DeliveryTask:
        return self.trigger_background(events.PACKAGE_DISCONTINUED, {"package": package, "replacedBy": replaced_by})

    def on_package_reactivated(self, *, package: str) -> DeliveryTask:
        return self.trigger_background(events.PACKAGE_REACTIVATED, {"package": package})

    def on_user_registered(self, *, user_id: str, email: str) -> DeliveryTask:
        return self.trigger_background(events.USER_REGISTERED, {"userId": user_id, "email": email})

    def on_cache_cleared(self, *, packages_removed: int, archives_removed: int) -> DeliveryTask:
        return self.trigger_background(
            events.CACHE_CLEARED,
            {"packagesRemoved": packages_removed, "archivesRemoved": archives_removed},
        )


__all__ = ["DeliveryTask", "WebhookDispatcher", "sign_payload"]
