"""
Notification Service - 系统 Webhook 通知

面向房东的消息（欢迎、续费、扣款失败、广告位到期）由外部通知系统渲染与投递；
这里只负责把带签名的事件 POST 到它的 webhook。投递是 best-effort 的，
任何失败都不能影响触发它的权益操作。

接收方按 X-Webhook-Event-Id 去重：同一事件的重试共享一个 id。
"""

import hashlib
import hmac
import json
import uuid
from typing import Any, Dict, Optional

import httpx

from Localstays.config.settings import NotificationConfig
from Localstays.observability.logging import current_context, get_logger
from Localstays.utils.timeutils import utc_now

logger = get_logger(__name__)

SIGNATURE_HEADER = "X-Webhook-Signature"
EVENT_ID_HEADER = "X-Webhook-Event-Id"


class NotificationService:
    """
    System-level notification emitter.

    Configuration comes from NotificationConfig (SYSTEM_WEBHOOK_URL,
    SYSTEM_WEBHOOK_SECRET, SYSTEM_WEBHOOK_ENABLED); it is read when the
    service is constructed unless one is passed in.
    """

    def __init__(self, config: Optional[NotificationConfig] = None):
        self.config = config or NotificationConfig()

    def emit_event(self, event_type: str, data: Any, host_id: Optional[str] = None) -> None:
        """Post ``event_type`` to the system webhook; never raises.

        Args:
            event_type: e.g. "billing.payment_failed", "slots.expired"
            data: event payload, serialized with ``default=str``
            host_id: host the event is about, if any
        """
        if not self.config.is_active:
            return

        payload: Dict[str, Any] = {
            "event_id": uuid.uuid4().hex,
            "event_type": event_type,
            "occurred_at": utc_now().isoformat(),
            "data": data,
        }
        if host_id is not None:
            payload["host_id"] = host_id
        request_id = current_context().get("request_id")
        if request_id:
            payload["request_id"] = request_id

        try:
            result = self._deliver_webhook(
                self.config.webhook_url,
                self.config.webhook_secret,
                payload,
                max_retries=self.config.max_retries,
            )
        except (TypeError, ValueError) as e:
            # payload not serializable
            logger.warning(f"System webhook payload for {event_type} rejected: {e}")
            return
        if result["status"] != "success":
            logger.warning(f"System webhook delivery failed for {event_type}: {result.get('error')}")

    @staticmethod
    def sign(secret: str, body: bytes) -> str:
        return "sha256=" + hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()

    @staticmethod
    def _retryable(status_code: int) -> bool:
        return status_code == 429 or 500 <= status_code <= 599

    def _deliver_webhook(
        self, url: str, secret: str, payload: Dict[str, Any], max_retries: int = 2
    ) -> Dict[str, Any]:
        """POST ``payload`` signed with ``secret``; up to ``max_retries`` extra attempts.

        Network errors, 429 and 5xx are retried; any other non-2xx answer is final.
        """
        body = json.dumps(payload, separators=(",", ":"), default=str).encode("utf-8")
        headers = {
            "Content-Type": "application/json",
            SIGNATURE_HEADER: self.sign(secret, body),
        }
        if "event_id" in payload:
            headers[EVENT_ID_HEADER] = payload["event_id"]

        last_error = "Unknown error"
        for _ in range(max_retries + 1):
            try:
                resp = httpx.post(url, content=body, headers=headers, timeout=self.config.timeout_seconds)
            except httpx.HTTPError as e:
                last_error = str(e) or e.__class__.__name__
                continue
            if resp.is_success:
                return {"status": "success"}
            last_error = f"HTTP {resp.status_code}"
            if not self._retryable(resp.status_code):
                break

        return {"status": "failed", "error": last_error}


__all__ = ["NotificationService", "SIGNATURE_HEADER", "EVENT_ID_HEADER"]
