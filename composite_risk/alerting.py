"""
Composite Risk Engine - Alert Dispatch.

============================================================
PURPOSE
============================================================
Delivers newly recorded alert log entries to external
destinations.

Provides:
- Signed JSON webhook delivery with retry
- Log-only delivery for development
- A dispatcher that never lets delivery failures reach
  the scoring pipeline

============================================================
WEBHOOK SIGNATURE
============================================================
When a secret is configured each request carries:

    X-Alert-Timestamp: <ISO-8601 timestamp>
    X-Alert-Signature: hex(HMAC-SHA256(secret, "<timestamp>.<body>"))

Receivers recompute the HMAC over the raw body.

============================================================
"""

import asyncio
import hashlib
import hmac
import json
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional, Protocol

import httpx

from .config import AlertingConfig
from .types import AlertLogEntry


logger = logging.getLogger(__name__)


# ============================================================
# ALERT BATCH
# ============================================================


@dataclass(frozen=True)
class AlertBatch:
    """Alerts recorded by one run, delivered together."""

    occurred_at: date
    alerts: List[AlertLogEntry]
    run_id: str = "local"
    diagnostics: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "occurred_at": self.occurred_at.isoformat(),
            "alerts": [a.to_dict() for a in self.alerts],
            "diagnostics": dict(self.diagnostics, total_alerts_today=len(self.alerts)),
        }

    def to_text(self) -> str:
        lines = [f"Composite risk alerts for {self.occurred_at.isoformat()}:"]
        for alert in self.alerts:
            details = alert.details
            if "from" in details and "to" in details:
                lines.append(f"  - {alert.type.value}: {details['from']} -> {details['to']}")
            elif "factors" in details:
                keys = ", ".join(f["key"] for f in details["factors"])
                lines.append(f"  - {alert.type.value}: {keys}")
            else:
                lines.append(f"  - {alert.type.value}")
        return "\n".join(lines)


def sign_payload(secret: str, body: str, timestamp: str) -> str:
    """HMAC-SHA256 over "<timestamp>.<body>", hex encoded."""
    message = f"{timestamp}.{body}".encode("utf-8")
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


# ============================================================
# ALERT SENDER PROTOCOL
# ============================================================


class AlertSender(Protocol):
    """
    Protocol for alert sending implementations.
    """

    async def send(self, batch: AlertBatch) -> bool:
        """
        Send an alert batch.

        Returns:
            True if sent successfully
        """
        ...


# ============================================================
# WEBHOOK ALERT SENDER
# ============================================================


class WebhookAlertSender:
    """
    POST alert batches as JSON to a webhook.

    Retries on 429, 5xx and transport errors with exponential
    backoff; other statuses fail immediately.
    """

    def __init__(
        self,
        url: str,
        secret: Optional[str] = None,
        timeout_seconds: float = 10.0,
        max_retries: int = 2,
        initial_delay_seconds: float = 1.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._url = url
        self._secret = secret
        self._timeout = timeout_seconds
        self._max_retries = max_retries
        self._initial_delay = initial_delay_seconds
        self._transport = transport

    def build_request(self, batch: AlertBatch, now: Optional[datetime] = None) -> tuple:
        """Return (body, headers) for a batch."""
        body = json.dumps(batch.to_dict(), separators=(",", ":"), sort_keys=True)
        headers = {"Content-Type": "application/json"}
        if self._secret:
            timestamp = (now or datetime.now(timezone.utc)).isoformat()
            headers["X-Alert-Timestamp"] = timestamp
            headers["X-Alert-Signature"] = sign_payload(self._secret, body, timestamp)
        return body, headers

    async def send(self, batch: AlertBatch) -> bool:
        body, headers = self.build_request(batch)
        delay = self._initial_delay

        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            for attempt in range(self._max_retries + 1):
                try:
                    response = await client.post(self._url, content=body, headers=headers)
                except httpx.HTTPError as e:
                    logger.warning(f"Webhook attempt {attempt + 1} failed: {e}")
                else:
                    if response.is_success:
                        logger.info(f"Webhook delivered {len(batch.alerts)} alert(s)")
                        return True
                    retryable = response.status_code == 429 or response.status_code >= 500
                    logger.warning(f"Webhook attempt {attempt + 1} returned {response.status_code}")
                    if not retryable:
                        return False

                if attempt < self._max_retries:
                    await asyncio.sleep(delay)
                    delay *= 2

        return False


# ============================================================
# LOGGING ALERT SENDER (FOR DEVELOPMENT)
# ============================================================


class LoggingAlertSender:
    """Write alerts to the log instead of delivering them."""

    async def send(self, batch: AlertBatch) -> bool:
        logger.warning(batch.to_text())
        return True


# ============================================================
# DISPATCHER
# ============================================================


class AlertDispatcher:
    """
    Sends newly appended alerts to every configured sender.

    Delivery failures are logged and reported in the return
    value; they never raise.
    """

    def __init__(self, senders: Optional[List[AlertSender]] = None):
        self._senders: List[AlertSender] = list(senders or [])

    @property
    def senders(self) -> List[AlertSender]:
        return list(self._senders)

    def add_sender(self, sender: AlertSender) -> None:
        self._senders.append(sender)

    async def dispatch(
        self,
        day: date,
        alerts: List[AlertLogEntry],
        run_id: str = "local",
        diagnostics: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, bool]:
        """
        Deliver a batch; returns delivery status per sender class.

        Nothing is sent when ``alerts`` is empty.
        """
        if not alerts:
            return {}

        batch = AlertBatch(occurred_at=day, alerts=alerts, run_id=run_id, diagnostics=diagnostics or {})
        results: Dict[str, bool] = {}
        for sender in self._senders:
            name = type(sender).__name__
            try:
                results[name] = await sender.send(batch)
            except Exception as e:
                logger.error(f"Alert sender {name} failed: {e}")
                results[name] = False
        return results


def create_dispatcher(config: AlertingConfig) -> AlertDispatcher:
    """
    Build a dispatcher from configuration.

    Always logs; adds the webhook when a URL is configured.
    """
    senders: List[AlertSender] = [LoggingAlertSender()]
    if config.webhook_url:
        senders.append(
            WebhookAlertSender(
                url=config.webhook_url,
                secret=config.webhook_secret,
                timeout_seconds=config.webhook_timeout_seconds,
            )
        )
    return AlertDispatcher(senders)
