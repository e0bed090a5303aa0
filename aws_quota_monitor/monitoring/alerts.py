"""Notification channels for quota warnings."""

import logging
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional

import httpx
import structlog

from ..models import QuotaWarning

logger = logging.getLogger(__name__)


class WarningNotifier:
    """Base class for warning notification channels."""

    name = "notifier"

    async def send_warnings(self, warnings: List[QuotaWarning]) -> bool:
        """Send a batch of warnings. Returns True if successful."""
        raise NotImplementedError


class LogNotifier(WarningNotifier):
    """Sends warnings to structured logs."""

    name = "log"

    def __init__(self):
        self.logger = structlog.get_logger("quota_warnings")

    async def send_warnings(self, warnings: List[QuotaWarning]) -> bool:
        for warning in warnings:
            self.logger.warning(
                "Quota usage above alarm threshold",
                service_code=warning.service_code,
                quota_code=warning.quota_code,
                quota_name=warning.quota_name,
                usage=warning.usage,
                limit=warning.limit,
                alarm=warning.matched_alarm_name,
                threshold=warning.matched_threshold,
                event_type="quota_warning",
            )
        return True


class WebhookNotifier(WarningNotifier):
    """Posts warnings to a webhook endpoint."""

    name = "webhook"

    def __init__(self, webhook_url: str, timeout: int = 30,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.webhook_url = webhook_url
        self.timeout = timeout
        self._transport = transport

    def build_payload(self, warnings: List[QuotaWarning]) -> Dict:
        return {
            "event": "quota.warning",
            "warnings": [w.to_dict() for w in warnings],
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    async def send_warnings(self, warnings: List[QuotaWarning]) -> bool:
        try:
            async with httpx.AsyncClient(transport=self._transport) as client:
                response = await client.post(
                    self.webhook_url,
                    json=self.build_payload(warnings),
                    timeout=self.timeout,
                )
                return response.is_success

        except httpx.HTTPError as e:
            logger.error(f"Failed to send webhook warning: {e}")
            return False


class WarningDispatcher:
    """Fans warnings out to every configured notifier.

    A failing channel is logged and reported as False; it never stops the
    other channels or raises to the caller.
    """

    def __init__(self, notifiers: Optional[Iterable[WarningNotifier]] = None):
        self.notifiers: List[WarningNotifier] = list(notifiers or [])
        self.logger = structlog.get_logger("warning_dispatcher")

    def add_notifier(self, notifier: WarningNotifier):
        self.notifiers.append(notifier)

    async def dispatch(self, warnings: List[QuotaWarning]) -> Dict[str, bool]:
        """Send warnings to all notifiers; returns success per notifier name."""
        results: Dict[str, bool] = {}
        if not warnings:
            return results

        for notifier in self.notifiers:
            try:
                ok = await notifier.send_warnings(warnings)
            except Exception as e:
                self.logger.error(
                    "Notifier raised while sending warnings",
                    notifier=notifier.name,
                    error=str(e),
                )
                ok = False
            results[notifier.name] = ok

        self.logger.info(
            "Quota warnings dispatched",
            warnings=len(warnings),
            failed_channels=[name for name, ok in results.items() if not ok],
        )
        return results


def create_dispatcher(webhook_url: Optional[str] = None, webhook_timeout: int = 30) -> WarningDispatcher:
    """Log notifier always; webhook notifier when a URL is configured."""
    dispatcher = WarningDispatcher([LogNotifier()])
    if webhook_url:
        dispatcher.add_notifier(WebhookNotifier(webhook_url, timeout=webhook_timeout))
    return dispatcher
