"""Farmer notifications for committed payouts.

Consumes PayoutCommitted events after the settlement transaction is durable.
Nothing here can roll back a settlement: every failure is logged and dropped.
"""

from __future__ import annotations

import asyncio
import logging
from decimal import Decimal
from typing import Protocol

import httpx
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from payout_engine.config import Settings
from payout_engine.events import AsyncEventEmitter, PayoutCommitted
from payout_engine.exceptions import NotificationFailure
from payout_engine.models import Farmer, Notification

logger = logging.getLogger(__name__)


class SmsGateway(Protocol):
    """Outbound SMS channel."""

    async def send(self, phone: str, message: str) -> None:
        """Send ``message`` to ``phone``; raise NotificationFailure on failure."""
        ...


class LoggingSmsGateway:
    """Development gateway that only logs messages."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, str]] = []

    async def send(self, phone: str, message: str) -> None:
        self.sent.append((phone, message))
        logger.info("[MOCK SMS] To: %s Message: %s", phone, message)


class HttpSmsGateway:
    """SMS provider reached over HTTP, with exponential backoff retry.

    Retries on 5xx responses and network failures: base, 2x base, 4x base...
    A 4xx response is not retried.
    """

    def __init__(
        self,
        api_url: str,
        api_key: str | None = None,
        sender_id: str = "COOP",
        timeout: float = 10.0,
        max_retries: int = 3,
        backoff_base: float = 0.5,
        client: httpx.AsyncClient | None = None,
    ):
        self.api_url = api_url
        self.api_key = api_key
        self.sender_id = sender_id
        self.timeout = timeout
        self.max_retries = max(1, max_retries)
        self.backoff_base = backoff_base
        self._client = client

    async def send(self, phone: str, message: str) -> None:
        payload = {"to": phone, "from": self.sender_id, "message": message}
        headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}

        if self._client is not None:
            await self._post_with_retry(self._client, payload, headers)
            return
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            await self._post_with_retry(client, payload, headers)

    async def _post_with_retry(
        self,
        client: httpx.AsyncClient,
        payload: dict[str, str],
        headers: dict[str, str],
    ) -> None:
        attempt = 0
        while True:
            try:
                response = await client.post(self.api_url, json=payload, headers=headers)
                response.raise_for_status()
                return
            except httpx.HTTPStatusError as e:
                attempt += 1
                if e.response.status_code < 500 or attempt >= self.max_retries:
                    raise NotificationFailure(
                        f"SMS provider rejected message to {payload['to']}: "
                        f"HTTP {e.response.status_code}"
                    ) from e
            except httpx.RequestError as e:
                attempt += 1
                if attempt >= self.max_retries:
                    raise NotificationFailure(
                        f"SMS provider unreachable after {attempt} attempt(s): {e}"
                    ) from e
            await asyncio.sleep(self.backoff_base * (2 ** (attempt - 1)))


def build_sms_gateway(settings: Settings) -> SmsGateway:
    """Gateway for the configured SMS_PROVIDER."""
    if settings.sms_provider == "http":
        if not settings.sms_api_url:
            logger.warning("SMS_PROVIDER=http but SMS_API_URL is not set; using mock")
            return LoggingSmsGateway()
        return HttpSmsGateway(
            api_url=settings.sms_api_url,
            api_key=settings.sms_api_key,
            sender_id=settings.sms_sender_id,
            timeout=settings.sms_timeout_seconds,
        )
    return LoggingSmsGateway()


def _money(value: Decimal) -> str:
    return f"{value:.2f}"


def payout_notification_message(event: PayoutCommitted) -> str:
    return (
        f"Your payout for {event.period} has been processed. "
        f"Milk: {event.currency} {_money(event.gross)}, "
        f"Deductions: {event.currency} {_money(event.total_deductions)}, "
        f"Net: {event.currency} {_money(event.net_amount)}"
    )


def payout_sms_message(event: PayoutCommitted) -> str:
    return (
        f"Payout for {event.period} processed! "
        f"Earned: {event.currency} {_money(event.gross)}, "
        f"Deductions: {event.currency} {_money(event.total_deductions)}, "
        f"Net: {event.currency} {_money(event.net_amount)}. Check your account."
    )


class NotificationDispatcher:
    """Writes the in-app notification and sends the SMS for a payout."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        sms_gateway: SmsGateway,
    ):
        self.session_factory = session_factory
        self.sms_gateway = sms_gateway

    def register(self, emitter: AsyncEventEmitter) -> None:
        emitter.on(PayoutCommitted, self.handle_payout_committed)

    async def handle_payout_committed(self, event: PayoutCommitted) -> None:
        """Never raises: a lost notification must not look like a failed payout."""
        try:
            phone = await self._store_notification(event)
        except Exception:
            logger.exception(
                "Failed to create payout notification for farmer %s period %s",
                event.farmer_id,
                event.period,
            )
            return

        if not phone:
            return
        try:
            await self.sms_gateway.send(phone, payout_sms_message(event))
        except Exception:
            logger.exception(
                "SMS sending error (non-critical) for farmer %s", event.farmer_id
            )

    async def _store_notification(self, event: PayoutCommitted) -> str | None:
        """Insert the notification row; returns the farmer's phone."""
        async with self.session_factory() as session:
            async with session.begin():
                farmer = await session.get(Farmer, event.farmer_id)
                session.add(
                    Notification(
                        farmer_id=event.farmer_id,
                        notification_type="payout_processed",
                        title="Payout Processed",
                        message=payout_notification_message(event),
                        metadata_json={
                            "payout_id": str(event.payout_id),
                            "period": event.period,
                            "total_qty": str(event.total_qty),
                            "total_amount": str(event.gross),
                            "total_loan_deductions": str(event.total_loan_deductions),
                            "total_contributions": str(event.total_contributions),
                            "net_amount": str(event.net_amount),
                        },
                    )
                )
            return farmer.phone if farmer is not None else None
