"""Tests for payout notifications and SMS gateways."""

from decimal import Decimal
from uuid import uuid4

import httpx
import pytest
from sqlalchemy import select

from payout_engine.events import AsyncEventEmitter, EventMetadata, PayoutCommitted
from payout_engine.exceptions import NotificationFailure
from payout_engine.models import Notification
from payout_engine.services import (
    HttpSmsGateway,
    LoggingSmsGateway,
    NotificationDispatcher,
    build_sms_gateway,
)
from payout_engine.services.notifications import payout_sms_message

from conftest import make_settings


def committed_event(farmer_id, **overrides) -> PayoutCommitted:
    values = dict(
        metadata=EventMetadata.create(),
        payout_id=uuid4(),
        farmer_id=farmer_id,
        period="2025-11",
        total_qty=Decimal("100.00"),
        gross=Decimal("5000.00"),
        total_loan_deductions=Decimal("100.00"),
        total_contributions=Decimal("200.00"),
        net_amount=Decimal("4700.00"),
    )
    values.update(overrides)
    return PayoutCommitted(**values)


def gateway_with(handler, max_retries=3) -> HttpSmsGateway:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return HttpSmsGateway(
        api_url="https://sms.example.test/send",
        api_key="secret",
        sender_id="COOP",
        max_retries=max_retries,
        backoff_base=0,
        client=client,
    )


class TestMessages:
    def test_sms_text(self):
        event = committed_event(uuid4())
        assert payout_sms_message(event) == (
            "Payout for 2025-11 processed! Earned: KES 5000.00, "
            "Deductions: KES 300.00, Net: KES 4700.00. Check your account."
        )

    def test_negative_net_is_shown_signed(self):
        event = committed_event(uuid4(), gross=Decimal("50.00"), net_amount=Decimal("-250.00"))
        assert "Net: KES -250.00" in payout_sms_message(event)


class TestHttpSmsGateway:
    async def test_posts_message(self):
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, json={"status": "queued"})

        await gateway_with(handler).send("+254700000001", "hello")

        (request,) = requests
        assert request.headers["Authorization"] == "Bearer secret"
        assert b'"to":"+254700000001"' in request.content.replace(b" ", b"")

    async def test_retries_server_errors(self):
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            return httpx.Response(503 if calls < 3 else 200)

        await gateway_with(handler).send("+254700000001", "hello")
        assert calls == 3

    async def test_gives_up_after_max_retries(self):
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            return httpx.Response(500)

        with pytest.raises(NotificationFailure):
            await gateway_with(handler, max_retries=2).send("+254700000001", "hello")
        assert calls == 2

    async def test_client_errors_are_not_retried(self):
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            return httpx.Response(400)

        with pytest.raises(NotificationFailure, match="HTTP 400"):
            await gateway_with(handler).send("+254700000001", "hello")
        assert calls == 1

    async def test_network_errors(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(NotificationFailure, match="unreachable"):
            await gateway_with(handler, max_retries=2).send("+254700000001", "hello")


class TestBuildGateway:
    def test_mock_by_default(self):
        assert isinstance(build_sms_gateway(make_settings()), LoggingSmsGateway)

    def test_http_provider(self):
        gateway = build_sms_gateway(
            make_settings(sms_provider="http", sms_api_url="https://sms.example.test/send")
        )
        assert isinstance(gateway, HttpSmsGateway)
        assert gateway.api_url == "https://sms.example.test/send"

    def test_http_without_url_falls_back_to_mock(self):
        assert isinstance(build_sms_gateway(make_settings(sms_provider="http")), LoggingSmsGateway)


class TestNotificationDispatcher:
    async def test_stores_notification_and_sends_sms(self, seed, session_factory, session):
        farmer = await seed.farmer()
        gateway = LoggingSmsGateway()
        emitter = AsyncEventEmitter()
        NotificationDispatcher(session_factory, gateway).register(emitter)

        errors = await emitter.emit(committed_event(farmer.farmer_id))

        assert errors == []
        notification = (await session.execute(select(Notification))).scalar_one()
        assert notification.farmer_id == farmer.farmer_id
        assert notification.metadata_json["net_amount"] == "4700.00"
        assert notification.metadata_json["period"] == "2025-11"
        assert notification.read is False
        assert gateway.sent[0][0] == farmer.phone

    async def test_sms_failure_is_swallowed(self, seed, session_factory, session):
        farmer = await seed.farmer()

        class Broken:
            async def send(self, phone, message):
                raise NotificationFailure("down")

        dispatcher = NotificationDispatcher(session_factory, Broken())

        await dispatcher.handle_payout_committed(committed_event(farmer.farmer_id))

        assert (await session.execute(select(Notification))).scalar_one() is not None
