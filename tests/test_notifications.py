"""Unit tests for app.services.notifications: relay sender (mocked httpx) and retry queue."""

import asyncio
import unittest
from types import SimpleNamespace
from typing import Any
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
from pydantic import SecretStr

from app.core.errors import DeliveryRejectedError, DeliveryTransientError
from app.services.notifications import (
    DeliveryRetryQueue,
    HttpNotificationSender,
    LoggingNotificationSender,
    build_confirmation_url,
    build_notification_sender,
)

ACCOUNT = SimpleNamespace(id=7, email="ana@example.com", first_name="Ana", last_name="Diaz")


def _sender() -> HttpNotificationSender:
    return HttpNotificationSender(
        api_url="https://mail.example.com/api/",
        app_url="https://clinic.example.com",
        sender="no-reply@clinic.example.com",
        api_token="relay-token",
        timeout=5.0,
    )


def _mock_client(mock_client_class: MagicMock, post: AsyncMock) -> None:
    instance = MagicMock()
    instance.post = post
    mock_client_class.return_value.__aenter__ = AsyncMock(return_value=instance)
    mock_client_class.return_value.__aexit__ = AsyncMock(return_value=None)


def _response(status_code: int, text: str = "") -> MagicMock:
    resp = MagicMock()
    resp.status_code = status_code
    resp.text = text
    return resp


class TestConfirmationUrl(unittest.TestCase):
    def test_trailing_slash_is_dropped(self) -> None:
        self.assertEqual(
            build_confirmation_url("https://clinic.example.com/", "abc"),
            "https://clinic.example.com/register/confirm/abc",
        )


class TestHttpNotificationSender(unittest.TestCase):
    """send_confirmation posts one JSON message and classifies failures."""

    @patch("app.services.notifications.httpx.AsyncClient")
    def test_posts_message_with_link_and_bearer(self, mock_client_class: MagicMock) -> None:
        post = AsyncMock(return_value=_response(202))
        _mock_client(mock_client_class, post)

        asyncio.run(_sender().send_confirmation(ACCOUNT, "tok123"))

        post.assert_called_once()
        args, kwargs = post.call_args
        self.assertEqual(args[0], "https://mail.example.com/api/messages")
        self.assertEqual(kwargs["headers"], {"Authorization": "Bearer relay-token"})
        self.assertEqual(kwargs["timeout"], 5.0)
        body = kwargs["json"]
        self.assertEqual(body["to"], "ana@example.com")
        self.assertEqual(body["from"], "no-reply@clinic.example.com")
        self.assertEqual(
            body["variables"]["confirmation_url"],
            "https://clinic.example.com/register/confirm/tok123",
        )
        self.assertIn("Hello Ana", body["text"])

    @patch("app.services.notifications.httpx.AsyncClient")
    def test_server_error_is_transient(self, mock_client_class: MagicMock) -> None:
        _mock_client(mock_client_class, AsyncMock(return_value=_response(503)))
        with self.assertRaises(DeliveryTransientError) as ctx:
            asyncio.run(_sender().send_confirmation(ACCOUNT, "tok"))
        self.assertEqual(ctx.exception.status_code, 503)

    @patch("app.services.notifications.httpx.AsyncClient")
    def test_rate_limit_is_transient(self, mock_client_class: MagicMock) -> None:
        _mock_client(mock_client_class, AsyncMock(return_value=_response(429)))
        with self.assertRaises(DeliveryTransientError):
            asyncio.run(_sender().send_confirmation(ACCOUNT, "tok"))

    @patch("app.services.notifications.httpx.AsyncClient")
    def test_client_error_is_rejected(self, mock_client_class: MagicMock) -> None:
        _mock_client(mock_client_class, AsyncMock(return_value=_response(400, "invalid recipient")))
        with self.assertRaises(DeliveryRejectedError) as ctx:
            asyncio.run(_sender().send_confirmation(ACCOUNT, "tok"))
        self.assertIn("invalid recipient", ctx.exception.message)

    @patch("app.services.notifications.httpx.AsyncClient")
    def test_timeout_is_transient(self, mock_client_class: MagicMock) -> None:
        _mock_client(mock_client_class, AsyncMock(side_effect=httpx.ReadTimeout("slow")))
        with self.assertRaises(DeliveryTransientError) as ctx:
            asyncio.run(_sender().send_confirmation(ACCOUNT, "tok"))
        self.assertIn("timed out", ctx.exception.message)

    @patch("app.services.notifications.httpx.AsyncClient")
    def test_connection_error_is_transient(self, mock_client_class: MagicMock) -> None:
        _mock_client(mock_client_class, AsyncMock(side_effect=httpx.ConnectError("refused")))
        with self.assertRaises(DeliveryTransientError):
            asyncio.run(_sender().send_confirmation(ACCOUNT, "tok"))


class TestBuildNotificationSender(unittest.TestCase):
    """Relay sender only when MAIL_API_URL is configured."""

    def test_logging_sender_without_relay(self) -> None:
        settings = MagicMock()
        settings.MAIL_API_URL = None
        self.assertIsInstance(build_notification_sender(settings), LoggingNotificationSender)

    def test_http_sender_with_relay(self) -> None:
        settings = MagicMock()
        settings.MAIL_API_URL = "https://mail.example.com"
        settings.MAIL_API_TOKEN = SecretStr("secret")
        settings.APP_URL = "https://clinic.example.com"
        settings.MAIL_FROM = "no-reply@clinic.example.com"
        settings.MAIL_DISPATCH_TIMEOUT_SEC = 3.0
        self.assertIsInstance(build_notification_sender(settings), HttpNotificationSender)


class FlakySender:
    """Fails with the given errors in order, then succeeds."""

    def __init__(self, *errors: Exception) -> None:
        self.errors = list(errors)
        self.calls = 0

    async def send_confirmation(self, account: Any, token: str) -> None:
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)


class TestDeliveryRetryQueue(unittest.TestCase):
    """Background retries with backoff; callback only after a successful retry."""

    def _run(self, queue: DeliveryRetryQueue, on_delivered: Any = None) -> bool:
        async def scenario() -> bool:
            scheduled = queue.enqueue(ACCOUNT, "tok", on_delivered=on_delivered)
            await queue.drain()
            return scheduled

        return asyncio.run(scenario())

    def test_succeeds_after_transient_failures(self) -> None:
        sender = FlakySender(DeliveryTransientError("down"), DeliveryTransientError("down"))
        delivered = MagicMock()
        queue = DeliveryRetryQueue(sender, attempts=3, base_delay=0)
        self.assertTrue(self._run(queue, delivered))
        self.assertEqual(sender.calls, 3)
        delivered.assert_called_once()
        self.assertEqual(queue.pending, 0)

    def test_gives_up_after_attempts(self) -> None:
        sender = FlakySender(*(DeliveryTransientError("down") for _ in range(5)))
        delivered = MagicMock()
        queue = DeliveryRetryQueue(sender, attempts=2, base_delay=0)
        with self.assertLogs("app.services.notifications", level="ERROR") as logs:
            self._run(queue, delivered)
        self.assertEqual(sender.calls, 2)
        delivered.assert_not_called()
        self.assertTrue(any("exhausted" in line for line in logs.output))

    def test_rejection_stops_retrying(self) -> None:
        sender = FlakySender(DeliveryRejectedError("bad address", 422))
        delivered = MagicMock()
        queue = DeliveryRetryQueue(sender, attempts=3, base_delay=0)
        with self.assertLogs("app.services.notifications", level="ERROR"):
            self._run(queue, delivered)
        self.assertEqual(sender.calls, 1)
        delivered.assert_not_called()

    def test_disabled_retries_schedule_nothing(self) -> None:
        queue = DeliveryRetryQueue(FlakySender(), attempts=0)
        with self.assertLogs("app.services.notifications", level="ERROR"):
            self.assertFalse(self._run(queue))

    def test_enqueue_outside_event_loop_is_refused(self) -> None:
        queue = DeliveryRetryQueue(FlakySender(), attempts=1)
        with self.assertLogs("app.services.notifications", level="ERROR"):
            self.assertFalse(queue.enqueue(ACCOUNT, "tok"))


if __name__ == "__main__":
    unittest.main()
