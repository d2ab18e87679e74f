"""Confirmation email dispatch: mail-relay sender, dev logging sender and a retry queue."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

import httpx

from app.core.errors import DeliveryRejectedError, DeliveryTransientError

if TYPE_CHECKING:
    from app.core.config import Settings

logger = logging.getLogger(__name__)

CONFIRMATION_SUBJECT = "Confirm your Dentaria account"
CONFIRMATION_TEMPLATE = "confirmation_email"


def build_confirmation_url(app_url: str, token: str) -> str:
    return f"{app_url.rstrip('/')}/register/confirm/{token}"


def _confirmation_text(first_name: str, url: str) -> str:
    return (
        f"Hello {first_name},\n\n"
        "Thanks for registering. Please confirm your email address by opening the link below:\n\n"
        f"{url}\n\n"
        "If you did not create an account, you can ignore this message."
    )


class HttpNotificationSender:
    """Posts confirmation messages to a JSON mail relay (MAIL_API_URL)."""

    def __init__(
        self,
        api_url: str,
        app_url: str,
        sender: str,
        api_token: str | None = None,
        timeout: float = 10.0,
    ) -> None:
        self._api_url = api_url.rstrip("/")
        self._app_url = app_url
        self._sender = sender
        self._api_token = api_token
        self._timeout = timeout

    async def send_confirmation(self, account: Any, token: str) -> None:
        """
        Deliver one confirmation message. Raises DeliveryTransientError on timeouts,
        connection errors, 429 and 5xx; DeliveryRejectedError on other 4xx.
        """
        url = build_confirmation_url(self._app_url, token)
        payload = {
            "from": self._sender,
            "to": account.email,
            "subject": CONFIRMATION_SUBJECT,
            "template": CONFIRMATION_TEMPLATE,
            "text": _confirmation_text(account.first_name, url),
            "variables": {"first_name": account.first_name, "confirmation_url": url},
        }
        headers = {"Authorization": f"Bearer {self._api_token}"} if self._api_token else {}
        async with httpx.AsyncClient() as client:
            try:
                resp = await client.post(
                    f"{self._api_url}/messages",
                    json=payload,
                    headers=headers,
                    timeout=self._timeout,
                )
            except httpx.TimeoutException as e:
                raise DeliveryTransientError("Mail relay timed out.") from e
            except httpx.HTTPError as e:
                raise DeliveryTransientError(f"Mail relay unreachable: {type(e).__name__}") from e
        if resp.status_code == 429 or resp.status_code >= 500:
            raise DeliveryTransientError(
                f"Mail relay returned {resp.status_code}", resp.status_code
            )
        if resp.status_code >= 400:
            detail = resp.text[:200] if resp.text else "no body"
            raise DeliveryRejectedError(
                f"Mail relay rejected message ({resp.status_code}): {detail}", resp.status_code
            )


class LoggingNotificationSender:
    """Dev fallback when no relay is configured: logs that a message would be sent."""

    async def send_confirmation(self, account: Any, token: str) -> None:
        # The link carries the token; only the account id is logged.
        logger.info(
            "Confirmation email not sent (MAIL_API_URL unset)",
            extra={"account_id": account.id},
        )


def build_notification_sender(settings: Settings) -> HttpNotificationSender | LoggingNotificationSender:
    """Pick the relay sender when MAIL_API_URL is configured, else the logging sender."""
    if settings.MAIL_API_URL:
        token = settings.MAIL_API_TOKEN.get_secret_value() if settings.MAIL_API_TOKEN else None
        return HttpNotificationSender(
            api_url=settings.MAIL_API_URL,
            app_url=settings.APP_URL,
            sender=settings.MAIL_FROM,
            api_token=token,
            timeout=settings.MAIL_DISPATCH_TIMEOUT_SEC,
        )
    return LoggingNotificationSender()


class DeliveryRetryQueue:
    """
    Retries deferred confirmation deliveries in background tasks with exponential
    backoff (base_delay, 2*base_delay, ...). `on_delivered` runs after a retry succeeds.
    """

    def __init__(
        self,
        sender: Any,
        attempts: int = 3,
        base_delay: float = 2.0,
        timeout: float = 10.0,
    ) -> None:
        self._sender = sender
        self._attempts = attempts
        self._base_delay = base_delay
        self._timeout = timeout
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def enqueue(
        self,
        account: Any,
        token: str,
        on_delivered: Callable[[], Any] | None = None,
    ) -> bool:
        """Schedule retries on the running loop. Returns False when nothing could be scheduled."""
        if self._attempts < 1:
            logger.error("Confirmation email dropped; retries disabled", extra={"account_id": account.id})
            return False
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.error("Confirmation email dropped; no event loop", extra={"account_id": account.id})
            return False
        task = loop.create_task(self._deliver(account, token, on_delivered))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return True

    async def _deliver(
        self,
        account: Any,
        token: str,
        on_delivered: Callable[[], Any] | None,
    ) -> None:
        for attempt in range(1, self._attempts + 1):
            await asyncio.sleep(self._base_delay * 2 ** (attempt - 1))
            try:
                await asyncio.wait_for(
                    self._sender.send_confirmation(account, token), timeout=self._timeout
                )
            except DeliveryRejectedError as e:
                logger.error(
                    "Confirmation email rejected by relay",
                    extra={"account_id": account.id, "attempt": attempt, "reason": e.message[:200]},
                )
                return
            except (DeliveryTransientError, TimeoutError) as e:
                logger.warning(
                    "Confirmation email retry failed",
                    extra={
                        "account_id": account.id,
                        "attempt": attempt,
                        "reason": getattr(e, "message", "timed out")[:200],
                    },
                )
                continue
            logger.info(
                "Confirmation email delivered after retry",
                extra={"account_id": account.id, "attempt": attempt},
            )
            if on_delivered is not None:
                await asyncio.to_thread(on_delivered)
            return
        logger.error(
            "Confirmation email retries exhausted",
            extra={"account_id": account.id, "attempts": self._attempts},
        )

    async def drain(self) -> None:
        """Wait for every scheduled delivery to finish (shutdown and tests)."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
