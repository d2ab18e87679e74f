"""Registration workflow: validate, create the account with its initial status and role,
optionally send the email confirmation, and keep the audit trail.

The workflow only talks to the ports in app.services.ports; the API layer builds it
with SQLAlchemy stores and turns its results into HTTP responses.
"""

import asyncio
import logging
from datetime import UTC, datetime, timedelta
from typing import Any

from app.core.errors import (
    ConfigurationError,
    DeliveryRejectedError,
    DeliveryTransientError,
    DuplicateEmailError,
    InvalidConfirmationTokenError,
)
from app.core.security import (
    EMAIL_MAX_LEN,
    NAME_MAX_LEN,
    PASSWORD_MAX_LEN,
    PASSWORD_MIN_LEN,
    generate_confirmation_token,
)
from app.models.user import AccountStatus
from app.schemas.registration import (
    AccountRef,
    FeatureFlags,
    RegistrationInput,
    RegistrationOutcome,
    ValidationFailure,
)
from app.services import validation as v
from app.services.audit import ACTOR_SYSTEM, ACTOR_USER, record_safely
from app.services.notifications import DeliveryRetryQueue
from app.services.ports import Account, AccountStore, AuditLogger, NotificationSender, RoleStore

logger = logging.getLogger(__name__)

DEFAULT_ROLE = "user"

MSG_CONFIRM_EMAIL = "account created; check email to confirm."
MSG_MAY_LOG_IN = "account created; you may log in."
MSG_EMAIL_CONFIRMED = "email confirmed; you may log in."

AUDIT_ACCOUNT_CREATED = "account created"
AUDIT_CONFIRMATION_SENT = "confirmation email sent"
AUDIT_EMAIL_CONFIRMED = "email confirmed"


def registration_rules(
    email_taken: Any,
    terms_required: bool,
) -> list[v.FieldRules]:
    """Field rules for a registration form; accept_terms only when terms are required."""
    rules: list[v.FieldRules] = [
        ("name", (v.required(), v.max_length(NAME_MAX_LEN))),
        ("lastname", (v.required(), v.max_length(NAME_MAX_LEN))),
        ("email", (v.required(), v.email(), v.max_length(EMAIL_MAX_LEN), v.unique(email_taken))),
        (
            "password",
            (
                v.required(),
                v.min_length(PASSWORD_MIN_LEN),
                v.max_length(PASSWORD_MAX_LEN),
                v.confirmed("password"),
            ),
        ),
        ("password_confirmation", (v.required(), v.min_length(PASSWORD_MIN_LEN))),
    ]
    if terms_required:
        rules.append(("accept_terms", (v.accepted(),)))
    return rules

class RegistrationWorkflow:
    """
    One instance per request. Collaborators are injected; nothing here reads
    global settings (the caller passes a FeatureFlags snapshot).

    Store and audit calls block (database round trips, bcrypt), so the async
    entrypoint runs them in worker threads and keeps only mail dispatch on the loop.
    """

    def __init__(
        self,
        accounts: AccountStore,
        roles: RoleStore,
        notifier: NotificationSender,
        audit: AuditLogger,
        retry_queue: DeliveryRetryQueue | None = None,
        dispatch_timeout: float = 10.0,
    ) -> None:
        self._accounts = accounts
        self._roles = roles
        self._notifier = notifier
        self._audit = audit
        self._retry_queue = retry_queue
        self._dispatch_timeout = dispatch_timeout

    def validate(self, data: dict[str, Any], flags: FeatureFlags) -> ValidationFailure | None:
        """Pure check (the uniqueness rule is a read). None when every rule passes."""
        rules = registration_rules(self._email_taken, flags.terms_required)
        errors = v.evaluate(data, rules)
        return ValidationFailure(errors) if errors else None

    def _email_taken(self, email: str) -> bool:
        return self._accounts.find_by_email(email) is not None

    async def submit_registration(
        self,
        payload: RegistrationInput,
        flags: FeatureFlags,
    ) -> RegistrationOutcome | ValidationFailure:
        """
        Register a new account.

        Returns ValidationFailure (no side effects) or RegistrationOutcome.
        Raises ConfigurationError when the default role is not provisioned; in
        that case the account insert is rolled back.
        """
        data = payload.normalized(include_terms=flags.terms_required)
        result = await asyncio.to_thread(self.create_account, data, flags)
        if isinstance(result, ValidationFailure):
            return result
        account = result

        if not flags.email_confirmation_required:
            return RegistrationOutcome(message=MSG_MAY_LOG_IN, account_id=account.id)

        token = await asyncio.to_thread(self._issue_confirmation_token, account)
        await self._dispatch_confirmation(account, token)
        return RegistrationOutcome(message=MSG_CONFIRM_EMAIL, account_id=account.id)

    def create_account(
        self,
        data: dict[str, Any],
        flags: FeatureFlags,
    ) -> AccountRef | ValidationFailure:
        """Validate, then insert the account with its default role in one transaction. Blocking."""
        failure = self.validate(data, flags)
        if failure is not None:
            return failure

        status = (
            AccountStatus.UNCONFIRMED
            if flags.email_confirmation_required
            else AccountStatus.ACTIVE
        )
        fields: dict[str, Any] = {
            "first_name": data["name"],
            "last_name": data["lastname"],
            "email": data["email"],
            "password": data["password"],
            "status": status.value,
            "lang": flags.default_language,
        }
        if flags.terms_required:
            fields["terms_accepted"] = True

        try:
            with self._accounts.atomic():
                created = self._accounts.create(fields)
                role = self._roles.find_by_name(DEFAULT_ROLE)
                if role is None:
                    raise ConfigurationError(f'Default role "{DEFAULT_ROLE}" is not provisioned.')
                self._accounts.assign_role(created.id, role.id)
                account = AccountRef(
                    id=created.id,
                    email=created.email,
                    first_name=created.first_name,
                    last_name=created.last_name,
                )
        except DuplicateEmailError as e:
            return ValidationFailure({"email": [e.message]})
        except ConfigurationError as e:
            logger.critical("Registration aborted: %s", e.message)
            raise

        logger.info(
            "Account registered",
            extra={"account_id": account.id, "status": status.value},
        )
        record_safely(self._audit, ACTOR_USER, AUDIT_ACCOUNT_CREATED, account)
        return account

    def _issue_confirmation_token(self, account: AccountRef) -> str:
        token = generate_confirmation_token()
        self._accounts.update(
            account.id,
            {"confirmation_token": token, "confirmation_sent_at": datetime.now(UTC)},
        )
        return token

    def _confirmation_sent(self, account: AccountRef) -> None:
        record_safely(self._audit, ACTOR_SYSTEM, AUDIT_CONFIRMATION_SENT, account)

    async def _dispatch_confirmation(self, account: AccountRef, token: str) -> None:
        """Send within the timeout; on transient failure hand off to the retry queue."""
        try:
            await asyncio.wait_for(
                self._notifier.send_confirmation(account, token),
                timeout=self._dispatch_timeout,
            )
        except DeliveryRejectedError as e:
            logger.error(
                "Confirmation email rejected",
                extra={"account_id": account.id, "reason": e.message[:200]},
            )
            return
        except (DeliveryTransientError, TimeoutError) as e:
            reason = getattr(e, "message", "timed out")
            logger.warning(
                "Confirmation email deferred",
                extra={"account_id": account.id, "reason": reason[:200]},
            )
            if self._retry_queue is None or not self._retry_queue.enqueue(
                account, token, on_delivered=lambda: self._confirmation_sent(account)
            ):
                logger.error("Confirmation email not queued", extra={"account_id": account.id})
            return
        await asyncio.to_thread(self._confirmation_sent, account)

    def confirm_account(self, token: str, flags: FeatureFlags) -> Account:
        """
        Consume a confirmation token: Unconfirmed -> Active, token cleared.
        Raises InvalidConfirmationTokenError for unknown, expired or replayed tokens.
        """
        issued_after = datetime.now(UTC) - timedelta(hours=flags.confirmation_token_ttl_hours)
        account = self._accounts.consume_confirmation_token(token, issued_after)
        if account is None:
            raise InvalidConfirmationTokenError()
        logger.info("Account confirmed", extra={"account_id": account.id})
        record_safely(self._audit, ACTOR_USER, AUDIT_EMAIL_CONFIRMED, account)
        return account
