"""Unit tests for app.services.registration with in-memory stores (no database, no network)."""

import asyncio
import copy
import re
import threading
import unittest
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from types import SimpleNamespace
from typing import Any, Iterator
from unittest.mock import MagicMock

from app.core.errors import (
    AuditWriteFailure,
    ConfigurationError,
    DeliveryRejectedError,
    DeliveryTransientError,
    DuplicateEmailError,
    InvalidConfirmationTokenError,
)
from app.models import AccountStatus
from app.schemas.registration import (
    FeatureFlags,
    RegistrationInput,
    RegistrationOutcome,
    ValidationFailure,
    snapshot_feature_flags,
)
from app.services.registration import (
    AUDIT_ACCOUNT_CREATED,
    AUDIT_CONFIRMATION_SENT,
    AUDIT_EMAIL_CONFIRMED,
    MSG_CONFIRM_EMAIL,
    MSG_MAY_LOG_IN,
    RegistrationWorkflow,
)

URL_SAFE = re.compile(r"^[A-Za-z0-9_-]+$")


@dataclass
class FakeAccount:
    id: int
    email: str
    first_name: str
    last_name: str
    status: str
    lang: str
    password: str
    terms_accepted: bool | None = None
    confirmation_token: str | None = None
    confirmation_sent_at: datetime | None = None
    roles: list[int] = field(default_factory=list)


class InMemoryAccountStore:
    """Account store with a unique email constraint and serialized snapshot/restore transactions."""

    def __init__(self, stale_reads: bool = False) -> None:
        self.accounts: dict[int, FakeAccount] = {}
        self.create_calls = 0
        # Simulates a pre-check that raced with another insert.
        self.stale_reads = stale_reads
        self._seq = 0
        self.create_threads: list[int] = []
        self._lock = threading.RLock()

    @contextmanager
    def atomic(self) -> Iterator[None]:
        with self._lock:
            snapshot = copy.deepcopy(self.accounts)
            try:
                yield
            except Exception:
                self.accounts = snapshot
                raise

    def create(self, fields: dict[str, Any]) -> FakeAccount:
        with self._lock:
            self.create_calls += 1
            self.create_threads.append(threading.get_ident())
            if any(a.email == fields["email"] for a in self.accounts.values()):
                raise DuplicateEmailError(fields["email"])
            self._seq += 1
            account = FakeAccount(id=self._seq, **fields)
            self.accounts[account.id] = account
            return account

    def update(self, account_id: int, fields: dict[str, Any]) -> None:
        for key, value in fields.items():
            setattr(self.accounts[account_id], key, value)

    def find_by_email(self, email: str) -> FakeAccount | None:
        if self.stale_reads:
            return None
        with self._lock:
            return next((a for a in self.accounts.values() if a.email == email), None)

    def find_by_id(self, account_id: int) -> FakeAccount | None:
        return self.accounts.get(account_id)

    def assign_role(self, account_id: int, role_id: int) -> None:
        self.accounts[account_id].roles.append(role_id)

    def consume_confirmation_token(self, token: str, issued_after: datetime) -> FakeAccount | None:
        for account in self.accounts.values():
            if (
                token
                and account.confirmation_token == token
                and account.status == AccountStatus.UNCONFIRMED.value
                and account.confirmation_sent_at is not None
                and account.confirmation_sent_at >= issued_after
            ):
                account.status = AccountStatus.ACTIVE.value
                account.confirmation_token = None
                return account
        return None


class FakeRoleStore:
    def __init__(self, names: tuple[str, ...] = ("admin", "user")) -> None:
        self.roles = {name: SimpleNamespace(id=i, name=name) for i, name in enumerate(names, start=1)}

    def find_by_name(self, name: str) -> SimpleNamespace | None:
        return self.roles.get(name)


class FakeAudit:
    """Records (actor, message, subject id, account visible in store at write time)."""

    def __init__(self, store: InMemoryAccountStore, fail: bool = False) -> None:
        self.entries: list[tuple[str, str, int, bool]] = []
        self._store = store
        self._fail = fail

    def record(self, actor: str, message: str, subject: Any) -> None:
        if self._fail:
            raise AuditWriteFailure("audit table unavailable")
        self.entries.append((actor, message, subject.id, subject.id in self._store.accounts))


class FakeNotifier:
    """Captures dispatches and the token stored on the account at dispatch time."""

    def __init__(
        self,
        store: InMemoryAccountStore,
        error: Exception | None = None,
        delay: float = 0.0,
    ) -> None:
        self.sent: list[tuple[int, str, str | None]] = []
        self._store = store
        self._error = error
        self._delay = delay

    async def send_confirmation(self, account: Any, token: str) -> None:
        if self._delay:
            await asyncio.sleep(self._delay)
        if self._error is not None:
            raise self._error
        stored = self._store.accounts[account.id].confirmation_token
        self.sent.append((account.id, token, stored))


def _registration(**overrides: object) -> RegistrationInput:
    """Scenario A/B input; override fields per test."""
    data: dict[str, object] = {
        "name": "Ana",
        "lastname": "Diaz",
        "email": "ana@example.com",
        "password": "secret1",
        "password_confirmation": "secret1",
    }
    data.update(overrides)
    return RegistrationInput(**data)


def _flags(**overrides: object) -> FeatureFlags:
    values: dict[str, object] = {
        "terms_required": False,
        "email_confirmation_required": True,
        "default_language": "es",
    }
    values.update(overrides)
    return FeatureFlags(**values)


class _WorkflowTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.store = InMemoryAccountStore()
        self.roles = FakeRoleStore()
        self.audit = FakeAudit(self.store)
        self.notifier = FakeNotifier(self.store)
        self.retry_queue = MagicMock()
        self.retry_queue.enqueue.return_value = True

    def _workflow(self, **kwargs: Any) -> RegistrationWorkflow:
        options: dict[str, Any] = {
            "accounts": self.store,
            "roles": self.roles,
            "notifier": self.notifier,
            "audit": self.audit,
            "retry_queue": self.retry_queue,
            "dispatch_timeout": 1.0,
        }
        options.update(kwargs)
        return RegistrationWorkflow(**options)

    def _submit(self, payload: RegistrationInput, flags: FeatureFlags, **kwargs: Any) -> Any:
        return asyncio.run(self._workflow(**kwargs).submit_registration(payload, flags))


class TestValidationFailureHasNoSideEffects(_WorkflowTestCase):
    """Any failing rule returns ValidationFailure and touches nothing."""

    def test_each_required_field_missing(self) -> None:
        for name in ("name", "lastname", "email", "password", "password_confirmation"):
            with self.subTest(field=name):
                result = self._submit(_registration(**{name: ""}), _flags())
                self.assertIsInstance(result, ValidationFailure)
                self.assertIn(name, result.errors)
                self.assertEqual(self.store.create_calls, 0)
                self.assertEqual(self.audit.entries, [])
                self.assertEqual(self.notifier.sent, [])

    def test_password_mismatch_fails_on_password(self) -> None:
        result = self._submit(_registration(password_confirmation="secret2"), _flags())
        self.assertIsInstance(result, ValidationFailure)
        self.assertEqual(result.errors["password"], ["The password confirmation does not match."])
        self.assertEqual(self.store.create_calls, 0)


class TestTermsFlag(_WorkflowTestCase):
    """accept_terms only matters when terms are required."""

    def test_terms_off_succeeds_without_acceptance(self) -> None:
        result = self._submit(_registration(), _flags(terms_required=False))
        self.assertIsInstance(result, RegistrationOutcome)
        self.assertIsNone(self.store.accounts[result.account_id].terms_accepted)

    def test_terms_on_fails_without_acceptance(self) -> None:
        result = self._submit(_registration(), _flags(terms_required=True))
        self.assertIsInstance(result, ValidationFailure)
        self.assertIn("accept_terms", result.errors)

    def test_terms_on_succeeds_with_acceptance(self) -> None:
        result = self._submit(_registration(accept_terms="1"), _flags(terms_required=True))
        self.assertIsInstance(result, RegistrationOutcome)
        self.assertTrue(self.store.accounts[result.account_id].terms_accepted)


class TestScenarioConfirmationRequired(_WorkflowTestCase):
    """Scenario A: email confirmation on."""

    def test_unconfirmed_account_token_notification_and_two_audits(self) -> None:
        result = self._submit(_registration(), _flags(email_confirmation_required=True))

        self.assertIsInstance(result, RegistrationOutcome)
        self.assertEqual(result.message, MSG_CONFIRM_EMAIL)
        account = self.store.accounts[result.account_id]
        self.assertEqual(account.status, AccountStatus.UNCONFIRMED.value)
        self.assertEqual(account.lang, "es")
        self.assertEqual(account.roles, [self.roles.roles["user"].id])

        token = account.confirmation_token
        self.assertIsNotNone(token)
        self.assertGreaterEqual(len(token), 60)
        self.assertRegex(token, URL_SAFE)
        self.assertIsNotNone(account.confirmation_sent_at)

        # Token was stored before the notification went out.
        self.assertEqual(self.notifier.sent, [(account.id, token, token)])
        self.assertEqual(
            [(actor, msg) for actor, msg, _, _ in self.audit.entries],
            [("user", AUDIT_ACCOUNT_CREATED), ("system", AUDIT_CONFIRMATION_SENT)],
        )

    def test_account_visible_before_first_audit_entry(self) -> None:
        self._submit(_registration(), _flags())
        _, _, _, visible = self.audit.entries[0]
        self.assertTrue(visible)

    def test_password_handed_to_store_only(self) -> None:
        result = self._submit(_registration(), _flags())
        self.assertEqual(self.store.accounts[result.account_id].password, "secret1")

    def test_email_normalized(self) -> None:
        result = self._submit(_registration(email="  Ana@Example.COM "), _flags())
        self.assertEqual(self.store.accounts[result.account_id].email, "ana@example.com")


class TestScenarioNoConfirmation(_WorkflowTestCase):
    """Scenario B: email confirmation off."""

    def test_active_account_no_token_no_notification_one_audit(self) -> None:
        result = self._submit(_registration(), _flags(email_confirmation_required=False))

        self.assertIsInstance(result, RegistrationOutcome)
        self.assertEqual(result.message, MSG_MAY_LOG_IN)
        account = self.store.accounts[result.account_id]
        self.assertEqual(account.status, AccountStatus.ACTIVE.value)
        self.assertIsNone(account.confirmation_token)
        self.assertEqual(self.notifier.sent, [])
        self.assertEqual(len(self.audit.entries), 1)
        self.assertEqual(self.audit.entries[0][:2], ("user", AUDIT_ACCOUNT_CREATED))


class TestDuplicateEmail(_WorkflowTestCase):
    """Second registration with the same email fails on the email field."""

    def test_sequential_duplicate(self) -> None:
        first = self._submit(_registration(), _flags())
        second = self._submit(_registration(name="Other"), _flags())
        self.assertIsInstance(first, RegistrationOutcome)
        self.assertIsInstance(second, ValidationFailure)
        self.assertEqual(second.errors, {"email": ["The email has already been taken."]})
        self.assertEqual(len(self.store.accounts), 1)

    def test_insert_constraint_is_authoritative_when_precheck_is_stale(self) -> None:
        self.store.stale_reads = True
        self._submit(_registration(), _flags())
        second = self._submit(_registration(), _flags())
        self.assertIsInstance(second, ValidationFailure)
        self.assertEqual(second.errors, {"email": ["The email has already been taken."]})
        self.assertEqual(self.store.create_calls, 2)
        self.assertEqual(len(self.store.accounts), 1)
        # The rejected attempt left no audit trail.
        self.assertEqual(len([e for e in self.audit.entries if e[1] == AUDIT_ACCOUNT_CREATED]), 1)

    def test_concurrent_submissions_create_one_account(self) -> None:
        self.store.stale_reads = True
        workflow = self._workflow()
        flags = _flags(email_confirmation_required=False)

        async def run_all() -> list[Any]:
            return await asyncio.gather(
                *(workflow.submit_registration(_registration(), flags) for _ in range(10))
            )

        results = asyncio.run(run_all())
        outcomes = [r for r in results if isinstance(r, RegistrationOutcome)]
        failures = [r for r in results if isinstance(r, ValidationFailure)]
        self.assertEqual(len(outcomes), 1)
        self.assertEqual(len(failures), 9)
        self.assertEqual(len(self.store.accounts), 1)

    def test_display_name_form_does_not_register_the_same_mailbox_twice(self) -> None:
        flags = _flags(email_confirmation_required=False)
        first = self._submit(_registration(), flags)
        second = self._submit(_registration(email="Ana Diaz <ana@example.com>"), flags)
        self.assertIsInstance(first, RegistrationOutcome)
        self.assertIsInstance(second, ValidationFailure)
        self.assertEqual(second.errors, {"email": ["The email must be a valid email address."]})
        self.assertEqual(len(self.store.accounts), 1)


class TestBlockingWorkLeavesTheEventLoop(_WorkflowTestCase):
    """Store writes (bcrypt, database) run in worker threads, not on the loop thread."""

    def test_account_insert_runs_off_the_loop_thread(self) -> None:
        async def scenario() -> int:
            await self._workflow().submit_registration(_registration(), _flags())
            return threading.get_ident()

        loop_thread = asyncio.run(scenario())
        self.assertEqual(len(self.store.create_threads), 1)
        self.assertNotEqual(self.store.create_threads[0], loop_thread)

    def test_loop_keeps_serving_while_an_insert_blocks(self) -> None:
        release = threading.Event()
        original_create = self.store.create

        def slow_create(fields: dict[str, Any]) -> FakeAccount:
            release.wait(timeout=5)
            return original_create(fields)

        self.store.create = slow_create

        async def scenario() -> Any:
            pending = asyncio.create_task(
                self._workflow().submit_registration(_registration(), _flags())
            )
            await asyncio.sleep(0.05)
            # The loop is still responsive while the insert waits.
            self.assertFalse(pending.done())
            release.set()
            return await pending

        self.assertIsInstance(asyncio.run(scenario()), RegistrationOutcome)


class TestMissingDefaultRole(_WorkflowTestCase):
    """A missing 'user' role is fatal and leaves no account behind."""

    def test_raises_and_rolls_back(self) -> None:
        self.roles = FakeRoleStore(names=("admin",))
        with self.assertLogs("app.services.registration", level="CRITICAL"):
            with self.assertRaises(ConfigurationError):
                self._submit(_registration(), _flags(), roles=self.roles)
        self.assertEqual(self.store.accounts, {})
        self.assertEqual(self.audit.entries, [])
        self.assertEqual(self.notifier.sent, [])


class TestAuditFailureIsContained(_WorkflowTestCase):
    """Audit write errors never change the outcome."""

    def test_registration_succeeds_when_audit_fails(self) -> None:
        audit = FakeAudit(self.store, fail=True)
        with self.assertLogs("app.services.audit", level="WARNING"):
            result = self._submit(_registration(), _flags(), audit=audit)
        self.assertIsInstance(result, RegistrationOutcome)
        self.assertIn(result.account_id, self.store.accounts)
        self.assertEqual(len(self.notifier.sent), 1)


class TestDeliveryProblemsAreContained(_WorkflowTestCase):
    """Dispatch failures keep the account and defer or drop the email."""

    def test_transient_error_enqueues_retry_without_system_audit(self) -> None:
        notifier = FakeNotifier(self.store, error=DeliveryTransientError("relay down"))
        result = self._submit(_registration(), _flags(), notifier=notifier)

        self.assertIsInstance(result, RegistrationOutcome)
        self.assertEqual(result.message, MSG_CONFIRM_EMAIL)
        account = self.store.accounts[result.account_id]
        self.retry_queue.enqueue.assert_called_once()
        queued_account, queued_token = self.retry_queue.enqueue.call_args[0]
        self.assertEqual(queued_account.id, account.id)
        self.assertEqual(queued_token, account.confirmation_token)
        self.assertEqual([e[1] for e in self.audit.entries], [AUDIT_ACCOUNT_CREATED])

    def test_retry_callback_writes_system_audit(self) -> None:
        notifier = FakeNotifier(self.store, error=DeliveryTransientError("relay down"))
        self._submit(_registration(), _flags(), notifier=notifier)
        on_delivered = self.retry_queue.enqueue.call_args[1]["on_delivered"]
        on_delivered()
        self.assertEqual(
            [e[:2] for e in self.audit.entries],
            [("user", AUDIT_ACCOUNT_CREATED), ("system", AUDIT_CONFIRMATION_SENT)],
        )

    def test_timeout_enqueues_retry(self) -> None:
        notifier = FakeNotifier(self.store, delay=1.0)
        result = self._submit(_registration(), _flags(), notifier=notifier, dispatch_timeout=0.01)
        self.assertIsInstance(result, RegistrationOutcome)
        self.retry_queue.enqueue.assert_called_once()
        self.assertEqual(notifier.sent, [])

    def test_rejected_message_is_logged_not_retried(self) -> None:
        notifier = FakeNotifier(self.store, error=DeliveryRejectedError("bad recipient", 400))
        with self.assertLogs("app.services.registration", level="ERROR"):
            result = self._submit(_registration(), _flags(), notifier=notifier)
        self.assertIsInstance(result, RegistrationOutcome)
        self.retry_queue.enqueue.assert_not_called()
        self.assertEqual([e[1] for e in self.audit.entries], [AUDIT_ACCOUNT_CREATED])

    def test_no_retry_queue_still_succeeds(self) -> None:
        notifier = FakeNotifier(self.store, error=DeliveryTransientError("relay down"))
        with self.assertLogs("app.services.registration", level="ERROR"):
            result = self._submit(_registration(), _flags(), notifier=notifier, retry_queue=None)
        self.assertIsInstance(result, RegistrationOutcome)


class TestConfirmAccount(_WorkflowTestCase):
    """Token consumption: Unconfirmed -> Active exactly once."""

    def _registered_token(self) -> tuple[int, str]:
        result = self._submit(_registration(), _flags())
        return result.account_id, self.store.accounts[result.account_id].confirmation_token

    def test_first_consumption_activates_and_clears_token(self) -> None:
        account_id, token = self._registered_token()
        self._workflow().confirm_account(token, _flags())
        account = self.store.accounts[account_id]
        self.assertEqual(account.status, AccountStatus.ACTIVE.value)
        self.assertIsNone(account.confirmation_token)
        self.assertEqual(self.audit.entries[-1][:2], ("user", AUDIT_EMAIL_CONFIRMED))

    def test_replay_fails(self) -> None:
        _, token = self._registered_token()
        workflow = self._workflow()
        workflow.confirm_account(token, _flags())
        with self.assertRaises(InvalidConfirmationTokenError):
            workflow.confirm_account(token, _flags())

    def test_expired_token_fails(self) -> None:
        account_id, token = self._registered_token()
        self.store.accounts[account_id].confirmation_sent_at = datetime.now(UTC) - timedelta(hours=49)
        with self.assertRaises(InvalidConfirmationTokenError):
            self._workflow().confirm_account(token, _flags(confirmation_token_ttl_hours=48))
        self.assertEqual(self.store.accounts[account_id].status, AccountStatus.UNCONFIRMED.value)

    def test_unknown_token_fails(self) -> None:
        self._registered_token()
        with self.assertRaises(InvalidConfirmationTokenError):
            self._workflow().confirm_account("not-a-token", _flags())


class TestFeatureFlagSnapshot(unittest.TestCase):
    """snapshot_feature_flags reads each key once and returns a frozen value."""

    def test_reads_each_key_once(self) -> None:
        values = {
            "registration_enabled": True,
            "terms_and_conditions_show": True,
            "reg_email_confirmation": False,
            "language_default": "en",
            "confirmation_token_ttl_hours": 24,
        }
        provider = MagicMock()
        provider.get.side_effect = values.__getitem__
        flags = snapshot_feature_flags(provider)
        self.assertTrue(flags.terms_required)
        self.assertFalse(flags.email_confirmation_required)
        self.assertEqual(flags.default_language, "en")
        self.assertEqual(flags.confirmation_token_ttl_hours, 24)
        self.assertEqual(provider.get.call_count, len(values))

    def test_snapshot_is_frozen(self) -> None:
        flags = _flags()
        with self.assertRaises(Exception):
            flags.terms_required = True  # type: ignore[misc]


if __name__ == "__main__":
    unittest.main()
