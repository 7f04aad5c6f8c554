"""
Integration tests for the complete unsubscribe workflow.

An email goes out carrying the record's token, the token comes back through
the one-click link, and later sends respect the change.
"""

from datetime import datetime, timezone
from urllib.parse import parse_qs, urlparse

from notifications.digest_queue import DigestQueue
from notifications.email_sender import EmailGateway
from notifications.notification_engine import NotificationEngine
from notifications.preference_store import PreferenceStore
from notifications.unsubscribe_tokens import validate_unsubscribe_token
from tests.fixtures.fakes import FakeClock, InMemoryFinanceData, InMemoryPreferenceBackend
from tests.fixtures.mock_helpers import NotificationEnvTestCase, create_recording_transport
from tests.fixtures.transaction_factory import create_test_category, create_test_transaction
from tests.fixtures.user_factory import create_test_user


class TestUnsubscribeFlow(NotificationEnvTestCase):
    """Test end-to-end unsubscribe workflow."""

    def setUp(self):
        super().setUp()
        self.clock = FakeClock(datetime(2026, 1, 14, 12, 0, tzinfo=timezone.utc))
        self.finance = InMemoryFinanceData(
            users=[create_test_user(user_id="user-1", email="ada@example.com", name="Ada")],
            categories=[create_test_category("user-1", "Food", 100)],
        )
        self.store = PreferenceStore(InMemoryPreferenceBackend(), clock=self.clock)
        self.transport = create_recording_transport()
        self.engine = NotificationEngine(
            self.store,
            EmailGateway(api_key="re_test", transport=self.transport),
            self.finance,
            digest_queue=DigestQueue(),
            clock=self.clock,
        )

    def send_transaction(self, amount):
        tx = self.finance.add_transaction(create_test_transaction("user-1", amount=amount))
        return self.engine.on_transaction_created(tx.id)

    def token_from_last_email(self):
        header = self.transport.call_args[0][0]["headers"]["List-Unsubscribe"]
        url = header.strip("<>")
        return parse_qs(urlparse(url).query)["token"][0]

    def test_emailed_token_identifies_user(self):
        self.send_transaction(20)

        token = self.token_from_last_email()

        self.assertEqual(validate_unsubscribe_token(token), "user-1")
        self.assertEqual(self.store.find_by_unsubscribe_token(token).user_id, "user-1")

    def test_same_token_in_every_email(self):
        self.send_transaction(20)
        first = self.token_from_last_email()
        self.clock.advance(days=10)
        self.send_transaction(30)

        self.assertEqual(self.token_from_last_email(), first)

    def test_unsubscribe_one_class(self):
        self.send_transaction(95)
        token = self.token_from_last_email()

        self.assertTrue(self.store.unsubscribe_one(token, "budgets"))

        self.assertIsNone(self.engine.check_budget_alert("user-1", "Food"))
        self.assertTrue(self.send_transaction(5).success)

    def test_unsubscribe_all_keeps_account_emails(self):
        self.send_transaction(20)
        token = self.token_from_last_email()
        sent_before = self.transport.call_count

        self.assertTrue(self.store.unsubscribe_all(token))

        self.assertIsNone(self.send_transaction(40))
        self.assertIsNone(self.engine.generate_weekly_report("user-1"))
        self.assertIsNone(self.engine.send_personalized_tips("user-1"))
        self.assertEqual(self.transport.call_count, sent_before)

        self.assertTrue(self.engine.send_password_reset_email("user-1", "reset-1").success)

    def test_tampered_token_changes_nothing(self):
        self.send_transaction(20)
        token = self.token_from_last_email()

        self.assertFalse(self.store.unsubscribe_all(token + "x"))
        self.assertTrue(self.store.get("user-1").transaction_notifications.enabled)
