"""
Unit tests for notifications/notification_engine.py

Uses in-memory preference and finance stores with a recording transport, so
each test can assert exactly which emails would reach Resend.
"""

import os
from datetime import date, datetime, timezone
from unittest.mock import patch

from notifications.digest_queue import DigestQueue
from notifications.email_sender import EmailGateway
from notifications.notification_engine import NotificationEngine
from notifications.preference_store import PreferenceStore
from tests.fixtures.fakes import FakeClock, InMemoryFinanceData, InMemoryPreferenceBackend
from tests.fixtures.mock_helpers import NotificationEnvTestCase, create_recording_transport
from tests.fixtures.transaction_factory import create_test_category, create_test_transaction
from tests.fixtures.user_factory import create_test_user


class EngineTestCase(NotificationEnvTestCase):
    def setUp(self):
        super().setUp()
        self.clock = FakeClock(datetime(2026, 1, 14, 12, 0, tzinfo=timezone.utc))
        self.user = create_test_user(user_id="user-1", email="ada@example.com", name="Ada")
        self.finance = InMemoryFinanceData(users=[self.user])
        self.store = PreferenceStore(InMemoryPreferenceBackend(), clock=self.clock)
        self.transport = create_recording_transport()
        self.gateway = EmailGateway(api_key="re_test", transport=self.transport)
        self.queue = DigestQueue()
        self.engine = NotificationEngine(
            self.store, self.gateway, self.finance, digest_queue=self.queue, clock=self.clock
        )

    def add_transaction(self, amount=25.0, **kwargs):
        return self.finance.add_transaction(create_test_transaction("user-1", amount=amount, **kwargs))

    def sent(self):
        return [call[0][0] for call in self.transport.call_args_list]


class TestTransactionNotifications(EngineTestCase):
    def test_min_amount_filters_sends(self):
        """With min_amount 10, a 5.00 expense sends nothing and a 50.00 expense sends one email."""
        self.store.update("user-1", {"transaction_notifications": {"min_amount": 10}})
        small = self.add_transaction(5)
        large = self.add_transaction(50)

        self.assertIsNone(self.engine.on_transaction_created(small.id))
        self.assertEqual(len(self.sent()), 0)

        result = self.engine.on_transaction_created(large.id)

        self.assertTrue(result.success)
        self.assertEqual(len(self.sent()), 1)
        self.assertEqual(self.sent()[0]["subject"], "Transaction expense: Food")
        self.assertIn("$50.00", self.sent()[0]["html"])

    def test_creates_preferences_on_first_event(self):
        tx = self.add_transaction()

        self.engine.on_transaction_created(tx.id)

        self.assertIsNotNone(self.store.get("user-1"))

    def test_unsubscribe_header_uses_stored_token(self):
        token = self.store.get_or_create("user-1").unsubscribe_token
        tx = self.add_transaction()

        self.engine.on_transaction_created(tx.id)

        params = self.sent()[0]
        expected = f"https://test.example.com/unsubscribe?token={token}"
        self.assertEqual(params["headers"], {"List-Unsubscribe": f"<{expected}>"})
        self.assertIn(expected, params["html"])

    def test_text_format_sends_text_only(self):
        self.store.update("user-1", {"email_format": "text"})
        tx = self.add_transaction()

        self.engine.on_transaction_created(tx.id)

        self.assertNotIn("html", self.sent()[0])
        self.assertIn("Food", self.sent()[0]["text"])

    def test_category_filter(self):
        self.store.update("user-1", {"transaction_notifications": {"categories": ["Travel"]}})
        tx = self.add_transaction(category_name="Food")

        self.assertIsNone(self.engine.on_transaction_created(tx.id))
        self.assertEqual(self.sent(), [])

    def test_unknown_transaction(self):
        self.assertIsNone(self.engine.on_transaction_created("missing"))

    def test_unknown_user(self):
        tx = self.finance.add_transaction(create_test_transaction("ghost"))

        self.assertIsNone(self.engine.on_transaction_created(tx.id))
        self.assertEqual(self.sent(), [])

    def test_successful_send_recorded(self):
        tx = self.add_transaction()

        self.engine.on_transaction_created(tx.id)

        self.assertEqual(self.store.get_delivery_stats("user-1")["last_email_sent"], self.clock.now)

    def test_failed_send_recorded(self):
        self.transport.side_effect = RuntimeError("Resend is down")
        tx = self.add_transaction()

        result = self.engine.on_transaction_created(tx.id)

        self.assertFalse(result.success)
        self.assertEqual(self.store.get_delivery_stats("user-1")["failed_deliveries"], 1)

    def test_configuration_failure_not_held_against_user(self):
        """A missing API key fails every send but never blacklists the recipient."""
        self.engine.gateway = EmailGateway(api_key="", transport=None)

        for _ in range(5):
            tx = self.add_transaction()
            result = self.engine.on_transaction_created(tx.id)
            self.assertEqual(result.error_kind, "configuration")

        stats = self.store.get_delivery_stats("user-1")
        self.assertEqual(stats["failed_deliveries"], 0)
        self.assertFalse(stats["is_blacklisted"])

    def test_blacklisted_user_skipped(self):
        self.store.get_or_create("user-1")
        for _ in range(5):
            self.store.record_delivery_outcome("user-1", False)
        tx = self.add_transaction()

        self.assertIsNone(self.engine.on_transaction_created(tx.id))
        self.assertEqual(self.sent(), [])

    def test_errors_are_logged_not_raised(self):
        tx = self.add_transaction()

        with patch.object(self.finance, "get_user", side_effect=ConnectionError("db down")):
            result = self.engine.on_transaction_created(tx.id)

        self.assertIsNone(result)
        reports = os.listdir(self.log_dir)
        self.assertTrue(any("transaction_notification" in r for r in reports))


class TestDigests(EngineTestCase):
    def test_daily_frequency_buffers(self):
        self.store.update("user-1", {"transaction_notifications": {"frequency": "daily"}})
        tx = self.add_transaction(12)

        self.assertIsNone(self.engine.on_transaction_created(tx.id))

        self.assertEqual(self.sent(), [])
        self.assertEqual(self.queue.pending_count("daily"), 1)
        self.assertEqual(self.queue.pending_count("weekly"), 0)

    def test_never_frequency_drops(self):
        self.store.update("user-1", {"transaction_notifications": {"frequency": "never"}})
        tx = self.add_transaction()

        self.engine.on_transaction_created(tx.id)

        self.assertEqual(self.sent(), [])
        self.assertEqual(self.queue.pending_count(), 0)

    def test_send_digest(self):
        self.store.update("user-1", {"transaction_notifications": {"frequency": "daily"}})
        for amount in (12, 30):
            self.engine.on_transaction_created(self.add_transaction(amount).id)
        self.engine.on_transaction_created(
            self.add_transaction(1000, type="income", category_name="Salary").id
        )

        pending = self.engine.drain_digests("daily")
        result = self.engine.send_digest("user-1", "daily", pending["user-1"])

        self.assertTrue(result.success)
        params = self.sent()[0]
        self.assertEqual(params["subject"], "Your Daily Transaction Digest (3 transactions)")
        self.assertIn("$42.00", params["html"])
        self.assertIn("$1,000.00", params["html"])
        self.assertEqual(self.queue.pending_count(), 0)

    def test_digest_dropped_after_frequency_change(self):
        self.store.update("user-1", {"transaction_notifications": {"frequency": "daily"}})
        self.engine.on_transaction_created(self.add_transaction().id)
        self.store.update("user-1", {"transaction_notifications": {"frequency": "immediate"}})

        pending = self.engine.drain_digests("daily")

        self.assertIsNone(self.engine.send_digest("user-1", "daily", pending["user-1"]))
        self.assertEqual(self.sent(), [])

    def test_empty_digest(self):
        self.assertIsNone(self.engine.send_digest("user-1", "daily", []))


class TestBudgetAlerts(EngineTestCase):
    def setUp(self):
        super().setUp()
        self.finance.categories.append(create_test_category("user-1", "Food", 1000))

    def test_critical_alert(self):
        """920 spent of a 1000 limit is a critical alert with 80 remaining."""
        self.add_transaction(500)
        self.add_transaction(420)

        result = self.engine.check_budget_alert("user-1", "Food")

        self.assertTrue(result.success)
        params = self.sent()[0]
        self.assertEqual(params["subject"], "Budget Alert: Food (92% used)")
        self.assertIn("alert-critical", params["html"])
        self.assertIn("$80.00", params["html"])
        self.assertIn("https://test.example.com/dashboard/budgets", params["html"])

    def test_context_passed_to_gateway(self):
        self.add_transaction(920)

        with patch.object(self.gateway, "send", wraps=self.gateway.send) as send:
            self.engine.check_budget_alert("user-1", "Food")

        context = send.call_args[0][3]
        self.assertEqual(context["alert_type"], "critical")
        self.assertEqual(context["budget"]["remaining"], 80)
        self.assertEqual(context["budget"]["overspent"], 0)
        self.assertAlmostEqual(context["percentage"], 92.0)

    def test_exceeded_alert(self):
        self.add_transaction(1100)

        self.engine.check_budget_alert("user-1", "Food")

        self.assertIn("alert-exceeded", self.sent()[0]["html"])
        self.assertIn("$100.00", self.sent()[0]["html"])

    def test_below_warning(self):
        self.add_transaction(740)

        self.assertIsNone(self.engine.check_budget_alert("user-1", "Food"))
        self.assertEqual(self.sent(), [])

    def test_only_current_month_expenses_count(self):
        self.add_transaction(900, date=datetime(2025, 12, 30, tzinfo=timezone.utc))
        self.add_transaction(2000, type="income")
        self.add_transaction(100)

        self.assertIsNone(self.engine.check_budget_alert("user-1", "Food"))

    def test_category_without_limit(self):
        self.finance.categories.append(create_test_category("user-1", "Misc", None))
        self.add_transaction(500, category_name="Misc")

        self.assertIsNone(self.engine.check_budget_alert("user-1", "Misc"))

    def test_disabled(self):
        self.store.update("user-1", {"budget_alerts": {"enabled": False}})
        self.add_transaction(1500)

        self.assertIsNone(self.engine.check_budget_alert("user-1", "Food"))

    def test_alias(self):
        self.add_transaction(950)

        self.assertTrue(self.engine.check_budget_alerts("user-1", "Food").success)


class TestReports(EngineTestCase):
    def test_weekly_report(self):
        self.add_transaction(70, date=datetime(2026, 1, 13, 9, tzinfo=timezone.utc))
        self.add_transaction(99, date=datetime(2026, 1, 19, 9, tzinfo=timezone.utc))

        result = self.engine.generate_weekly_report("user-1", date(2026, 1, 14))

        self.assertTrue(result.success)
        params = self.sent()[0]
        self.assertEqual(
            params["subject"], "Your Weekly Expense Summary - Jan 12 to Jan 18, 2026"
        )
        self.assertIn("$70.00", params["html"])
        self.assertIn("$10.00", params["html"])
        self.assertNotIn("$99.00", params["html"])

    def test_weekly_report_defaults_to_today(self):
        self.engine.generate_weekly_report("user-1")

        self.assertIn("Jan 12 to Jan 18, 2026", self.sent()[0]["subject"])

    def test_weekly_disabled(self):
        self.store.update("user-1", {"reports": {"weekly": {"enabled": False}}})

        self.assertIsNone(self.engine.generate_weekly_report("user-1"))

    def test_monthly_report(self):
        self.add_transaction(3000, type="income", category_name="Salary", date=datetime(2025, 12, 1, tzinfo=timezone.utc))
        self.add_transaction(1200, category_name="Rent", date=datetime(2025, 12, 2, tzinfo=timezone.utc))
        self.add_transaction(50, date=datetime(2026, 1, 2, tzinfo=timezone.utc))

        result = self.engine.generate_monthly_report("user-1", 12, 2025)

        self.assertTrue(result.success)
        params = self.sent()[0]
        self.assertEqual(params["subject"], "Your Monthly Expense Report - December 2025")
        self.assertIn("$1,800.00", params["html"])
        self.assertIn("Rent", params["html"])
        self.assertIn("+$3,000.00", params["html"])
        self.assertNotIn("$50.00", params["html"])

    def test_monthly_disabled(self):
        self.store.update("user-1", {"reports": {"monthly": {"enabled": False}}})

        self.assertIsNone(self.engine.generate_monthly_report("user-1", 12, 2025))

    def test_personalized_tips(self):
        self.add_transaction(80, category_name="Dining", date=datetime(2025, 12, 10, tzinfo=timezone.utc))

        result = self.engine.send_personalized_tips("user-1")

        self.assertTrue(result.success)
        params = self.sent()[0]
        self.assertEqual(params["subject"], "Your Personalized Financial Tips")
        self.assertIn("Watch Your Dining Spending", params["html"])

    def test_personalized_tips_opt_out(self):
        self.store.update("user-1", {"marketing": {"personalized_insights": False}})

        self.assertIsNone(self.engine.send_personalized_tips("user-1"))


class TestAccountEmails(EngineTestCase):
    def test_welcome_has_no_unsubscribe(self):
        result = self.engine.send_welcome_email("user-1")

        self.assertTrue(result.success)
        params = self.sent()[0]
        self.assertNotIn("headers", params)
        self.assertNotIn("unsubscribe?token=", params["html"])
        self.assertIn("ada@example.com", params["html"])

    def test_welcome_disabled(self):
        self.store.update("user-1", {"account_emails": {"welcome": False}})

        self.assertIsNone(self.engine.send_welcome_email("user-1"))

    def test_password_reset_link(self):
        self.engine.send_password_reset_email("user-1", "reset-abc")

        params = self.sent()[0]
        self.assertEqual(params["subject"], "Reset Your EXTrace Password")
        self.assertIn("https://test.example.com/auth/reset-password?token=reset-abc", params["html"])

    def test_verification_link(self):
        self.engine.send_email_verification("user-1", "verify-xyz")

        self.assertIn(
            "https://test.example.com/auth/verify-email?token=verify-xyz", self.sent()[0]["html"]
        )

    def test_account_emails_survive_unsubscribe_all(self):
        token = self.store.get_or_create("user-1").unsubscribe_token
        self.store.unsubscribe_all(token)

        self.assertTrue(self.engine.send_password_reset_email("user-1", "reset-abc").success)
        self.assertIsNone(self.engine.send_personalized_tips("user-1"))
