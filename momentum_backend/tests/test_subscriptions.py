import unittest
from datetime import datetime, timedelta, timezone

from momentum_backend.db import InMemoryDbClient
from momentum_backend.receipts import Entitlement
from momentum_backend.subscriptions import (
    apply_entitlement,
    clear_admin_premium,
    get_effective_subscription,
    grant_admin_premium,
    is_user_premium,
    parse_duration,
    start_premium_trial,
    upsert_subscription_event,
)
from momentum_backend.types import FOREVER, SubscriptionStatus, SubscriptionTier

NOW = datetime(2025, 6, 1, 12, tzinfo=timezone.utc)


class EffectiveSubscriptionTests(unittest.TestCase):
    def setUp(self):
        self.db = InMemoryDbClient()
        self.db.create_profile("u1")

    def test_default_is_free(self):
        sub = get_effective_subscription(self.db, "u1", NOW)
        self.assertEqual(sub.tier, SubscriptionTier.FREE)
        self.assertEqual(sub.status, SubscriptionStatus.EXPIRED)
        self.assertEqual(sub.source, "free")
        self.assertFalse(sub.is_premium)

    def test_trial(self):
        start_premium_trial(self.db, "u1", 7, now=NOW)
        sub = get_effective_subscription(self.db, "u1", NOW + timedelta(days=6))
        self.assertEqual(sub.source, "subscription")
        self.assertEqual(sub.status, SubscriptionStatus.TRIALING)

        # Once the profile's subscription lapses the trial window still applies.
        self.db.update_profile("u1", {"subscription_status": SubscriptionStatus.EXPIRED})
        sub = get_effective_subscription(self.db, "u1", NOW + timedelta(days=6))
        self.assertEqual(sub.source, "trial")
        self.assertEqual(sub.expires_at, NOW + timedelta(days=7))

        sub = get_effective_subscription(self.db, "u1", NOW + timedelta(days=8))
        self.assertEqual(sub.source, "free")

    def test_trial_days_clamped_to_one(self):
        profile = start_premium_trial(self.db, "u1", 0, now=NOW)
        self.assertEqual(profile.trial_ends_at, NOW + timedelta(days=1))

    def test_paid_subscription(self):
        upsert_subscription_event(
            self.db,
            "u1",
            status=SubscriptionStatus.ACTIVE,
            tier=SubscriptionTier.PREMIUM,
            product_id="monthly",
            expires_at=NOW + timedelta(days=30),
            subscription_id="sub-1",
            now=NOW,
        )
        sub = get_effective_subscription(self.db, "u1", NOW)
        self.assertEqual(sub.source, "subscription")
        self.assertTrue(sub.is_premium)
        self.assertTrue(is_user_premium(self.db, "u1", NOW))
        self.assertFalse(is_user_premium(self.db, "u1", NOW + timedelta(days=31)))
        self.assertEqual(
            get_effective_subscription(self.db, "u1", NOW + timedelta(days=31)).source,
            "free",
        )

    def test_event_keeps_existing_subscription_id(self):
        common = dict(
            status=SubscriptionStatus.ACTIVE,
            tier=SubscriptionTier.PREMIUM,
            product_id="monthly",
            expires_at=None,
            now=NOW,
        )
        upsert_subscription_event(self.db, "u1", subscription_id="sub-1", **common)
        profile = upsert_subscription_event(self.db, "u1", **common)
        self.assertEqual(profile.subscription_id, "sub-1")
        self.assertEqual(len(self.db.list_subscriptions("u1")), 2)

    def test_admin_override_takes_precedence(self):
        grant_admin_premium(
            self.db, "u1", "lifetime", tier=SubscriptionTier.FAMILY, set_by="ops", now=NOW
        )
        sub = get_effective_subscription(self.db, "u1", NOW + timedelta(days=3650))
        self.assertEqual(sub.source, "admin_override")
        self.assertEqual(sub.tier, SubscriptionTier.FAMILY)
        self.assertEqual(sub.as_dict()["expires_at"], "infinity")

        clear_admin_premium(self.db, "u1")
        self.assertEqual(get_effective_subscription(self.db, "u1", NOW).source, "free")

    def test_admin_override_expires(self):
        grant_admin_premium(self.db, "u1", "7 days", now=NOW)
        self.assertEqual(
            get_effective_subscription(self.db, "u1", NOW + timedelta(days=6)).source,
            "admin_override",
        )
        self.assertEqual(
            get_effective_subscription(self.db, "u1", NOW + timedelta(days=7)).source,
            "free",
        )

    def test_apply_active_entitlement(self):
        entitlement = Entitlement(
            is_active=True,
            status=0,
            product_id="monthly",
            expires_at=NOW + timedelta(days=30),
            environment="Sandbox",
        )
        profile = apply_entitlement(self.db, "u1", entitlement, now=NOW)
        self.assertEqual(profile.subscription_tier, SubscriptionTier.PREMIUM)
        self.assertEqual(profile.product_id, "monthly")
        self.assertEqual(self.db.list_subscriptions("u1")[0].environment, "sandbox")


class ParseDurationTests(unittest.TestCase):
    def test_lifetime_words(self):
        for word in ("lifetime", "Forever", " infinite ", "PERMANENT"):
            self.assertEqual(parse_duration(word, NOW), FOREVER)

    def test_natural_durations(self):
        self.assertEqual(parse_duration("7 days", NOW), NOW + timedelta(days=7))
        self.assertEqual(parse_duration("1 day", NOW), NOW + timedelta(days=1))
        self.assertEqual(parse_duration("2 weeks", NOW), NOW + timedelta(weeks=2))
        self.assertEqual(parse_duration("12 hours", NOW), NOW + timedelta(hours=12))
        self.assertEqual(
            parse_duration("1 month", NOW), datetime(2025, 7, 1, 12, tzinfo=timezone.utc)
        )

    def test_garbage(self):
        for text in (
            "soon",
            "3 fortnights",
            "",
            "999999999 days",
            "99999999999 minutes",
        ):
            with self.assertRaises(ValueError):
                parse_duration(text, NOW)


if __name__ == "__main__":
    unittest.main()
