import unittest
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import requests
from fastapi.testclient import TestClient

from momentum_backend.app import create_app
from momentum_backend.db import InMemoryDbClient
from momentum_backend.dependencies import (
    get_clock,
    get_db_client,
    get_queue_client,
    get_receipt_verifier,
)
from momentum_backend.queue import InMemoryJobQueue
from momentum_backend.receipts import PRODUCTION_URL, SANDBOX_URL, AppleReceiptVerifier
from momentum_backend.usage import refresh_chat_stats

NOW = datetime(2025, 1, 18, 20, 0, tzinfo=timezone.utc)
NOW_MS = int(NOW.timestamp() * 1000)


def _apple_response(payload: dict, status_code: int = 200) -> MagicMock:
    response = MagicMock()
    response.status_code = status_code
    response.json.return_value = payload
    if status_code >= 400:
        response.raise_for_status.side_effect = requests.HTTPError(response=response)
    return response


class BackendApiTests(unittest.TestCase):
    def setUp(self):
        self.db = InMemoryDbClient()
        self.queue = InMemoryJobQueue()
        self.session = MagicMock()
        self.verifier = AppleReceiptVerifier("secret", session=self.session)
        self.now = NOW

        app = create_app()
        app.dependency_overrides[get_db_client] = lambda: self.db
        app.dependency_overrides[get_queue_client] = lambda: self.queue
        app.dependency_overrides[get_receipt_verifier] = lambda: self.verifier
        app.dependency_overrides[get_clock] = lambda: (lambda: self.now)
        self.client = TestClient(app)

    def _create_user(self, user_id: str = "u1", **extra) -> dict:
        response = self.client.post("/api/users", json={"user_id": user_id, **extra})
        self.assertEqual(response.status_code, 201)
        return response.json()

    def test_create_and_get_user(self):
        payload = self._create_user(timezone="Asia/Tokyo")
        self.assertEqual(payload["subscription_tier"], "free")
        self.assertEqual(payload["day_streak"], 0)

        response = self.client.get("/api/users/u1")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["timezone"], "Asia/Tokyo")

        self.assertEqual(self.client.get("/api/users/ghost").status_code, 404)

    def test_create_user_rejects_bad_timezone_and_duplicates(self):
        response = self.client.post(
            "/api/users", json={"user_id": "u1", "timezone": "Mars/Olympus"}
        )
        self.assertEqual(response.status_code, 400)
        self._create_user()
        self.assertEqual(
            self.client.post("/api/users", json={"user_id": "u1"}).status_code, 400
        )

    def test_weekly_chat_limit(self):
        self._create_user()
        for _ in range(10):
            response = self.client.post("/api/users/u1/chats")
            self.assertEqual(response.status_code, 201)
        self.assertEqual(response.json()["usage"]["remaining"], 0)

        response = self.client.post("/api/users/u1/chats")
        self.assertEqual(response.status_code, 429)
        detail = response.json()["detail"]
        self.assertEqual(detail["count"], 10)
        self.assertFalse(detail["can_create_chat"])

        # Sunday 00:00 UTC starts a new week.
        self.now = datetime(2025, 1, 19, tzinfo=timezone.utc)
        usage = self.client.get("/api/users/u1/chat-usage").json()
        self.assertEqual(usage["count"], 0)
        self.assertEqual(self.client.post("/api/users/u1/chats").status_code, 201)

    def test_chat_for_unknown_user(self):
        self.assertEqual(self.client.post("/api/users/ghost/chats").status_code, 404)

    def test_goal_flow(self):
        self._create_user()
        response = self.client.post(
            "/api/users/u1/goals",
            json={
                "title": "Get fit",
                "color": "#FF00FF",
                "tasks": [
                    {"title": "Walk", "due_at": "2025-01-18T08:00:00Z"},
                    {"title": "Stretch", "due_at": "2025-01-19T08:00:00Z"},
                ],
            },
        )
        self.assertEqual(response.status_code, 201)
        goal = response.json()
        self.assertEqual(goal["color"], "#3B82F6")
        self.assertEqual(len(goal["tasks"]), 2)

        second = self.client.post("/api/users/u1/goals", json={"title": "Read"})
        self.assertEqual(second.status_code, 403)
        self.assertEqual(second.json()["detail"]["upgrade_title"], "Goal Limit Reached")

        task_id = goal["tasks"][0]["task_id"]
        done = self.client.post(f"/api/users/u1/tasks/{task_id}/complete")
        self.assertEqual(done.status_code, 200)
        self.assertEqual(done.json()["task"]["status"], "done")
        self.assertEqual(done.json()["day_streak"], 1)

        streak = self.client.get("/api/users/u1/streak").json()
        self.assertEqual(streak["last_streak_date"], "2025-01-18")

        goals = self.client.get("/api/users/u1/goals").json()["goals"]
        self.assertEqual(goals[0]["done_tasks"], 1)
        self.assertEqual(goals[0]["completion_ratio"], 0.5)

        missing = self.client.post("/api/users/u1/tasks/nope/complete")
        self.assertEqual(missing.status_code, 404)

    def test_invalid_goal_payload(self):
        self._create_user()
        response = self.client.post(
            "/api/users/u1/goals", json={"title": "x", "color": "blue"}
        )
        self.assertEqual(response.status_code, 422)

    def test_subscription_endpoints(self):
        self._create_user()
        sub = self.client.get("/api/users/u1/subscription").json()
        self.assertEqual(sub["source"], "free")

        trial = self.client.post("/api/users/u1/subscription/trial", json={}).json()
        self.assertTrue(trial["is_premium"])
        self.assertEqual(trial["status"], "trialing")

        granted = self.client.post(
            "/api/users/u1/admin-premium", json={"duration": "lifetime", "tier": "family"}
        ).json()
        self.assertEqual(granted["source"], "admin_override")
        self.assertEqual(granted["expires_at"], "infinity")

        bad = self.client.post("/api/users/u1/admin-premium", json={"duration": "soon"})
        self.assertEqual(bad.status_code, 400)

        cleared = self.client.delete("/api/users/u1/admin-premium").json()
        self.assertEqual(cleared["source"], "subscription")

        feature = self.client.get("/api/users/u1/features/ai_chat_coach").json()
        self.assertTrue(feature["has_access"])

    def test_subscription_event(self):
        self._create_user()
        response = self.client.post(
            "/api/users/u1/subscription/events",
            json={
                "status": "active",
                "tier": "premium",
                "product_id": "monthly",
                "expires_at": (NOW + timedelta(days=30)).isoformat(),
            },
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["subscription_tier"], "premium")
        self.assertEqual(len(self.db.list_subscriptions("u1")), 1)

    def test_feature_gate_for_free_user(self):
        self._create_user()
        feature = self.client.get("/api/users/u1/features/advanced_analytics").json()
        self.assertFalse(feature["has_access"])
        self.assertTrue(feature["requires_upgrade"])
        limit = self.client.get("/api/users/u1/goal-limit").json()
        self.assertEqual(limit, {"can_create_goal": True, "current_count": 0, "limit": 1})

    def test_verify_receipt_sandbox_fallback_and_persist(self):
        self._create_user()
        self.session.post.side_effect = [
            _apple_response({"status": 21007}),
            _apple_response(
                {
                    "status": 0,
                    "environment": "Sandbox",
                    "latest_receipt_info": [
                        {
                            "product_id": "monthly",
                            "expires_date_ms": str(NOW_MS + 86_400_000),
                        }
                    ],
                }
            ),
        ]
        response = self.client.post(
            "/api/receipts/verify", json={"receipt": "abc", "user_id": "u1"}
        )
        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertTrue(body["isActive"])
        self.assertEqual(body["productId"], "monthly")
        urls = [c.args[0] for c in self.session.post.call_args_list]
        self.assertEqual(urls, [PRODUCTION_URL, SANDBOX_URL])

        profile = self.client.get("/api/users/u1").json()
        self.assertEqual(profile["subscription_tier"], "premium")

    def test_verify_receipt_apple_error_is_200(self):
        self.session.post.return_value = _apple_response({"status": 21003})
        response = self.client.post("/api/receipts/verify", json={"receipt": "abc"})
        self.assertEqual(response.status_code, 200)
        self.assertFalse(response.json()["isActive"])
        self.assertEqual(response.json()["status"], 21003)

    def test_verify_receipt_errors(self):
        self.assertEqual(
            self.client.post("/api/receipts/verify", json={}).status_code, 400
        )

        self.session.post.return_value = _apple_response({}, status_code=503)
        response = self.client.post("/api/receipts/verify", json={"receipt": "abc"})
        self.assertEqual(response.status_code, 502)
        self.assertEqual(response.json()["detail"]["status"], 503)

        self.verifier = AppleReceiptVerifier(None, session=self.session)
        response = self.client.post("/api/receipts/verify", json={"receipt": "abc"})
        self.assertEqual(response.status_code, 500)

    def test_verify_receipt_non_object_body_is_502(self):
        self.session.post.return_value = _apple_response(["x"])
        response = self.client.post("/api/receipts/verify", json={"receipt": "abc"})
        self.assertEqual(response.status_code, 502)
        self.assertEqual(response.json()["detail"]["status"], 200)

    def test_admin_premium_rejects_overflowing_duration(self):
        self._create_user()
        response = self.client.post(
            "/api/users/u1/admin-premium", json={"duration": "999999999 days"}
        )
        self.assertEqual(response.status_code, 400)
        sub = self.client.get("/api/users/u1/subscription").json()
        self.assertEqual(sub["source"], "free")

    def test_goal_limit_is_null_for_premium(self):
        self._create_user()
        self.client.post("/api/users/u1/subscription/trial", json={})
        limit = self.client.get("/api/users/u1/goal-limit").json()
        self.assertEqual(limit, {"can_create_goal": True, "current_count": 0, "limit": None})

    def test_enqueue_maintenance_job(self):
        response = self.client.post("/api/maintenance/cleanup-old-chat-usage")
        self.assertEqual(response.status_code, 202)
        body = response.json()
        self.assertEqual(body["job"], "cleanup-old-chat-usage")
        self.assertEqual(body["queued"], 1)
        (job,) = self.queue.items
        self.assertEqual(job.name, "cleanup-old-chat-usage")
        self.assertEqual(job.due_at, NOW)

        self.assertEqual(self.client.post("/api/maintenance/nope").status_code, 400)

    def test_weekly_stats_endpoint(self):
        self.db.insert_chat_usage("u1", NOW)
        refresh_chat_stats(self.db)
        stats = self.client.get("/api/stats/weekly-chats", params={"user_id": "u1"}).json()
        self.assertEqual(stats["stats"][0]["chat_count"], 1)


if __name__ == "__main__":
    unittest.main()
