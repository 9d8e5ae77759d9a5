import unittest
from datetime import datetime, timezone
from unittest.mock import MagicMock

import requests

from momentum_backend.receipts import (
    PRODUCTION_URL,
    SANDBOX_URL,
    STATUS_MESSAGES,
    UNKNOWN_STATUS_MESSAGE,
    AppleReceiptVerifier,
    ReceiptConfigurationError,
    ReceiptTransportError,
    describe_status,
    map_entitlement,
)

NOW = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)
NOW_MS = int(NOW.timestamp() * 1000)
DAY_MS = 24 * 60 * 60 * 1000


def _response(payload: dict, status_code: int = 200) -> MagicMock:
    response = MagicMock()
    response.status_code = status_code
    response.json.return_value = payload
    if status_code >= 400:
        response.raise_for_status.side_effect = requests.HTTPError(response=response)
    return response


def _verifier(*responses) -> tuple[AppleReceiptVerifier, MagicMock]:
    session = MagicMock()
    session.post.side_effect = list(responses)
    return AppleReceiptVerifier("secret", session=session), session


class MapEntitlementTests(unittest.TestCase):
    def test_latest_expiry_wins(self):
        payload = {
            "status": 0,
            "environment": "Production",
            "latest_receipt_info": [
                {"product_id": "old", "expires_date_ms": str(NOW_MS - DAY_MS)},
                {
                    "product_id": "monthly",
                    "expires_date_ms": str(NOW_MS + DAY_MS),
                    "original_purchase_date_ms": str(NOW_MS - 30 * DAY_MS),
                },
            ],
        }
        entitlement = map_entitlement(payload, NOW)
        self.assertTrue(entitlement.is_active)
        self.assertEqual(entitlement.product_id, "monthly")
        self.assertEqual(entitlement.environment, "Production")
        self.assertEqual(entitlement.expires_at, datetime(2025, 6, 2, 12, tzinfo=timezone.utc))
        self.assertEqual(
            entitlement.as_dict()["originalPurchaseDate"], "2025-05-02T12:00:00+00:00"
        )

    def test_expiry_must_be_strictly_in_future(self):
        payload = {
            "status": 0,
            "latest_receipt_info": [{"product_id": "p", "expires_date_ms": str(NOW_MS)}],
        }
        self.assertFalse(map_entitlement(payload, NOW).is_active)

    def test_empty_receipt_info_is_inactive(self):
        entitlement = map_entitlement({"status": 0}, NOW)
        self.assertFalse(entitlement.is_active)
        self.assertIsNone(entitlement.error)

    def test_apple_status_codes_map_to_messages(self):
        for status in range(21000, 21011):
            entitlement = map_entitlement({"status": status}, NOW)
            self.assertFalse(entitlement.is_active)
            self.assertEqual(entitlement.error, STATUS_MESSAGES[status])
        self.assertEqual(describe_status(21199), UNKNOWN_STATUS_MESSAGE)
        self.assertIsNone(describe_status(0))

    def test_expires_date_used_when_ms_field_missing(self):
        payload = {
            "status": 0,
            "latest_receipt_info": [
                {"product_id": "old", "expires_date_ms": str(NOW_MS - DAY_MS)},
                {"product_id": "yearly", "expires_date": str(NOW_MS + DAY_MS)},
            ],
        }
        entitlement = map_entitlement(payload, NOW)
        self.assertTrue(entitlement.is_active)
        self.assertEqual(entitlement.product_id, "yearly")
        self.assertEqual(entitlement.expires_at, datetime(2025, 6, 2, 12, tzinfo=timezone.utc))

    def test_missing_or_garbled_status_is_not_success(self):
        info = [{"product_id": "monthly", "expires_date_ms": str(NOW_MS + DAY_MS)}]
        for payload in (
            {"latest_receipt_info": info},
            {"status": None, "latest_receipt_info": info},
            {"status": "abc", "latest_receipt_info": info},
            {"status": True, "latest_receipt_info": info},
        ):
            entitlement = map_entitlement(payload, NOW)
            self.assertFalse(entitlement.is_active)
            self.assertIsNone(entitlement.status)
            self.assertEqual(entitlement.error, UNKNOWN_STATUS_MESSAGE)
        self.assertEqual(describe_status(None), UNKNOWN_STATUS_MESSAGE)
        self.assertTrue(map_entitlement({"status": "0", "latest_receipt_info": info}, NOW).is_active)


class VerifierTests(unittest.TestCase):
    def test_sandbox_receipt_retries_sandbox_once(self):
        verifier, session = _verifier(
            _response({"status": 21007}),
            _response({"status": 0, "environment": "Sandbox"}),
        )
        entitlement = verifier.verify("abc", NOW)
        self.assertEqual(session.post.call_count, 2)
        self.assertEqual(session.post.call_args_list[0].args[0], PRODUCTION_URL)
        self.assertEqual(session.post.call_args_list[1].args[0], SANDBOX_URL)
        self.assertEqual(entitlement.environment, "Sandbox")

    def test_request_body(self):
        verifier, session = _verifier(_response({"status": 0}))
        verifier.verify("abc", NOW)
        body = session.post.call_args.kwargs["json"]
        self.assertEqual(
            body,
            {"receipt-data": "abc", "password": "secret", "exclude-old-transactions": True},
        )

    def test_production_receipt_on_sandbox_retries_production(self):
        session = MagicMock()
        session.post.side_effect = [_response({"status": 21008}), _response({"status": 0})]
        verifier = AppleReceiptVerifier(
            "secret", start_environment="sandbox", session=session
        )
        verifier.verify("abc", NOW)
        urls = [c.args[0] for c in session.post.call_args_list]
        self.assertEqual(urls, [SANDBOX_URL, PRODUCTION_URL])

    def test_retry_happens_at_most_once(self):
        verifier, session = _verifier(
            _response({"status": 21007}), _response({"status": 21007})
        )
        entitlement = verifier.verify("abc", NOW)
        self.assertEqual(session.post.call_count, 2)
        self.assertEqual(entitlement.status, 21007)
        self.assertFalse(entitlement.is_active)

    def test_no_retry_for_other_status(self):
        verifier, session = _verifier(_response({"status": 21003}))
        entitlement = verifier.verify("abc", NOW)
        self.assertEqual(session.post.call_count, 1)
        self.assertEqual(entitlement.error, STATUS_MESSAGES[21003])

    def test_http_failure_is_fatal(self):
        verifier, _ = _verifier(_response({}, status_code=503))
        with self.assertRaises(ReceiptTransportError) as ctx:
            verifier.verify("abc", NOW)
        self.assertEqual(ctx.exception.status_code, 503)

    def test_connection_failure_is_fatal(self):
        session = MagicMock()
        session.post.side_effect = requests.ConnectionError("boom")
        verifier = AppleReceiptVerifier("secret", session=session)
        with self.assertRaises(ReceiptTransportError) as ctx:
            verifier.verify("abc", NOW)
        self.assertIsNone(ctx.exception.status_code)

    def test_non_object_body_is_transport_error(self):
        for body in (["x"], "ok", None):
            verifier, _ = _verifier(_response(body))
            with self.assertRaises(ReceiptTransportError) as ctx:
                verifier.verify("abc", NOW)
            self.assertEqual(ctx.exception.status_code, 200)

    def test_missing_secret(self):
        verifier = AppleReceiptVerifier(None, session=MagicMock())
        with self.assertRaises(ReceiptConfigurationError):
            verifier.verify("abc", NOW)


if __name__ == "__main__":
    unittest.main()
