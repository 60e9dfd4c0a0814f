from api.middleware.logging import LoggingMiddleware
from core.logging_config import REDACTED, redact_sensitive


def test_redact_sensitive_masks_credentials():
    event = redact_sensitive(None, "info", {
        "event": "gamepass_purchase",
        "credential": "_|WARNING:-DO-NOT-SHARE-THIS",
        "payload": {"signature_key": "abc", "order_id": "MULTI-1"},
        "account": "small-ok",
    })
    assert event["credential"] == REDACTED
    assert event["payload"] == {"signature_key": REDACTED, "order_id": "MULTI-1"}
    assert event["account"] == "small-ok"


def test_request_body_sanitizer_walks_nested_data():
    middleware = LoggingMiddleware.__new__(LoggingMiddleware)
    data = {
        "items": [{"account_username": "player1", "account_password": "hunter2"}],
        "robloxCookie": "cookie",
        "customer": {"email": "budi@example.com"},
    }
    clean = middleware._sanitize_data(data)
    assert clean["items"][0] == {"account_username": "player1", "account_password": REDACTED}
    assert clean["robloxCookie"] == REDACTED
    assert clean["customer"] == {"email": "budi@example.com"}
