from sessionkit.logging import (
    _add_correlation_id,
    _redact_pii,
    correlation_id_var,
    set_correlation_id,
)


def test_credentials_and_personal_fields_are_masked():
    event = {
        "event": "login_completed",
        "access_token": "eyJhbGciOiJIUzI1NiJ9.payload.sig",
        "authorization_code": "abcdef123456",
        "email": "tester@kakao.test",
        "user_id": "u-1",
    }

    redacted = _redact_pii(None, "info", event)

    assert redacted["access_token"] == "ey***ig"
    assert redacted["authorization_code"] == "ab***56"
    assert redacted["email"] == "te***st"
    assert redacted["user_id"] == "u-1"


def test_safe_keys_and_non_strings_pass_through():
    event = {"token_type": "access", "error_code": "token_expired", "status_code": 401}

    assert _redact_pii(None, "info", dict(event)) == event


def test_short_values_left_alone():
    assert _redact_pii(None, "info", {"code": "abc"}) == {"code": "abc"}


def test_correlation_id_added_to_events():
    previous = correlation_id_var.get()
    try:
        assert set_correlation_id("req-42") == "req-42"
        event = _add_correlation_id(None, "info", {"event": "x"})
    finally:
        correlation_id_var.set(previous)

    assert event["correlation_id"] == "req-42"
