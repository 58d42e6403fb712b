"""Tests for the error envelope format and error handling.

Error responses share one envelope:
{
    "status": "error",
    "error": {
        "code": "<stable_code>",
        "message": "<human_readable>",
        "details": <object|array|null>
    },
    "request_id": "<uuid>"
}
"""

import json

import pytest
from pydantic import ValidationError

from sessionkit.api.error_handling import (
    _STATUS_TO_CODE,
    _error_code_for_status,
    _error_response,
)
from sessionkit.api.schemas import Envelope, ErrorBody
from sessionkit.logging import correlation_id_var
from sessionkit.service import errors


class TestErrorBody:
    """Tests for the ErrorBody Pydantic model."""

    def test_error_body_required_fields(self):
        """ErrorBody requires code and message fields."""
        error = ErrorBody(code="unauthorized", message="missing bearer token")
        assert error.code == "unauthorized"
        assert error.details is None

    def test_error_body_with_details_list(self):
        error = ErrorBody(
            code="validation_error",
            message="Multiple errors",
            details=[{"field": "redirect_uri"}, {"field": "authorization_code"}],
        )
        assert len(error.details) == 2

    @pytest.mark.parametrize("code", ["token_expired", "invalid_refresh_token", "upstream_error"])
    def test_session_error_codes_accepted(self, code):
        assert ErrorBody(code=code, message="x").code == code

    def test_unknown_code_rejected(self):
        with pytest.raises(ValidationError):
            ErrorBody(code="rate_limited", message="slow down")

    def test_error_body_missing_message_raises(self):
        with pytest.raises(ValidationError):
            ErrorBody(code="server_error")


class TestEnvelope:
    """Tests for the Envelope model."""

    def test_envelope_ok_status(self):
        envelope = Envelope(status="ok", data={"user_id": "123"})

        assert envelope.data == {"user_id": "123"}
        assert envelope.error is None

    def test_envelope_request_id_from_correlation_id(self):
        """The request id follows the active correlation id."""
        token = correlation_id_var.set("req-abc")
        try:
            assert Envelope(status="ok").request_id == "req-abc"
        finally:
            correlation_id_var.reset(token)

    def test_envelope_invalid_status_raises(self):
        with pytest.raises(ValidationError):
            Envelope(status="pending")

    def test_envelope_error_serialization(self):
        envelope = Envelope(
            status="error",
            error=ErrorBody(code="token_expired", message="token has expired"),
            request_id="test-req-123",
        )
        dumped = envelope.model_dump()

        assert dumped["error"]["code"] == "token_expired"
        assert dumped["request_id"] == "test-req-123"
        assert dumped["data"] is None


class TestErrorCodeMapping:
    """Tests for HTTP status to error code mapping."""

    @pytest.mark.parametrize(
        "status,code",
        [
            (400, "validation_error"),
            (401, "unauthorized"),
            (403, "forbidden"),
            (404, "not_found"),
            (409, "conflict"),
            (422, "validation_error"),
            (500, "server_error"),
        ],
    )
    def test_status_mapping(self, status, code):
        assert _error_code_for_status(status) == code

    def test_unknown_status_defaults_to_server_error(self):
        assert _error_code_for_status(418) == "server_error"
        assert _error_code_for_status(503) == "server_error"

    def test_mapping_only_uses_valid_codes(self):
        for code in _STATUS_TO_CODE.values():
            ErrorBody(code=code, message="x")


class TestServiceErrors:
    """Each failure kind carries its HTTP status and stable code."""

    @pytest.mark.parametrize(
        "exc_type,status,code",
        [
            (errors.MalformedCredential, 401, "unauthorized"),
            (errors.ExpiredCredential, 401, "token_expired"),
            (errors.LoggedOutCredential, 401, "unauthorized"),
            (errors.AlreadyLoggedOut, 401, "unauthorized"),
            (errors.NoActiveSession, 401, "invalid_refresh_token"),
            (errors.RefreshMismatch, 401, "invalid_refresh_token"),
            (errors.InvalidRedirect, 400, "validation_error"),
            (errors.UnsupportedProvider, 400, "validation_error"),
            (errors.UpstreamAuthError, 500, "upstream_error"),
            (errors.ServerError, 500, "server_error"),
        ],
    )
    def test_status_and_code(self, exc_type, status, code):
        exc = exc_type("boom")
        assert exc.status_code == status
        assert exc.error_code == code
        assert isinstance(exc, errors.ServiceError)


class TestErrorResponseFactory:
    """Tests for the _error_response helper function."""

    def test_error_response_basic(self):
        response = _error_response(401, "missing bearer token")

        data = json.loads(response.body.decode())
        assert response.status_code == 401
        assert data["status"] == "error"
        assert data["error"]["code"] == "unauthorized"
        assert "request_id" in data

    def test_error_response_custom_code(self):
        response = _error_response(401, "token has expired", code="token_expired")

        data = json.loads(response.body.decode())
        assert data["error"]["code"] == "token_expired"

    def test_error_response_details(self):
        response = _error_response(
            400, "redirect URI is not allowed", details={"redirect_uri": "http://evil.example"}
        )

        data = json.loads(response.body.decode())
        assert data["error"]["details"] == {"redirect_uri": "http://evil.example"}
