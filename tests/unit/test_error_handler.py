"""Tests for exception to HTTP status mapping."""

import json
from types import SimpleNamespace

import pytest

from txguard.api.middleware.error_handler import global_exception_handler, status_for
from txguard.domains.security import errors


def _request(request_id: str = "req-1"):
    return SimpleNamespace(state=SimpleNamespace(request_id=request_id))


class TestStatusFor:
    @pytest.mark.parametrize(
        "error_type,status_code",
        [
            (errors.ValidationError, 400),
            (errors.WrongCodeError, 400),
            (errors.InsufficientBalanceError, 400),
            (errors.NotFoundError, 404),
            (errors.ExpiredError, 410),
            (errors.AttemptsExhaustedError, 429),
            (errors.NotVerifiedError, 403),
            (errors.DependencyError, 503),
        ],
    )
    def test_mapping(self, error_type, status_code):
        assert status_for(error_type("boom")) == status_code


class TestGlobalExceptionHandler:
    async def test_security_error_body(self):
        exc = errors.WrongCodeError("Wrong verification code", attempts_remaining=2)
        response = await global_exception_handler(_request(), exc)
        body = json.loads(response.body)
        assert response.status_code == 400
        assert body["error"] == "wrong_code"
        assert body["details"] == {"attempts_remaining": 2}
        assert body["request_id"] == "req-1"

    async def test_value_error(self):
        response = await global_exception_handler(_request(), ValueError("bad"))
        assert response.status_code == 400

    async def test_lookup_error(self):
        response = await global_exception_handler(_request(), KeyError("missing"))
        assert response.status_code == 404

    async def test_unexpected_error(self):
        response = await global_exception_handler(_request(), RuntimeError("kaboom"))
        body = json.loads(response.body)
        assert response.status_code == 500
        assert body["error"] == "internal_server_error"
        assert "kaboom" not in body["message"]
