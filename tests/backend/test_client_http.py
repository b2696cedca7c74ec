from __future__ import annotations

import io
import json
from urllib.error import HTTPError, URLError

import pytest

from backend.app.client import http as client_http
from backend.app.client.http import (
    DecisionConflictError,
    DuplicateGuardClient,
    DuplicateGuardClientError,
    DuplicateServiceUnavailableError,
)
from backend.app.models import UserDecision


class FakeResponse:
    def __init__(self, payload: dict) -> None:
        self._body = json.dumps(payload).encode("utf-8")

    def read(self) -> bytes:
        return self._body

    def __enter__(self) -> "FakeResponse":
        return self

    def __exit__(self, *exc_info) -> None:
        return None


def _http_error(code: int, detail) -> HTTPError:
    body = io.BytesIO(json.dumps({"detail": detail}).encode("utf-8"))
    return HTTPError("http://guard.test", code, "error", {}, body)


def test_check_sends_bearer_token_and_parses_response(monkeypatch) -> None:
    captured = {}

    def fake_urlopen(req, timeout):
        captured["url"] = req.full_url
        captured["auth"] = req.get_header("Authorization")
        captured["body"] = json.loads(req.data.decode("utf-8"))
        return FakeResponse(
            {"has_warning": False, "severity": "LOW", "warning_id": None, "matches": []}
        )

    monkeypatch.setattr(client_http.request, "urlopen", fake_urlopen)
    client = DuplicateGuardClient("http://guard.test/", token="abc")

    result = client.check({"email": "jane@acme.com"})

    assert result.has_warning is False
    assert captured["url"] == "http://guard.test/duplicates/check"
    assert captured["auth"] == "Bearer abc"
    assert captured["body"] == {"email": "jane@acme.com"}


def test_conflict_maps_to_decision_conflict(monkeypatch) -> None:
    def fake_urlopen(req, timeout):
        raise _http_error(409, {"message": "already decided", "code": "already_decided"})

    monkeypatch.setattr(client_http.request, "urlopen", fake_urlopen)

    with pytest.raises(DecisionConflictError) as caught:
        DuplicateGuardClient("http://guard.test").decide("dw_1", UserDecision.CANCELLED)
    assert caught.value.status_code == 409
    assert str(caught.value) == "already decided"


def test_unavailable_and_unreachable_map_to_retryable_error(monkeypatch) -> None:
    def busy(req, timeout):
        raise _http_error(503, "record repository unavailable")

    def unreachable(req, timeout):
        raise URLError("connection refused")

    client = DuplicateGuardClient("http://guard.test")
    monkeypatch.setattr(client_http.request, "urlopen", busy)
    with pytest.raises(DuplicateServiceUnavailableError):
        client.check({"email": "jane@acme.com"})

    monkeypatch.setattr(client_http.request, "urlopen", unreachable)
    with pytest.raises(DuplicateServiceUnavailableError):
        client.check({"email": "jane@acme.com"})


def test_other_errors_keep_status(monkeypatch) -> None:
    def rejected(req, timeout):
        raise _http_error(422, "candidate needs at least one of name, email, phone or company")

    monkeypatch.setattr(client_http.request, "urlopen", rejected)

    with pytest.raises(DuplicateGuardClientError) as caught:
        DuplicateGuardClient("http://guard.test").check({})
    assert caught.value.status_code == 422
