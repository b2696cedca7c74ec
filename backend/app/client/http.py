from __future__ import annotations

import json
from typing import Any, Optional
from urllib import parse, request
from urllib.error import HTTPError, URLError

from backend.app.models import (
    DecisionResponse,
    DuplicateCheckResponse,
    StatisticsSummary,
    UserDecision,
)


class DuplicateGuardClientError(Exception):
    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class DecisionConflictError(DuplicateGuardClientError):
    pass


class DuplicateServiceUnavailableError(DuplicateGuardClientError):
    pass


def _error_message(body: str) -> str:
    try:
        decoded = json.loads(body)
    except json.JSONDecodeError:
        return body or "request failed"
    detail = decoded.get("detail") if isinstance(decoded, dict) else None
    if isinstance(detail, dict):
        return str(detail.get("message") or detail)
    return str(detail or body)


class DuplicateGuardClient:
    def __init__(self, base_url: str, token: Optional[str] = None, timeout: float = 8.0) -> None:
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout

    def check(self, candidate: dict[str, Any]) -> DuplicateCheckResponse:
        data = self._request("POST", "/duplicates/check", payload=candidate)
        return DuplicateCheckResponse.model_validate(data)

    def decide(
        self, warning_id: str, decision: UserDecision, reason: Optional[str] = None
    ) -> DecisionResponse:
        payload = {"warning_id": warning_id, "decision": decision.value, "reason": reason}
        data = self._request("POST", "/duplicates/decision", payload=payload)
        return DecisionResponse.model_validate(data)

    def statistics(
        self, date_from: Optional[str] = None, date_to: Optional[str] = None
    ) -> StatisticsSummary:
        query = {}
        if date_from:
            query["date_from"] = date_from
        if date_to:
            query["date_to"] = date_to
        path = "/admin/duplicates/statistics"
        if query:
            path = f"{path}?{parse.urlencode(query)}"
        return StatisticsSummary.model_validate(self._request("GET", path))

    def _request(self, method: str, path: str, payload: Optional[dict] = None) -> Any:
        body = json.dumps(payload).encode("utf-8") if payload is not None else None
        req = request.Request(f"{self.base_url}{path}", data=body, method=method)
        req.add_header("Accept", "application/json")
        if body is not None:
            req.add_header("Content-Type", "application/json")
        if self.token:
            req.add_header("Authorization", f"Bearer {self.token}")
        try:
            with request.urlopen(req, timeout=self.timeout) as response:
                raw = response.read().decode("utf-8")
        except HTTPError as exc:
            message = _error_message(exc.read().decode("utf-8"))
            if exc.code == 409:
                raise DecisionConflictError(message, exc.code) from exc
            if exc.code == 503:
                raise DuplicateServiceUnavailableError(message, exc.code) from exc
            raise DuplicateGuardClientError(message, exc.code) from exc
        except URLError as exc:
            raise DuplicateServiceUnavailableError("duplicate service unreachable") from exc

        try:
            return json.loads(raw)
        except json.JSONDecodeError as exc:
            raise DuplicateGuardClientError(
                "duplicate service response was not valid json"
            ) from exc
