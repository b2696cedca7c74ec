from __future__ import annotations

import argparse
import json
import sys
import urllib.error
import urllib.request


def request_json(
    *, url: str, token: str | None = None, payload: dict | None = None
) -> tuple[int, dict | list | None, str]:
    data = json.dumps(payload).encode("utf-8") if payload is not None else None
    request = urllib.request.Request(url, data=data, method="POST" if data else "GET")
    request.add_header("Accept", "application/json")
    if data:
        request.add_header("Content-Type", "application/json")
    if token:
        request.add_header("Authorization", f"Bearer {token}")
    try:
        with urllib.request.urlopen(request, timeout=20) as response:
            body = response.read().decode("utf-8")
            parsed = json.loads(body) if body.startswith("{") or body.startswith("[") else None
            return response.status, parsed, body
    except urllib.error.HTTPError as exc:
        body = exc.read().decode("utf-8")
        try:
            parsed = json.loads(body)
        except json.JSONDecodeError:
            parsed = None
        return exc.code, parsed, body


def request_text(*, url: str, token: str | None = None) -> tuple[int, str]:
    request = urllib.request.Request(url, method="GET")
    if token:
        request.add_header("Authorization", f"Bearer {token}")
    try:
        with urllib.request.urlopen(request, timeout=20) as response:
            return response.status, response.read().decode("utf-8")
    except urllib.error.HTTPError as exc:
        return exc.code, exc.read().decode("utf-8")


def assert_true(condition: bool, message: str) -> None:
    if not condition:
        raise RuntimeError(message)


def main() -> int:
    parser = argparse.ArgumentParser(description="Smoke test for Lead Duplicate Guard API.")
    parser.add_argument("--base-url", required=True)
    parser.add_argument("--auth-mode", choices=["enabled", "disabled"], default="enabled")
    parser.add_argument("--token", default="")
    args = parser.parse_args()

    base_url = args.base_url.rstrip("/")
    token = args.token.strip() or None

    status, data, _ = request_json(url=f"{base_url}/health")
    assert_true(status == 200, f"/health expected 200, got {status}")
    assert_true(isinstance(data, dict) and data.get("status") == "ok", "/health invalid payload")
    print("OK /health")

    status, data, _ = request_json(url=f"{base_url}/health/ready")
    assert_true(status == 200, f"/health/ready expected 200, got {status}")
    assert_true(
        isinstance(data, dict) and data.get("status") == "ready",
        "/health/ready invalid payload",
    )
    print("OK /health/ready")

    status, body = request_text(url=f"{base_url}/metrics")
    assert_true(status == 200, f"/metrics expected 200, got {status}")
    assert_true("duplicate_guard_requests_total" in body, "/metrics missing requests counter")
    assert_true("duplicate_guard_events_total" in body, "/metrics missing duplicate counters")
    print("OK /metrics")

    candidate = {"name": "Smoke Check", "email": "smoke-check@example.org", "action": "LEAD_CREATE"}
    check_status, data, _ = request_json(
        url=f"{base_url}/duplicates/check", token=token, payload=candidate
    )
    if args.auth_mode == "enabled" and not token:
        assert_true(
            check_status in {401, 403},
            f"/duplicates/check without token expected 401/403, got {check_status}",
        )
        print("OK /duplicates/check unauthorized")
    else:
        assert_true(
            check_status == 200,
            f"/duplicates/check expected 200, got {check_status}",
        )
        assert_true(
            isinstance(data, dict) and "has_warning" in data,
            "/duplicates/check invalid payload",
        )
        print("OK /duplicates/check")

    print("Smoke test passed.")
    return 0


if __name__ == "__main__":
    try:
        sys.exit(main())
    except Exception as exc:
        print(f"Smoke test failed: {exc}", file=sys.stderr)
        sys.exit(1)
