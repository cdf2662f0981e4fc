"""Post-deploy smoke checks executed from the app container.

Walks one booking through slot creation, checkout and a signed provider webhook.
"""

from __future__ import annotations

import json
import urllib.error
import urllib.request
from datetime import timedelta
from uuid import uuid4

from mentorhub.core.config import get_settings
from mentorhub.core.security import compute_webhook_signature, create_access_token
from mentorhub.shared.utils import utc_now

BASE_URL = "http://localhost:8000"


def request(
    path: str,
    *,
    method: str = "GET",
    body: dict | None = None,
    headers: dict[str, str] | None = None,
    expected: int = 200,
) -> bytes:
    payload = None
    req_headers = {"Accept": "application/json"}
    if headers:
        req_headers.update(headers)
    if body is not None:
        payload = json.dumps(body).encode("utf-8")
        req_headers["Content-Type"] = "application/json"
        if "X-Payment-Signature" in req_headers:
            req_headers["X-Payment-Signature"] = compute_webhook_signature(
                payload,
                get_settings().payment_webhook_secret,
            )

    request_obj = urllib.request.Request(
        f"{BASE_URL}{path}",
        data=payload,
        method=method,
        headers=req_headers,
    )
    try:
        with urllib.request.urlopen(request_obj, timeout=30) as response:
            content = response.read()
            status = response.getcode()
    except urllib.error.HTTPError as exc:  # pragma: no cover - runtime smoke script
        body_text = exc.read().decode("utf-8", errors="ignore")
        if exc.code == expected:
            return body_text.encode("utf-8")
        raise RuntimeError(f"{method} {path} -> {exc.code}: {body_text}") from exc

    if status != expected:
        raise RuntimeError(f"{method} {path} -> {status}, expected {expected}")
    return content


def bearer(role: str) -> dict[str, str]:
    token = create_access_token(str(uuid4()), role=role, name=f"smoke-{role}")
    return {"Authorization": f"Bearer {token}"}


def main() -> None:
    for endpoint in ["/health", "/ready", "/docs", "/metrics"]:
        request(endpoint, expected=200)

    api = get_settings().api_prefix
    mentor = bearer("mentor")
    learner = bearer("learner")
    tomorrow = (utc_now() + timedelta(days=1)).astimezone(get_settings().schedule_zone).date()
    minute = uuid4().int % 50

    slot = json.loads(
        request(
            f"{api}/scheduling/slots",
            method="POST",
            body={
                "slot_date": tomorrow.isoformat(),
                "start_time": f"23:{minute:02d}",
                "end_time": f"23:{minute + 5:02d}",
            },
            headers=mentor,
            expected=201,
        ),
    )
    booking = json.loads(
        request(
            f"{api}/booking",
            method="POST",
            body={"slot_id": slot["id"], "amount": "1.00"},
            headers=learner,
            expected=201,
        ),
    )
    request(f"{api}/booking/{booking['id']}/payment", method="POST", headers=learner, expected=200)
    request(
        f"{api}/payments/webhook",
        method="POST",
        body={
            "event_type": "succeeded",
            "correlation_key": booking["correlation_key"],
            "amount": booking["amount"],
            "event_id": f"smoke-{uuid4().hex}",
            "timestamp": utc_now().isoformat(),
        },
        headers={"X-Payment-Signature": ""},
        expected=200,
    )
    status = json.loads(
        request(f"{api}/booking/{booking['id']}/payment-status", headers=learner, expected=200),
    )
    if status["status"] != "confirmed":
        raise RuntimeError(f"Booking not confirmed after webhook: {status}")
    request(f"{api}/meetings/{booking['id']}/join", headers=learner, expected=425)
    request(f"{api}/booking/{booking['id']}/cancel", method="POST", body={}, headers=mentor, expected=200)

    print("Smoke checks passed.")


if __name__ == "__main__":
    main()
