"""Response error extraction for load test observability.

Parses Dispatch API error responses into human-readable messages.
Handles three response shapes:

- Pydantic validation (422): {"detail": [{"loc": [...], "msg": "...", "type": "..."}]}
- Domain validation (400): {"error": "ValidationError", "detail": {"field": ["msg"]}}
- Engine errors (404/500/503): {"error": "TransientContention", "detail": "msg", "retryable": true}
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from requests import Response


def extract_error_detail(response: Response) -> str:
    """Extract a human-readable error message from an API error response.

    Returns a compact string suitable for Locust failure messages and log lines.
    Gracefully handles unparseable bodies and missing fields.
    """
    try:
        body = response.json()
    except Exception:
        text = getattr(response, "text", "") or ""
        return text[:300] or "(empty response body)"

    detail = body.get("detail")

    # Pydantic validation errors
    if isinstance(detail, list):
        parts = []
        for err in detail:
            loc = ".".join(str(p) for p in err.get("loc", []))
            msg = err.get("msg", str(err))
            parts.append(f"{loc}: {msg}" if loc else msg)
        return " | ".join(parts)

    # Domain validation errors keyed by field
    if isinstance(detail, dict):
        return " | ".join(f"{k}: {', '.join(map(str, v)) if isinstance(v, list) else v}" for k, v in detail.items())

    if "error" in body:
        return f"{body['error']}: {detail}" if detail else str(body["error"])

    return str(body)[:300]


def is_retryable(response: Response) -> bool:
    """True for contention responses the client is expected to retry."""
    return response.status_code == 503 and "Retry-After" in response.headers
