"""Dispatch Load Testing — Locust entry point.

Run specific scenarios with Locust's class selection.

Usage:
    # All scenarios (web UI):
    locust -f loadtests/locustfile.py

    # Approval bursts only:
    locust -f loadtests/locustfile.py ApprovalBurstUser

    # Headless (CI mode):
    locust -f loadtests/locustfile.py ApprovalBurstUser DispatcherUser RepairUser --headless \
           -u 50 -r 5 -t 300s --csv=results/loadtest

When the run stops, the batch audit is fetched and any invariant violation
(over-capacity batches, weight drift, duplicate open batches) is reported.
"""

import logging
import time

import requests
from locust import events

# Import all user classes so Locust discovers them
from loadtests.helpers.response import extract_error_detail
from loadtests.scenarios.dispatch import ApprovalBurstUser, DispatcherUser, RepairUser  # noqa: F401

logger = logging.getLogger("loadtest")


@events.request.add_listener
def on_request(request_type, name, response, exception, **_kw):
    """Log error details for every failed request."""
    if exception:
        logger.error("[EXCEPTION] %s %s: %s", request_type, name, exception)
    elif response is not None and response.status_code >= 400:
        detail = extract_error_detail(response)
        logger.error("[%s] %s %s: %s", response.status_code, request_type, name, detail)


@events.test_start.add_listener
def on_test_start(environment, **_kwargs):
    """Log a marker when load test begins."""
    print(f"\n[LOADTEST] Started at {time.strftime('%H:%M:%S')}")
    print(f"[LOADTEST] Target host: {environment.host}")
    print()


@events.test_stop.add_listener
def on_test_stop(environment, **_kwargs):
    """Fetch and print the batch audit when the test ends."""
    print(f"\n[LOADTEST] Stopped at {time.strftime('%H:%M:%S')}")
    try:
        resp = requests.get(f"{environment.host}/dispatch/audit", timeout=30)
        body = resp.json()
        if body.get("healthy"):
            print("[LOADTEST] Batch audit: no invariant violations\n")
            return
        counts: dict[str, int] = {}
        for violation in body.get("violations", []):
            counts[violation["kind"]] = counts.get(violation["kind"], 0) + 1
        print("\n[LOADTEST] Batch audit violations:")
        for kind, count in sorted(counts.items()):
            print(f"  {kind}: {count}")
        print()
    except Exception as e:
        print(f"[LOADTEST] Could not fetch batch audit: {e}\n")
