"""Dispatch load test scenarios.

ApprovalBurstUser hammers a handful of zones with concurrently approved
orders, which is where find-or-create races would show up as duplicate
open batches or over-capacity totals. DispatcherJourney takes ready batches
out for delivery. RepairUser runs consolidation and the audit alongside.
"""

import random

from locust import HttpUser, SequentialTaskSet, between, constant_pacing, task

from loadtests.data_generators import (
    ZONES,
    approved_order_data,
    cancellation_reason,
    heavy_order_data,
)
from loadtests.helpers.response import extract_error_detail, is_retryable
from loadtests.helpers.state import ApprovalState, DispatcherState

# Few zones so that concurrent users collide on the same zone lock
HOT_ZONES = ZONES[:3]


def _seed_and_assign(client, payload, state: ApprovalState, label: str):
    with client.post("/dispatch/orders/fake", json=payload, catch_response=True, name="POST /dispatch/orders/fake") as resp:
        if resp.status_code != 201:
            resp.failure(f"Seed order failed: {resp.status_code} — {extract_error_detail(resp)}")
            return

    order_id = payload["order_id"]
    with client.post(
        f"/dispatch/orders/{order_id}/assign",
        catch_response=True,
        name=f"{label} POST /dispatch/orders/{{id}}/assign",
    ) as resp:
        if resp.status_code == 200:
            state.order_ids.append(order_id)
            state.batch_ids.add(resp.json()["batch_id"])
        elif is_retryable(resp):
            # Left for the sweep; not a failure
            state.deferred += 1
            resp.success()
        else:
            resp.failure(f"Assign failed: {resp.status_code} — {extract_error_detail(resp)}")


class ApprovalBurstUser(HttpUser):
    """Concurrent approvals concentrated on a few hot zones."""

    wait_time = constant_pacing(0.2)

    def on_start(self):
        self.state = ApprovalState()

    @task(6)
    def approve_heavy_order(self):
        _seed_and_assign(self.client, heavy_order_data(random.choice(HOT_ZONES)), self.state, "[BURST]")

    @task(3)
    def approve_addressed_order(self):
        _seed_and_assign(self.client, approved_order_data(), self.state, "[ADDR]")

    @task(1)
    def sweep(self):
        self.client.post("/dispatch/orders/sweep", name="POST /dispatch/orders/sweep")


class DispatcherJourney(SequentialTaskSet):
    """Pick a ready batch -> Assign driver -> Start delivery.

    Occasionally cancels a pending batch instead, releasing its orders to the
    sweep.
    """

    def on_start(self):
        self.state = DispatcherState()

    @task
    def pick_ready_batch(self):
        resp = self.client.get(
            "/dispatch/batches",
            params={"status": "ready_for_delivery", "zone": random.choice(HOT_ZONES)},
            name="GET /dispatch/batches?status=ready",
        )
        batches = resp.json() if resp.status_code == 200 else []
        if not batches:
            self._maybe_cancel_pending()
            self.interrupt()
            return
        self.state.batch_id = batches[0]["batch_id"]

    @task
    def assign_driver(self):
        with self.client.put(
            f"/dispatch/batches/{self.state.batch_id}/driver",
            json={},
            catch_response=True,
            name="PUT /dispatch/batches/{id}/driver",
        ) as resp:
            if resp.status_code == 200:
                self.state.driver_id = resp.json()["driver_id"]
            else:
                # Another dispatcher got there first, or no driver is free
                resp.success()
                self.interrupt()

    @task
    def start_delivery(self):
        with self.client.put(
            f"/dispatch/batches/{self.state.batch_id}/start-delivery",
            catch_response=True,
            name="PUT /dispatch/batches/{id}/start-delivery",
        ) as resp:
            if resp.status_code != 200:
                resp.failure(f"Start delivery failed: {resp.status_code} — {extract_error_detail(resp)}")
        self.interrupt()

    def _maybe_cancel_pending(self):
        if random.random() > 0.1:
            return
        resp = self.client.get(
            "/dispatch/batches",
            params={"status": "pending"},
            name="GET /dispatch/batches?status=pending",
        )
        pending = resp.json() if resp.status_code == 200 else []
        if pending:
            self.client.put(
                f"/dispatch/batches/{pending[0]['batch_id']}/cancel",
                json={"reason": cancellation_reason()},
                name="PUT /dispatch/batches/{id}/cancel",
            )


class DispatcherUser(HttpUser):
    wait_time = between(1, 3)
    tasks = [DispatcherJourney]


class RepairUser(HttpUser):
    """Consolidation and audit running against live traffic."""

    wait_time = between(5, 10)

    @task(3)
    def consolidate(self):
        with self.client.post(
            "/dispatch/consolidation", catch_response=True, name="POST /dispatch/consolidation"
        ) as resp:
            if resp.status_code != 200:
                resp.failure(f"Consolidation failed: {resp.status_code} — {extract_error_detail(resp)}")

    @task(1)
    def reresolve(self):
        self.client.post("/dispatch/zones/reresolve", name="POST /dispatch/zones/reresolve")
