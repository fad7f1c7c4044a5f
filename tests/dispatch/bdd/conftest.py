"""Shared BDD fixtures and step definitions for the Dispatch domain."""

import itertools

import pytest
from pytest_bdd import given, parsers, then

from dispatch.services import configure_services
from dispatch.settings import BatchingPolicy


# ---------------------------------------------------------------------------
# Scalar fixtures
# ---------------------------------------------------------------------------
@pytest.fixture()
def order_ids():
    """Sequential order ids, unique within a scenario."""
    return (f"ord-{n:03d}" for n in itertools.count(1))


@pytest.fixture()
def failures():
    """Errors raised by assignment calls made in When steps."""
    return []


# ---------------------------------------------------------------------------
# Given steps
# ---------------------------------------------------------------------------
@given(
    parsers.cfparse("batches hold at most {capacity:g} kg and are ready at {threshold:g} kg"),
    target_fixture="services",
)
def _(capacity, threshold, orders, catalog, roster, notifier):
    policy = BatchingPolicy(
        min_threshold=threshold,
        max_capacity=capacity,
        zone_lock_timeout=5.0,
        row_lock_timeout=5.0,
    )
    return configure_services(
        policy=policy,
        orders=orders,
        catalog=catalog,
        roster=roster,
        notifier=notifier,
    )


# ---------------------------------------------------------------------------
# Then steps
# ---------------------------------------------------------------------------
@then(parsers.cfparse('zone "{zone}" has {count:d} batch(es)'))
def _(batches, zone, count):
    assert len(batches.list_batches(zone)) == count


@then(parsers.cfparse('batch {position:d} of zone "{zone}" weighs {weight:g} kg and is {status}'))
def _(batches, position, zone, weight, status):
    batch = batches.list_batches(zone)[position - 1]
    assert batch.total_weight == pytest.approx(weight)
    assert batch.status == status


@then("no assignment failed")
def _(failures):
    assert failures == []


@then("no approved order is left without a batch")
def _(orders):
    assert orders.approved_without_batch() == []


@then("the batch audit is clean")
def _(services):
    assert services.consolidation.audit() == []
