import pytest
from protean import atomic_change
from protean.integrations.pytest import DomainFixture
from protean.utils.globals import current_domain

from dispatch.batch.batch import Batch
from dispatch.batch.repository import BatchUnitOfWork
from dispatch.collaborators.fakes import (
    FakeDriverRoster,
    FakeOrderStore,
    FakeProductCatalog,
    RecordingNotifier,
)
from dispatch.services import configure_services
from dispatch.settings import BatchingPolicy


@pytest.fixture(scope="session")
def dispatch_bed():
    from dispatch.domain import dispatch

    bed = DomainFixture(dispatch)
    bed.setup()
    yield bed
    bed.teardown()


@pytest.fixture(autouse=True)
def _ctx(dispatch_bed):
    with dispatch_bed.domain_context():
        yield


@pytest.fixture()
def policy():
    """Production thresholds: ready at 3500 kg, full at 5000 kg."""
    return BatchingPolicy(zone_lock_timeout=5.0, row_lock_timeout=5.0)


@pytest.fixture()
def batches():
    """The batch repository, for reads outside a transaction."""
    return current_domain.repository_for(Batch)


@pytest.fixture()
def overwrite(policy):
    """Write fields straight onto a stored batch, bypassing the engine."""

    def _overwrite(batch_id, **values):
        with BatchUnitOfWork(policy):
            repo = current_domain.repository_for(Batch)
            batch = repo.lock(batch_id, wait=True)
            with atomic_change(batch):
                for name, value in values.items():
                    setattr(batch, name, value)
            repo.add(batch)

    return _overwrite


@pytest.fixture()
def orders():
    return FakeOrderStore()


@pytest.fixture()
def catalog():
    return FakeProductCatalog({"rice-sack": 25.0, "water-case": 12.0, "cement-bag": 40.0})


@pytest.fixture()
def roster():
    return FakeDriverRoster(["driver-1", "driver-2"])


@pytest.fixture()
def notifier():
    return RecordingNotifier()


@pytest.fixture()
def services(policy, orders, catalog, roster, notifier):
    """Engine wired to in-memory fakes and installed as the process-wide services."""
    return configure_services(
        policy=policy,
        orders=orders,
        catalog=catalog,
        roster=roster,
        notifier=notifier,
    )


@pytest.fixture()
def engine(services):
    return services.assignment


@pytest.fixture()
def lifecycle(services):
    return services.lifecycle


@pytest.fixture()
def consolidation(services):
    return services.consolidation


@pytest.fixture()
def approve(orders, engine):
    """Seed an approved order with a frozen zone and weight, then assign it."""

    def _approve(order_id, zone="Lapasan", weight=1000.0, assign=True):
        orders.add_order(order_id, zone=zone, weight=weight)
        if assign:
            return engine.assign_order(order_id)
        return None

    return _approve
