"""Service registry — wires the engine components to their adapters.

Command handlers, API routes and the CLI all reach the engine through
``get_services()``. Tests swap pieces with ``configure_services(...)`` and
start clean with ``reset_services()``.
"""

from dataclasses import dataclass

from dispatch.collaborators import (
    get_catalog,
    get_notifier,
    get_order_store,
    get_roster,
    reset_collaborators,
)
from dispatch.collaborators.ports import DriverRoster, NotificationService, OrderStore, ProductCatalog
from dispatch.engine.assignment import AssignmentEngine
from dispatch.engine.consolidation import ConsolidationJob
from dispatch.engine.lifecycle import LifecycleCoordinator
from dispatch.engine.weights import WeightCalculator
from dispatch.settings import BatchingPolicy
from dispatch.zoning.catalog import ZoneCatalog
from dispatch.zoning.resolver import ZoneResolver


@dataclass
class DispatchServices:
    policy: BatchingPolicy
    orders: OrderStore
    catalog: ProductCatalog
    roster: DriverRoster
    notifier: NotificationService
    resolver: ZoneResolver
    weights: WeightCalculator
    assignment: AssignmentEngine
    lifecycle: LifecycleCoordinator
    consolidation: ConsolidationJob


_services: DispatchServices | None = None


def build_services(
    policy: BatchingPolicy | None = None,
    orders: OrderStore | None = None,
    catalog: ProductCatalog | None = None,
    roster: DriverRoster | None = None,
    notifier: NotificationService | None = None,
    zones: ZoneCatalog | None = None,
) -> DispatchServices:
    policy = policy or BatchingPolicy.from_env()
    orders = orders or get_order_store()
    catalog = catalog or get_catalog()
    roster = roster or get_roster()
    notifier = notifier or get_notifier()

    resolver = ZoneResolver(zones or ZoneCatalog.from_env(), unknown_zone=policy.unknown_zone)
    weights = WeightCalculator(orders, catalog, policy)
    assignment = AssignmentEngine(orders, resolver, weights, policy)
    return DispatchServices(
        policy=policy,
        orders=orders,
        catalog=catalog,
        roster=roster,
        notifier=notifier,
        resolver=resolver,
        weights=weights,
        assignment=assignment,
        lifecycle=LifecycleCoordinator(orders, roster, policy),
        consolidation=ConsolidationJob(orders, resolver, assignment, policy),
    )


def get_services() -> DispatchServices:
    """Return the process-wide services (singleton), built from the environment."""
    global _services
    if _services is None:
        _services = build_services()
    return _services


def configure_services(**overrides) -> DispatchServices:
    """Replace the singleton with services built from the given overrides."""
    global _services
    _services = build_services(**overrides)
    return _services


def reset_services() -> None:
    """Reset the services and collaborator singletons (useful for testing)."""
    global _services
    _services = None
    reset_collaborators()
