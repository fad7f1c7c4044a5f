"""Collaborator adapters — pluggable order store, catalog, roster and notifier."""

import os

_order_store = None
_catalog = None
_roster = None
_notifier = None


def _adapter(variable: str) -> str:
    adapter = os.environ.get(variable, "fake")
    if adapter != "fake":
        raise ValueError(f"Unknown adapter for {variable}: {adapter}")
    return adapter


def get_order_store():
    """Return the configured order store (singleton).

    Uses FakeOrderStore by default. Configure via DISPATCH_ORDER_STORE.
    """
    global _order_store
    if _order_store is None:
        _adapter("DISPATCH_ORDER_STORE")
        from dispatch.collaborators.fakes import FakeOrderStore

        _order_store = FakeOrderStore()
    return _order_store


def get_catalog():
    """Return the configured product catalog (singleton), via DISPATCH_CATALOG."""
    global _catalog
    if _catalog is None:
        _adapter("DISPATCH_CATALOG")
        from dispatch.collaborators.fakes import FakeProductCatalog

        _catalog = FakeProductCatalog()
    return _catalog


def get_roster():
    """Return the configured driver roster (singleton), via DISPATCH_ROSTER."""
    global _roster
    if _roster is None:
        _adapter("DISPATCH_ROSTER")
        from dispatch.collaborators.fakes import FakeDriverRoster

        _roster = FakeDriverRoster()
    return _roster


def get_notifier():
    """Return the configured notification service (singleton), via DISPATCH_NOTIFIER."""
    global _notifier
    if _notifier is None:
        _adapter("DISPATCH_NOTIFIER")
        from dispatch.collaborators.fakes import RecordingNotifier

        _notifier = RecordingNotifier()
    return _notifier


def reset_collaborators():
    """Reset every collaborator singleton (useful for testing)."""
    global _order_store, _catalog, _roster, _notifier
    _order_store = None
    _catalog = None
    _roster = None
    _notifier = None
