"""Dispatch domain API package."""

from dispatch.api.routes import batch_router, maintenance_router, order_router, register_exception_handlers

__all__ = ["order_router", "batch_router", "maintenance_router", "register_exception_handlers"]
