"""Faker-based data generators for Locust load test scenarios.

Payloads match the field names expected by the Dispatch API's Pydantic
request schemas. Zones come from the built-in Cagayan de Oro catalogue so
that most orders resolve; a share of addresses is deliberately vague and
lands in the unknown zone.
"""

import random
import uuid

from faker import Faker

fake = Faker()

ZONES = [
    "Lapasan",
    "Carmen",
    "Nazareth",
    "Gusa",
    "Bulua",
    "Macasandig",
    "Kauswagan",
    "Puerto",
]

LANDMARKS = [
    "near SM City Cagayan de Oro",
    "behind Centrio Mall",
    "across Carmen Market",
    "beside Limketkai Mall",
    "Macabalan Wharf gate 2",
]

PRODUCT_IDS = [f"prod-{i:03d}" for i in range(1, 21)]


def unique_order_id() -> str:
    """Generate unique order IDs like 'ORD-LT-a1b2c3d4'."""
    return f"ORD-LT-{uuid.uuid4().hex[:8]}"


def line_items(max_items: int = 4) -> list[dict]:
    return [
        {"product_id": random.choice(PRODUCT_IDS), "quantity": random.randint(1, 20)}
        for _ in range(random.randint(1, max_items))
    ]


def address_data(zone: str | None = None) -> dict:
    """An address in one of three shapes: explicit zone, landmark only, or vague."""
    roll = random.random()
    if zone or roll < 0.6:
        return {"barangay": zone or random.choice(ZONES), "street": fake.street_address()[:255]}
    if roll < 0.9:
        return {"address_line": f"{fake.building_number()} {random.choice(LANDMARKS)}"}
    return {"address_line": fake.street_name()[:255]}


def approved_order_data(zone: str | None = None) -> dict:
    """Generate SeedOrderRequest payload for an already-approved order."""
    return {
        "order_id": unique_order_id(),
        "approval_state": "approved",
        "address": address_data(zone),
        "line_items": line_items(),
    }


def heavy_order_data(zone: str) -> dict:
    """An order with a frozen weight, sized to fill batches quickly."""
    return {
        "order_id": unique_order_id(),
        "approval_state": "approved",
        "zone": zone,
        "weight": round(random.uniform(400.0, 1200.0), 3),
    }


def cancellation_reason() -> str:
    return random.choice(["Truck breakdown", "Road closure", "Typhoon signal raised", fake.sentence(nb_words=6)])
