"""Zone resolver — maps an order's delivery address to a canonical zone id.

Priority: explicit zone, zone name in the address line, landmark in the
address line, coordinates inside a zone boundary, then the unknown-zone
sentinel. Resolution never fails.
"""

import structlog

from dispatch.settings import UNKNOWN_ZONE
from dispatch.zoning.address import address_from_payload
from dispatch.zoning.catalog import ZoneCatalog, default_catalog

logger = structlog.get_logger(__name__)

SENTINEL_ZONES = frozenset(
    {
        "unknown",
        "unknown-zone",
        "unknown zone",
        "unknown barangay",
        "default area",
        "n/a",
        "na",
        "none",
        "null",
        "",
    }
)


def is_sentinel(zone: str | None) -> bool:
    return zone is None or zone.strip().lower() in SENTINEL_ZONES


class ZoneResolver:
    def __init__(self, catalog: ZoneCatalog | None = None, unknown_zone: str = UNKNOWN_ZONE):
        self.catalog = catalog or default_catalog()
        self.unknown_zone = unknown_zone

    def resolve(self, payload) -> str:
        try:
            address = address_from_payload(payload)
        except Exception:
            logger.warning("zone_payload_unreadable", exc_info=True)
            return self.unknown_zone

        if not is_sentinel(address.zone):
            return self.catalog.canonical(address.zone) or address.zone.strip()

        if address.address_line:
            zone = self.catalog.match_name(address.address_line) or self.catalog.match_landmark(
                address.address_line
            )
            if zone:
                return zone

        if address.has_coordinates:
            zone = self.catalog.containing(address.latitude, address.longitude)
            if zone:
                return zone

        logger.info("zone_unresolved", address_line=address.address_line)
        return self.unknown_zone
