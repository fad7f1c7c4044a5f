"""DeliveryAddress value object — the only address shape the zone resolver reads."""

from collections.abc import Mapping

from protean import invariant
from protean.exceptions import ValidationError
from protean.fields import Float, String

from dispatch.domain import dispatch

_ZONE_KEYS = ("zone", "barangay")
_LINE_KEYS = ("address_line", "street", "address", "full_address")


@dispatch.value_object
class DeliveryAddress:
    """Explicit zone, free-text address line and optional coordinates."""

    zone: String(max_length=255)
    address_line: String(max_length=1000)
    latitude: Float(min_value=-90.0, max_value=90.0)
    longitude: Float(min_value=-180.0, max_value=180.0)

    @invariant.post
    def coordinates_come_in_pairs(self):
        if (self.latitude is None) != (self.longitude is None):
            raise ValidationError({"coordinates": ["Latitude and longitude must be given together"]})

    @property
    def has_coordinates(self) -> bool:
        return self.latitude is not None and self.longitude is not None


def _first_text(payload: Mapping, keys) -> str | None:
    for key in keys:
        value = payload.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def _coordinates(payload: Mapping) -> tuple[float | None, float | None]:
    lat, lng = payload.get("latitude", payload.get("lat")), payload.get("longitude", payload.get("lng"))
    coords = payload.get("coordinates")
    if (lat is None or lng is None) and isinstance(coords, Mapping):
        lat, lng = coords.get("lat", coords.get("latitude")), coords.get("lng", coords.get("longitude"))
    elif (lat is None or lng is None) and isinstance(coords, (list, tuple)) and len(coords) == 2:
        lat, lng = coords
    try:
        return float(lat), float(lng)
    except (TypeError, ValueError):
        return None, None


def address_from_payload(payload) -> DeliveryAddress:
    """Coerce a loosely-structured address record into a DeliveryAddress.

    Unusable parts (bad coordinates, non-string fields) are dropped rather
    than rejected.
    """
    if isinstance(payload, DeliveryAddress):
        return payload
    if not isinstance(payload, Mapping):
        return DeliveryAddress()

    zone = (_first_text(payload, _ZONE_KEYS) or "")[:255] or None
    line = (_first_text(payload, _LINE_KEYS) or "")[:1000] or None
    latitude, longitude = _coordinates(payload)
    try:
        return DeliveryAddress(zone=zone, address_line=line, latitude=latitude, longitude=longitude)
    except ValidationError:
        return DeliveryAddress(zone=zone, address_line=line)
