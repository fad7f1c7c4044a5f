"""Zone catalogue — known delivery zones with their names, landmarks and boundaries.

The catalogue is loaded from the JSON file named by ``DISPATCH_ZONES_FILE``::

    {"zones": [{"name": "Lapasan",
                "landmarks": ["SM City Cagayan de Oro"],
                "areas": ["SM area"],
                "polygon": [[8.445, 124.625], [8.465, 124.625], ...]}]}

Polygons are lists of ``[latitude, longitude]`` vertices. Without a file the
built-in Cagayan de Oro catalogue is used.
"""

import json
import os
import re
from dataclasses import dataclass, field
from pathlib import Path

import structlog

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class Zone:
    name: str
    landmarks: tuple[str, ...] = ()
    areas: tuple[str, ...] = ()
    polygon: tuple[tuple[float, float], ...] = ()

    def contains(self, latitude: float, longitude: float) -> bool:
        """Ray-casting point-in-polygon test; points on an edge count as inside."""
        vertices = self.polygon
        if len(vertices) < 3:
            return False

        inside = False
        j = len(vertices) - 1
        for i in range(len(vertices)):
            lat_i, lng_i = vertices[i]
            lat_j, lng_j = vertices[j]
            if _on_segment(latitude, longitude, lat_i, lng_i, lat_j, lng_j):
                return True
            if (lng_i > longitude) != (lng_j > longitude):
                crossing = (lat_j - lat_i) * (longitude - lng_i) / (lng_j - lng_i) + lat_i
                if latitude < crossing:
                    inside = not inside
            j = i
        return inside

    @property
    def area(self) -> float:
        """Shoelace area in squared degrees, used to prefer the tightest boundary."""
        vertices = self.polygon
        total = 0.0
        for i in range(len(vertices)):
            lat_i, lng_i = vertices[i]
            lat_j, lng_j = vertices[(i + 1) % len(vertices)]
            total += lat_i * lng_j - lat_j * lng_i
        return abs(total) / 2.0


def _on_segment(lat, lng, lat1, lng1, lat2, lng2, eps=1e-12) -> bool:
    cross = (lat - lat1) * (lng2 - lng1) - (lng - lng1) * (lat2 - lat1)
    if abs(cross) > eps:
        return False
    return min(lat1, lat2) - eps <= lat <= max(lat1, lat2) + eps and min(lng1, lng2) - eps <= lng <= max(lng1, lng2) + eps


def _box(north: float, south: float, east: float, west: float) -> tuple[tuple[float, float], ...]:
    return ((south, west), (north, west), (north, east), (south, east))


def _phrase_pattern(phrase: str) -> re.Pattern:
    words = [re.escape(w) for w in phrase.lower().split()]
    return re.compile(r"(?<!\w)" + r"\s+".join(words) + r"(?!\w)")


@dataclass
class ZoneCatalog:
    zones: list[Zone] = field(default_factory=list)

    def __post_init__(self):
        self._by_key = {z.name.strip().lower(): z for z in self.zones}
        # Longest phrase first so "Barangay 17" wins over "Barangay 1"
        self._names = sorted(((z.name.strip().lower(), z) for z in self.zones), key=lambda entry: -len(entry[0]))
        self._landmarks = sorted(
            (
                (_phrase_pattern(phrase), len(phrase), z)
                for z in self.zones
                for phrase in (*z.landmarks, *z.areas)
                if phrase.strip()
            ),
            key=lambda entry: -entry[1],
        )

    def canonical(self, name: str) -> str | None:
        zone = self._by_key.get(name.strip().lower())
        return zone.name if zone else None

    def match_name(self, text: str) -> str | None:
        lowered = text.lower()
        for name, zone in self._names:
            if name and name in lowered:
                return zone.name
        return None

    def match_landmark(self, text: str) -> str | None:
        lowered = text.lower()
        for pattern, _, zone in self._landmarks:
            if pattern.search(lowered):
                return zone.name
        return None

    def containing(self, latitude: float, longitude: float) -> str | None:
        matches = [z for z in self.zones if z.contains(latitude, longitude)]
        if not matches:
            return None
        return min(matches, key=lambda z: z.area).name

    @classmethod
    def from_dict(cls, data: dict) -> "ZoneCatalog":
        zones = []
        for entry in data.get("zones", []):
            name = (entry.get("name") or "").strip()
            if not name:
                raise ValueError("Every zone needs a name")
            zones.append(
                Zone(
                    name=name,
                    landmarks=tuple(entry.get("landmarks", ())),
                    areas=tuple(entry.get("areas", ())),
                    polygon=tuple((float(lat), float(lng)) for lat, lng in entry.get("polygon", ())),
                )
            )
        return cls(zones=zones)

    @classmethod
    def from_file(cls, path: str | Path) -> "ZoneCatalog":
        with open(path, encoding="utf-8") as handle:
            catalog = cls.from_dict(json.load(handle))
        logger.info("zone_catalog_loaded", path=str(path), zone_count=len(catalog.zones))
        return catalog

    @classmethod
    def from_env(cls) -> "ZoneCatalog":
        path = os.environ.get("DISPATCH_ZONES_FILE")
        if path:
            return cls.from_file(path)
        return default_catalog()


def default_catalog() -> ZoneCatalog:
    return ZoneCatalog(
        zones=[
            Zone(
                "Lapasan",
                ("SM City Cagayan de Oro", "Centrio Mall", "Xavier University"),
                ("SM area", "Centrio area"),
                _box(8.465, 8.445, 124.645, 124.625),
            ),
            Zone(
                "Carmen",
                ("Carmen Market", "Cogon Market", "Carmen Public Market"),
                ("Carmen Market area", "Cogon area"),
                _box(8.500, 8.480, 124.635, 124.615),
            ),
            Zone(
                "Nazareth",
                ("USTP", "Nazareth General Hospital", "Limketkai Mall"),
                ("Limketkai area", "J.R. Borja Extension"),
                _box(8.510, 8.485, 124.665, 124.635),
            ),
            Zone("Gusa", ("Gusa Regional High School",), ("Upper Gusa",), _box(8.485, 8.460, 124.630, 124.605)),
            Zone(
                "Bulua",
                ("Bulua National High School", "Malasag Eco-Tourism Village"),
                ("Malasag area",),
                _box(8.460, 8.435, 124.630, 124.605),
            ),
            Zone(
                "Macasandig",
                ("Macasandig Elementary School",),
                ("Lower Macasandig",),
                _box(8.480, 8.455, 124.610, 124.585),
            ),
            Zone(
                "Kauswagan",
                ("Kauswagan Elementary School",),
                ("Kauswagan proper",),
                _box(8.460, 8.435, 124.665, 124.640),
            ),
            Zone(
                "Puerto",
                ("Cagayan de Oro Port", "Macabalan Wharf"),
                ("Port area", "Macabalan area"),
                _box(8.490, 8.465, 124.675, 124.650),
            ),
            Zone("Balulang", ("Lumbia Airport",), ("Upper Balulang",), _box(8.440, 8.415, 124.645, 124.615)),
            Zone(
                "Barangay 1",
                ("City Hall", "Plaza Divisoria", "St. Augustine Cathedral"),
                ("Downtown proper",),
                _box(8.480, 8.475, 124.650, 124.640),
            ),
            Zone("Barangay 9", ("Gaston Park", "Rotunda"), ("Gaston Park area",), _box(8.482, 8.477, 124.655, 124.645)),
            Zone(
                "Barangay 17",
                ("Divisoria Night Market", "Cogon Public Market"),
                ("Night market area",),
                _box(8.484, 8.479, 124.660, 124.650),
            ),
        ]
    )
