"""
Typed data models for postal-code regions, drawn shapes and search results.

Architectural Overview:
=======================
This module contains the dataclasses and enums shared by every engine
component. Regions are immutable once loaded; drawn shapes and search results
are transient values produced by one interaction and consumed by the
selection layer.

Key Interactions:
-----------------
- Input: data.region_loader creates Region instances from GeoJSON features
- Output: SearchResult.as_dict() / Region.as_feature() feed the HTTP layer
- Navigation: Use VS Code outline (Ctrl+Shift+O) for quick navigation

MODIFICATION POINT: Add new Granularity members here if the dataset gains
a 4-digit tier.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple

from shapely.geometry import MultiPolygon, Polygon, mapping
from shapely.geometry.base import BaseGeometry

LonLat = Tuple[float, float]


# ═══════════════════════════════════════════════════════════════════════════
# 🏷️ ENUMS SECTION
# ═══════════════════════════════════════════════════════════════════════════


class Granularity(Enum):
    """Digit-length tier of postal-code aggregation.

    Each tier is a distinct, non-overlapping partition of the territory.
    """

    ONE_DIGIT = "1digit"
    TWO_DIGIT = "2digit"
    THREE_DIGIT = "3digit"
    FIVE_DIGIT = "5digit"

    @property
    def level(self) -> int:
        """Numeric level used for ordering (1, 2, 3, 5)."""
        return int(self.value[0])

    @property
    def label(self) -> str:
        """German display label, e.g. '3-stellig'."""
        return f"{self.level}-stellig"

    @classmethod
    def from_string(cls, s: Any) -> "Granularity":
        """Parse '3digit', '3', 3 or 'plz-3stellig' into a Granularity.

        Raises:
            ValueError: If the value names no known granularity.
        """
        if isinstance(s, Granularity):
            return s
        text = str(s).strip().lower()
        for member in cls:
            if text in (
                member.value,
                str(member.level),
                f"plz-{member.level}stellig",
                member.label,
            ):
                return member
        raise ValueError(f"Unknown granularity: {s!r}")


class SelectionMode(Enum):
    """How a resolved code list is applied to the selection."""

    REPLACE = "replace"
    ADD = "add"
    TOGGLE = "toggle"

    @classmethod
    def from_string(cls, s: str) -> "SelectionMode":
        """Convert string to SelectionMode, with fallback to TOGGLE."""
        for member in cls:
            if member.value == str(s).lower():
                return member
        return cls.TOGGLE


class ShapeKind(Enum):
    """Kind of a user-drawn shape."""

    POLYGON = "polygon"
    RECTANGLE = "rectangle"
    CIRCLE = "circle"
    POINT = "point"


class SearchMetric(Enum):
    """Metric a distance search filters and sorts by."""

    DISTANCE = "distance"  # kilometres
    TIME = "time"  # minutes


class SearchMethod(Enum):
    """How distances were resolved."""

    STRAIGHT = "straight"
    OSRM = "osrm"
    APPROXIMATION = "approximation"


class BulkOperation(Enum):
    """Bulk set-topology operations seeded by the current selection."""

    EXPAND = "expand"
    HOLES = "holes"
    ALL = "all"


# ═══════════════════════════════════════════════════════════════════════════
# 🗺️ REGION
# ═══════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class Region:
    """Immutable polygonal postal-code region.

    Attributes:
        code: Identifier, unique within its granularity (e.g. "80", "803")
        granularity: Tier the region belongs to
        geometry: Polygon or MultiPolygon in (lon, lat)
        properties: Descriptive metadata, never used by the algorithms
    """

    code: str
    granularity: Granularity
    geometry: BaseGeometry = field(compare=False)
    properties: Dict[str, Any] = field(default_factory=dict, compare=False, hash=False)

    @property
    def parts(self) -> List[Polygon]:
        """Constituent single polygons (a region may be disjoint, e.g. islands)."""
        return polygon_parts(self.geometry)

    @property
    def bounds(self) -> Tuple[float, float, float, float]:
        """(min_lon, min_lat, max_lon, max_lat)."""
        return tuple(self.geometry.bounds)

    def anchor(self) -> LonLat:
        """Point guaranteed inside the region, used as routing destination."""
        largest = max(self.parts, key=lambda p: p.area)
        pt = largest.representative_point()
        return (pt.x, pt.y)

    def as_feature(self) -> Dict[str, Any]:
        """GeoJSON Feature with the canonical code property."""
        return {
            "type": "Feature",
            "geometry": mapping(self.geometry),
            "properties": {
                **self.properties,
                "code": self.code,
                "granularity": self.granularity.value,
            },
        }


def polygon_parts(geometry: Optional[BaseGeometry]) -> List[Polygon]:
    """Decompose a geometry into its non-empty single polygons.

    Polygon -> [polygon]; MultiPolygon / GeometryCollection -> polygonal
    members; anything else -> [].
    """
    if geometry is None or geometry.is_empty:
        return []
    if isinstance(geometry, Polygon):
        return [geometry]
    if isinstance(geometry, MultiPolygon):
        return [p for p in geometry.geoms if not p.is_empty]
    if hasattr(geometry, "geoms"):
        parts: List[Polygon] = []
        for g in geometry.geoms:
            parts.extend(polygon_parts(g))
        return parts
    return []


# ═══════════════════════════════════════════════════════════════════════════
# ✏️ DRAWN SHAPE
# ═══════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class DrawnShape:
    """Transient shape produced by a drawing interaction.

    Polygons and rectangles carry ``vertices``; circles carry ``center`` and
    ``radius_km``; points carry ``center`` only. Never persisted.
    """

    kind: ShapeKind
    vertices: Tuple[LonLat, ...] = ()
    center: Optional[LonLat] = None
    radius_km: float = 0.0

    @classmethod
    def polygon(cls, vertices: Sequence[Sequence[float]]) -> "DrawnShape":
        """Freehand / lasso / polygon draw from an ordered vertex ring."""
        return cls(
            kind=ShapeKind.POLYGON,
            vertices=tuple((v[0], v[1]) for v in vertices if len(v) >= 2),
        )

    @classmethod
    def rectangle(
        cls, min_lon: float, min_lat: float, max_lon: float, max_lat: float
    ) -> "DrawnShape":
        """Axis-aligned rectangle draw."""
        return cls(
            kind=ShapeKind.RECTANGLE,
            vertices=(
                (min_lon, min_lat),
                (max_lon, min_lat),
                (max_lon, max_lat),
                (min_lon, max_lat),
            ),
        )

    @classmethod
    def circle(cls, center: Sequence[float], radius_km: float) -> "DrawnShape":
        """Circle draw, center (lon, lat) and radius in kilometres."""
        return cls(
            kind=ShapeKind.CIRCLE,
            center=(center[0], center[1]),
            radius_km=float(radius_km),
        )

    @classmethod
    def point(cls, lon: float, lat: float) -> "DrawnShape":
        """Degenerate click shape."""
        return cls(kind=ShapeKind.POINT, center=(lon, lat))

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "DrawnShape":
        """Build from a request body.

        Accepted forms:
            {"type": "polygon", "coordinates": [[lon, lat], ...]}
            {"type": "rectangle", "bbox": [min_lon, min_lat, max_lon, max_lat]}
            {"type": "circle", "center": [lon, lat], "radius_km": 5}
            {"type": "point", "coordinates": [lon, lat]}

        Raises:
            ValueError: On an unknown type or missing fields.
        """
        kind = str(d.get("type", "polygon")).lower()
        if kind == "polygon":
            coords = d.get("coordinates") or []
            # Accept GeoJSON-style [[ring]] as well as a bare ring
            if coords and coords[0] and isinstance(coords[0][0], (list, tuple)):
                coords = coords[0]
            return cls.polygon(coords)
        if kind == "rectangle":
            bbox = d.get("bbox")
            if not bbox or len(bbox) != 4:
                raise ValueError("rectangle requires bbox [min_lon, min_lat, max_lon, max_lat]")
            return cls.rectangle(*[float(v) for v in bbox])
        if kind == "circle":
            center = d.get("center")
            if not center or len(center) != 2 or "radius_km" not in d:
                raise ValueError("circle requires center [lon, lat] and radius_km")
            return cls.circle(center, float(d["radius_km"]))
        if kind == "point":
            coords = d.get("coordinates")
            if not coords or len(coords) != 2:
                raise ValueError("point requires coordinates [lon, lat]")
            return cls.point(float(coords[0]), float(coords[1]))
        raise ValueError(f"Unknown shape type: {kind!r}")


# ═══════════════════════════════════════════════════════════════════════════
# 📏 SEARCH RESULTS
# ═══════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class SearchHit:
    """One region returned by a distance search."""

    code: str
    distance_km: float
    duration_min: Optional[float] = None
    straight_line_km: Optional[float] = None

    def as_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "distance": round(self.distance_km, 3),
            "duration": None if self.duration_min is None else round(self.duration_min, 2),
            "straightLineDistance": (
                None if self.straight_line_km is None else round(self.straight_line_km, 3)
            ),
        }


@dataclass
class SearchResult:
    """Outcome of one distance search request.

    A failed routing call never raises: it shows up as
    ``fell_back_to_approximation`` with approximated values for every
    candidate. ``cancelled`` results carry no hits.
    """

    center: LonLat
    radius: float
    metric: SearchMetric
    method: SearchMethod
    hits: List[SearchHit] = field(default_factory=list)
    fell_back_to_approximation: bool = False
    cancelled: bool = False
    error: Optional[str] = None

    @property
    def codes(self) -> List[str]:
        """Codes in result order."""
        return [h.code for h in self.hits]

    def metric_value(self, hit: SearchHit) -> float:
        """Value of ``hit`` in this result's metric."""
        if self.metric is SearchMetric.TIME:
            return hit.duration_min if hit.duration_min is not None else float("inf")
        return hit.distance_km

    def as_dict(self) -> Dict[str, Any]:
        return {
            "center": list(self.center),
            "radius": self.radius,
            "mode": self.metric.value,
            "method": self.method.value,
            "fellBackToApproximation": self.fell_back_to_approximation,
            "cancelled": self.cancelled,
            "error": self.error,
            "postalCodes": [h.as_dict() for h in self.hits],
            "count": len(self.hits),
        }


@dataclass(frozen=True)
class SaveResult:
    """Outcome of an explicit save to the layer storage collaborator."""

    success: bool
    layer_id: str
    code_count: int = 0
    error: Optional[str] = None
