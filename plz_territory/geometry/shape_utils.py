#!/usr/bin/env python3
"""
Shape Utility Functions

ARCHITECTURAL OVERVIEW:
=======================
Responsibility: Pure geometry helpers shared by the index, the adjacency
resolver and the shape selector. No state, no logging side effects beyond
debug messages.

Key Functions:
1. Ring repair (close rings, drop short rings) for raw GeoJSON coordinates
2. Geometry cleaning (make_valid + polygon extraction)
3. Circle rasterisation on the WGS84 ellipsoid (pyproj.Geod)
4. Drawn shape -> shapely geometry conversion
5. Decomposed polygon intersection predicate
6. Great-circle distance helpers

Dependencies:
- shapely (geometry model and predicates)
- pyproj (geodesic forward computation for circles)
- numpy (vectorised trigonometry)

Navigation Guide:
- Use VS Code outline (Ctrl+Shift+O) to jump between functions
"""

import logging
import math
from typing import Any, Iterable, List, Optional, Sequence, Tuple

import numpy as np
from pyproj import Geod
from shapely.errors import GEOSException
from shapely.geometry import MultiPolygon, Point, Polygon
from shapely.geometry.base import BaseGeometry
from shapely.validation import make_valid

from plz_territory.models import DrawnShape, LonLat, ShapeKind, polygon_parts

logger = logging.getLogger(__name__)

# ═══════════════════════════════════════════════════════════════════════════
# 🔧 CONSTANTS
# ═══════════════════════════════════════════════════════════════════════════

EARTH_RADIUS_KM = 6371.0
KM_PER_DEGREE_LAT = 111.32

_GEOD = Geod(ellps="WGS84")


# ===========================================================================
# RING REPAIR
# ===========================================================================


def repair_ring(
    coords: Sequence[Sequence[Any]], min_points: int = 4
) -> Optional[List[LonLat]]:
    """
    Close a raw coordinate ring and drop it if it is too short.

    Args:
        coords: Sequence of [lon, lat, ...] positions
        min_points: Minimum point count after closing (4 = triangle)

    Returns:
        Closed ring as (lon, lat) tuples, or None if the ring is too short.

    Raises:
        ValueError: If a coordinate is not numeric or not finite.
    """
    ring: List[LonLat] = []
    for pos in coords:
        if len(pos) < 2:
            raise ValueError(f"Position with fewer than 2 values: {pos!r}")
        lon, lat = float(pos[0]), float(pos[1])
        if not (math.isfinite(lon) and math.isfinite(lat)):
            raise ValueError(f"Non-finite coordinate: {pos!r}")
        ring.append((lon, lat))

    if ring and ring[0] != ring[-1]:
        ring.append(ring[0])

    if len(ring) < min_points:
        return None
    return ring


def polygon_from_rings(
    rings: Sequence[Sequence[Sequence[Any]]], min_points: int = 4
) -> Optional[Polygon]:
    """Build a Polygon from GeoJSON rings (first = shell, rest = holes).

    Short holes are dropped; a short shell drops the whole polygon.
    """
    if not rings:
        return None
    shell = repair_ring(rings[0], min_points)
    if shell is None:
        return None
    holes = []
    for hole in rings[1:]:
        repaired = repair_ring(hole, min_points)
        if repaired is not None:
            holes.append(repaired)
    return Polygon(shell, holes)


def geometry_from_geojson(
    geometry: Optional[dict], min_points: int = 4
) -> Optional[BaseGeometry]:
    """
    Convert a GeoJSON Polygon/MultiPolygon dict into a shapely geometry,
    repairing rings on the way.

    Args:
        geometry: GeoJSON geometry dict
        min_points: Minimum closed ring length

    Returns:
        Polygon / MultiPolygon, or None when nothing usable remains
        (wrong geometry type, all rings too short).

    Raises:
        ValueError: On non-numeric coordinates or malformed nesting.
    """
    if not geometry:
        return None
    geom_type = geometry.get("type")
    coords = geometry.get("coordinates")
    if coords is None:
        return None

    try:
        if geom_type == "Polygon":
            return polygon_from_rings(coords, min_points)
        if geom_type == "MultiPolygon":
            polys = [polygon_from_rings(p, min_points) for p in coords]
            polys = [p for p in polys if p is not None]
            if not polys:
                return None
            return polys[0] if len(polys) == 1 else MultiPolygon(polys)
    except (TypeError, IndexError) as e:
        raise ValueError(f"Malformed {geom_type} coordinates: {e}") from e

    return None


# ===========================================================================
# GEOMETRY CLEANING
# ===========================================================================


def clean_polygonal(
    geometry: Optional[BaseGeometry], repair_invalid: bool = True
) -> Optional[BaseGeometry]:
    """
    Normalise a geometry to a valid Polygon or MultiPolygon.

    Handles:
    - None/empty -> None
    - Invalid topology -> make_valid() (or None when repair is disabled)
    - GeometryCollection -> polygonal members only (lines/points discarded)

    Args:
        geometry: Shapely geometry (possibly self-intersecting)
        repair_invalid: Repair instead of rejecting invalid geometry

    Returns:
        Clean Polygon / MultiPolygon, or None if nothing polygonal remains.
    """
    if geometry is None or geometry.is_empty:
        return None

    if not geometry.is_valid:
        if not repair_invalid:
            return None
        geometry = make_valid(geometry)

    parts = polygon_parts(geometry)
    if not parts:
        return None
    if len(parts) == 1:
        return parts[0]
    return MultiPolygon(parts)


# ===========================================================================
# CIRCLE RASTERISATION
# ===========================================================================


def circle_polygon(center: LonLat, radius_km: float, vertex_count: int = 64) -> Polygon:
    """
    Approximate a geodesic circle by a regular N-gon.

    Vertices are computed with pyproj.Geod.fwd so the polygon is round on
    the ground, not in degree space.

    Args:
        center: (lon, lat)
        radius_km: Radius in kilometres (> 0)
        vertex_count: Number of vertices

    Returns:
        Polygon with ``vertex_count`` distinct vertices.
    """
    lon, lat = center
    azimuths = np.linspace(0.0, 360.0, vertex_count, endpoint=False)
    lons = np.full(vertex_count, lon, dtype=float)
    lats = np.full(vertex_count, lat, dtype=float)
    dists = np.full(vertex_count, radius_km * 1000.0, dtype=float)
    out_lons, out_lats, _ = _GEOD.fwd(lons, lats, azimuths, dists)
    return Polygon(list(zip(out_lons.tolist(), out_lats.tolist())))


# ===========================================================================
# DRAWN SHAPE CONVERSION
# ===========================================================================


def _is_geographic(vertex: LonLat) -> bool:
    lon, lat = vertex
    return (
        math.isfinite(lon)
        and math.isfinite(lat)
        and -180.0 <= lon <= 180.0
        and -90.0 <= lat <= 90.0
    )


def distinct_vertices(vertices: Iterable[LonLat]) -> List[LonLat]:
    """Valid geographic vertices with duplicates removed, order kept."""
    seen = set()
    out: List[LonLat] = []
    for v in vertices:
        if not _is_geographic(v) or v in seen:
            continue
        seen.add(v)
        out.append(v)
    return out


def shape_to_geometry(
    shape: DrawnShape, vertex_count: int = 64
) -> Optional[BaseGeometry]:
    """
    Convert a drawn shape into a query geometry.

    Returns None for degenerate input: fewer than 3 distinct valid vertices,
    a non-positive circle radius, or a point outside lon/lat range. A
    self-intersecting lasso is repaired with make_valid().
    """
    if shape.kind is ShapeKind.POINT:
        if shape.center is None or not _is_geographic(shape.center):
            return None
        return Point(shape.center)

    if shape.kind is ShapeKind.CIRCLE:
        if shape.center is None or not _is_geographic(shape.center):
            return None
        if not (shape.radius_km > 0 and math.isfinite(shape.radius_km)):
            return None
        return circle_polygon(shape.center, shape.radius_km, vertex_count)

    # Off-map (screen-space) vertices are dropped before counting
    valid = [v for v in shape.vertices if _is_geographic(v)]
    if len(distinct_vertices(valid)) < 3:
        return None
    return clean_polygonal(Polygon(valid), repair_invalid=True)


# ===========================================================================
# INTERSECTION PREDICATE
# ===========================================================================


def _boxes_overlap(
    a: Tuple[float, float, float, float], b: Tuple[float, float, float, float]
) -> bool:
    return a[0] <= b[2] and b[0] <= a[2] and a[1] <= b[3] and b[1] <= a[3]


def parts_intersect(parts_a: Sequence[Polygon], parts_b: Sequence[Polygon]) -> bool:
    """
    Decomposed-polygon intersection test.

    True if ANY polygon of ``parts_a`` intersects (touches or overlaps) ANY
    polygon of ``parts_b``. A single shared vertex counts. Predicate errors
    on one pair are logged and treated as "no contact" for that pair.
    """
    for pa in parts_a:
        box_a = pa.bounds
        for pb in parts_b:
            if not _boxes_overlap(box_a, pb.bounds):
                continue
            try:
                if pa.intersects(pb):
                    return True
            except (GEOSException, ValueError) as e:
                logger.debug(f"Intersection predicate failed, treating as disjoint: {e}")
    return False


# ===========================================================================
# DISTANCE HELPERS
# ===========================================================================


def haversine_km(
    origin: LonLat, lons: Sequence[float], lats: Sequence[float]
) -> np.ndarray:
    """
    Great-circle distances from ``origin`` to many points.

    Args:
        origin: (lon, lat)
        lons: Destination longitudes
        lats: Destination latitudes

    Returns:
        numpy array of distances in kilometres.
    """
    lon1, lat1 = np.radians(origin[0]), np.radians(origin[1])
    lon2 = np.radians(np.asarray(lons, dtype=float))
    lat2 = np.radians(np.asarray(lats, dtype=float))
    dlat = lat2 - lat1
    dlon = lon2 - lon1
    a = np.sin(dlat / 2.0) ** 2 + np.cos(lat1) * np.cos(lat2) * np.sin(dlon / 2.0) ** 2
    c = 2.0 * np.arctan2(np.sqrt(a), np.sqrt(1.0 - a))
    return EARTH_RADIUS_KM * c


def km_to_degree_box(center: LonLat, radius_km: float) -> Tuple[float, float, float, float]:
    """Degree bounding box that contains every point within ``radius_km``."""
    lon, lat = center
    dlat = radius_km / KM_PER_DEGREE_LAT
    cos_lat = max(math.cos(math.radians(lat)), 1e-6)
    dlon = min(radius_km / (KM_PER_DEGREE_LAT * cos_lat), 180.0)
    return (lon - dlon, lat - dlat, lon + dlon, lat + dlat)


def point_to_bbox_km(point: LonLat, bounds: Tuple[float, float, float, float]) -> float:
    """Great-circle distance from a point to the nearest point of a bbox."""
    lon = min(max(point[0], bounds[0]), bounds[2])
    lat = min(max(point[1], bounds[1]), bounds[3])
    return float(haversine_km(point, [lon], [lat])[0])
