#!/usr/bin/env python3
"""
PLZ Territory Engine - Distance Search Engine

ARCHITECTURAL OVERVIEW:
=======================
Responsibility: Find regions within a radius of a point, by straight-line
distance, by live driving distance/time, or by the approximation model.

Search Pipeline (per request):
1. Prefilter: GeometryIndex.candidates_near(center, radius * 1.5), ranked by
   the straight-line distance of each region's anchor point, capped
2. Resolution:
   - straight: haversine distance, always succeeds
   - osrm: routing collaborator, batched with a short inter-batch delay;
     a cancellation token is checked before every batch
   - approximation: travel_model (inflated haversine + speed curve)
3. Fallback: ANY failed batch aborts routing and ALL candidates are
   recomputed with the approximation model (fell_back_to_approximation)
4. Filter to metric <= radius and sort ascending by the metric

Failures of the routing collaborator never raise: they surface in the
returned SearchResult.

Additional Searches:
- radius_search: exact region-to-point distance (no anchor shortcut)
- boundary_search: regions intersecting a supplied boundary polygon

For Navigation: Use VS Code outline (Ctrl+Shift+O)
"""

import logging
import math
import time
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Union

from shapely.errors import GEOSException
from shapely.geometry import Point, shape as geojson_shape
from shapely.geometry.base import BaseGeometry
from shapely.ops import nearest_points

from plz_territory.config_types import RoutingConfig, SearchConfig
from plz_territory.geometry.geometry_index import GeometryIndex
from plz_territory.geometry.shape_utils import clean_polygonal, haversine_km
from plz_territory.models import (
    LonLat,
    Region,
    SearchHit,
    SearchMethod,
    SearchMetric,
    SearchResult,
)
from plz_territory.search.routing_client import (
    CancellationToken,
    DistanceMatrix,
    RoutingClient,
)
from plz_territory.search.travel_model import approximate, duration_minutes

logger = logging.getLogger(__name__)


class _Candidate:
    """Prefiltered region with its routing anchor."""

    __slots__ = ("code", "anchor", "straight_km")

    def __init__(self, code: str, anchor: LonLat, straight_km: float) -> None:
        self.code = code
        self.anchor = anchor
        self.straight_km = straight_km


def _as_pair(center: Any) -> Tuple:
    return tuple(center) if isinstance(center, (list, tuple)) else ()


def _valid_center(center: Sequence[float]) -> bool:
    try:
        lon, lat = float(center[0]), float(center[1])
    except (TypeError, ValueError, IndexError):
        return False
    return math.isfinite(lon) and math.isfinite(lat) and -180 <= lon <= 180 and -90 <= lat <= 90


class DistanceSearchEngine:
    """
    Radius searches over one GeometryIndex.

    Args:
        index: Read-only region index
        routing_client: Live routing collaborator, or None
        search_config: Prefilter and approximation settings
        routing_config: Batch size and delay
        sleep: Delay function between batches (injectable for tests)
    """

    def __init__(
        self,
        index: GeometryIndex,
        routing_client: Optional[RoutingClient] = None,
        search_config: Optional[SearchConfig] = None,
        routing_config: Optional[RoutingConfig] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.index = index
        self.routing_client = routing_client
        self.search_config = search_config or SearchConfig()
        self.routing_config = routing_config or RoutingConfig()
        self._sleep = sleep

    # ═══════════════════════════════════════════════════════════════════════
    # 🔍 PREFILTER
    # ═══════════════════════════════════════════════════════════════════════

    def _prefilter(self, center: LonLat, radius: float) -> List[_Candidate]:
        prefilter_km = radius * self.search_config.prefilter_multiplier
        regions = self.index.candidates_near(center, prefilter_km)
        if not regions:
            return []

        anchors = [r.anchor() for r in regions]
        straight = haversine_km(center, [a[0] for a in anchors], [a[1] for a in anchors])

        ranked = sorted(
            (
                _Candidate(r.code, a, float(d))
                for r, a, d in zip(regions, anchors, straight)
                if d <= prefilter_km
            ),
            key=lambda c: (c.straight_km, c.code),
        )
        cap = self.search_config.max_candidates
        if len(ranked) > cap:
            logger.debug(f"Prefilter capped {len(ranked)} candidates to {cap}")
            ranked = ranked[:cap]
        return ranked

    # ═══════════════════════════════════════════════════════════════════════
    # 🚗 RESOLUTION
    # ═══════════════════════════════════════════════════════════════════════

    def _approximate(
        self, center: LonLat, candidates: List[_Candidate]
    ) -> Tuple[List[float], List[float]]:
        distances, durations = approximate(
            center, [c.anchor for c in candidates], self.search_config
        )
        return distances.tolist(), durations.tolist()

    def _straight(self, candidates: List[_Candidate]) -> Tuple[List[float], List[float]]:
        distances = [c.straight_km for c in candidates]
        durations = [duration_minutes(d, self.search_config) for d in distances]
        return distances, durations

    def _route(
        self,
        center: LonLat,
        candidates: List[_Candidate],
        cancel_token: Optional[CancellationToken],
    ) -> Optional[Tuple[List[float], List[float]]]:
        """
        Batched routing. Returns None when cancelled.

        Raises:
            Exception: Whatever the client raised for the failing batch.
        """
        batch_size = self.routing_config.batch_size
        distances: List[float] = []
        durations: List[float] = []

        for start in range(0, len(candidates), batch_size):
            if cancel_token is not None and cancel_token.cancelled:
                logger.info(f"🛑 Routing cancelled after {start} of {len(candidates)}")
                return None
            if start > 0 and self.routing_config.batch_delay_s > 0:
                self._sleep(self.routing_config.batch_delay_s)

            batch = candidates[start : start + batch_size]
            matrix: DistanceMatrix = self.routing_client.distance_matrix(
                center, [c.anchor for c in batch]
            )
            if len(matrix.distances_km) != len(batch) or len(matrix.durations_min) != len(batch):
                raise ValueError(
                    f"Routing returned {len(matrix.distances_km)} values for {len(batch)} destinations"
                )
            distances.extend(math.inf if d is None else d for d in matrix.distances_km)
            durations.extend(math.inf if t is None else t for t in matrix.durations_min)

        return distances, durations

    # ═══════════════════════════════════════════════════════════════════════
    # 🎯 ENTRY POINTS
    # ═══════════════════════════════════════════════════════════════════════

    def search(
        self,
        center: LonLat,
        radius: float,
        metric: Union[SearchMetric, str] = SearchMetric.DISTANCE,
        method: Optional[Union[SearchMethod, str]] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> SearchResult:
        """
        Radius search by distance (km) or travel time (minutes).

        Args:
            center: (lon, lat)
            radius: Kilometres for DISTANCE, minutes for TIME
            metric: SearchMetric or its value
            method: "straight" | "osrm" | "approximation"; defaults to
                the configured default method
            cancel_token: Checked before every routing batch

        Returns:
            SearchResult; invalid input gives an empty result with ``error``.
        """
        metric = metric if isinstance(metric, SearchMetric) else SearchMetric(str(metric).lower())
        if method is None:
            method = self.search_config.default_method
        method = method if isinstance(method, SearchMethod) else SearchMethod(str(method).lower())

        result = SearchResult(center=_as_pair(center), radius=radius, metric=metric, method=method)

        if not _valid_center(center):
            result.error = f"Invalid center: {center!r}"
            return result
        center = (float(center[0]), float(center[1]))
        result.center = center
        cfg = self.search_config
        if not (cfg.min_radius <= radius <= cfg.max_radius):
            result.error = f"Radius must be between {cfg.min_radius} and {cfg.max_radius}"
            return result

        if cancel_token is not None and cancel_token.cancelled:
            result.cancelled = True
            return result

        t_start = time.perf_counter()
        candidates = self._prefilter(center, radius)
        logger.info(
            f"📏 {metric.value} search {radius}{'min' if metric is SearchMetric.TIME else 'km'} "
            f"from {center} via {method.value}: {len(candidates)} candidates"
        )
        if not candidates:
            return result

        if method is SearchMethod.STRAIGHT:
            distances, durations = self._straight(candidates)
        elif method is SearchMethod.OSRM:
            if self.routing_client is None:
                logger.info("🔄 No routing client configured - using approximation")
                distances, durations = self._approximate(center, candidates)
                result.method = SearchMethod.APPROXIMATION
                result.fell_back_to_approximation = True
            else:
                try:
                    routed = self._route(center, candidates, cancel_token)
                except Exception as e:
                    logger.warning(f"🔄 Routing failed, falling back to approximation: {e}")
                    distances, durations = self._approximate(center, candidates)
                    result.method = SearchMethod.APPROXIMATION
                    result.fell_back_to_approximation = True
                    result.error = str(e)
                else:
                    if routed is None:
                        result.cancelled = True
                        return result
                    distances, durations = routed
        else:
            distances, durations = self._approximate(center, candidates)

        hits = [
            SearchHit(
                code=c.code,
                distance_km=float(d),
                duration_min=float(t),
                straight_line_km=c.straight_km,
            )
            for c, d, t in zip(candidates, distances, durations)
        ]
        hits = [h for h in hits if result.metric_value(h) <= radius]
        hits.sort(key=lambda h: (result.metric_value(h), h.code))
        result.hits = hits

        elapsed_ms = (time.perf_counter() - t_start) * 1000
        logger.info(f"   ✅ {len(hits)} regions within radius ({elapsed_ms:.0f}ms)")
        return result

    def radius_search(self, center: LonLat, radius_km: float) -> SearchResult:
        """
        Straight-line search using the exact region geometry.

        A region is a hit when its closest point lies within ``radius_km``
        of ``center``; a region containing the center has distance 0.
        Distances are great-circle from the center to the nearest point
        found in lon/lat space.
        """
        result = SearchResult(
            center=_as_pair(center),
            radius=radius_km,
            metric=SearchMetric.DISTANCE,
            method=SearchMethod.STRAIGHT,
        )
        if not _valid_center(center) or not (radius_km > 0 and math.isfinite(radius_km)):
            result.error = "Invalid center or radius"
            return result

        center = (float(center[0]), float(center[1]))
        result.center = center
        origin = Point(center)
        hits: List[SearchHit] = []
        for region in self.index.candidates_near(center, radius_km):
            dist = self._region_distance_km(region, origin)
            if dist is not None and dist <= radius_km:
                hits.append(SearchHit(code=region.code, distance_km=dist, straight_line_km=dist))
        hits.sort(key=lambda h: (h.distance_km, h.code))
        result.hits = hits
        logger.info(f"📏 Radius search {radius_km}km from {center}: {len(hits)} regions")
        return result

    def _region_distance_km(self, region: Region, origin: Point) -> Optional[float]:
        best: Optional[float] = None
        for part in region.parts:
            try:
                if part.covers(origin):
                    return 0.0
                nearest = nearest_points(part, origin)[0]
            except (GEOSException, ValueError) as e:
                logger.debug(f"Distance test failed for {region.code}: {e}")
                continue
            d = float(haversine_km((origin.x, origin.y), [nearest.x], [nearest.y])[0])
            if best is None or d < best:
                best = d
        return best

    def boundary_search(
        self, boundary: Union[BaseGeometry, Dict[str, Any], None]
    ) -> List[str]:
        """
        Codes of regions intersecting a boundary polygon, sorted.

        Accepts a shapely geometry or a GeoJSON geometry / Feature dict.
        Unusable boundaries yield an empty list.
        """
        if boundary is None:
            return []
        if isinstance(boundary, dict):
            geom_dict = boundary.get("geometry", boundary) if boundary.get("type") == "Feature" else boundary
            try:
                boundary = geojson_shape(geom_dict)
            except (GEOSException, ValueError, TypeError, KeyError, AttributeError) as e:
                logger.warning(f"⚠️ Unusable boundary geometry: {e}")
                return []
        geometry = clean_polygonal(boundary)
        if geometry is None:
            return []
        return [r.code for r in self.index.regions_intersecting(geometry)]
