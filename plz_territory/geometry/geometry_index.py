#!/usr/bin/env python3
"""
PLZ Territory Engine - Geometry Index

ARCHITECTURAL OVERVIEW:
=======================
Responsibility: Fast point/shape-to-region lookups over the fixed region set
of one granularity, backed by a shapely STRtree over decomposed polygons.

Key Features:
1. Build-time validation: invalid geometry repaired, empty geometry skipped
2. Duplicate codes merged into one (multi-)polygon region
3. Bounding-box prefilter around a point (candidates_near)
4. Exact decomposed-polygon intersection against a query shape
5. Point lookup with a deterministic lowest-code tie-break
6. Outer frame of the dataset for hole detection

Concurrency:
- Read-only after construction; safe to share across sessions
- A granularity change or dataset refresh builds a NEW index

Navigation Guide:
- GeometryIndex.build: Construction entry point
- candidates_near / regions_intersecting / region_at: Queries
- outer_frame / frame_codes: Dataset outline and the regions on it,
  used by the bulk operator

For Navigation: Use VS Code outline (Ctrl+Shift+O)
"""

from typing import Dict, FrozenSet, Iterable, Iterator, List, Optional, Sequence, Tuple
import logging
import time

from shapely.errors import GEOSException
from shapely.geometry import MultiLineString, Point, Polygon, box
from shapely.geometry.base import BaseGeometry
from shapely.ops import unary_union
from shapely.prepared import prep
from shapely.strtree import STRtree

from plz_territory.config_types import FillHolesConfig, GeometryConfig
from plz_territory.geometry.shape_utils import (
    clean_polygonal,
    km_to_degree_box,
    point_to_bbox_km,
)
from plz_territory.models import Granularity, LonLat, Region, polygon_parts

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
# 📐 GEOMETRY INDEX
# ═══════════════════════════════════════════════════════════════════════════


class GeometryIndex:
    """
    Spatial index over the regions of a single granularity.

    Every region is decomposed into single polygons; the STRtree holds the
    parts and maps each back to its owning region code.
    """

    def __init__(
        self,
        granularity: Granularity,
        regions: Sequence[Region],
        config: Optional[GeometryConfig] = None,
    ) -> None:
        """
        Use GeometryIndex.build() instead, which validates input first.

        Args:
            granularity: Tier of all regions in the index
            regions: Already validated regions with unique codes
            config: Geometry settings
        """
        self.granularity = granularity
        self.config = config or GeometryConfig()

        self._regions: Dict[str, Region] = {r.code: r for r in sorted(regions, key=lambda r: r.code)}
        self._region_parts: Dict[str, List[Polygon]] = {
            code: r.parts for code, r in self._regions.items()
        }

        self._parts: List[Polygon] = []
        self._part_owner: List[str] = []
        for code, parts in self._region_parts.items():
            for part in parts:
                self._parts.append(part)
                self._part_owner.append(code)

        self._tree: Optional[STRtree] = (
            STRtree(self._parts, node_capacity=self.config.strtree_node_capacity)
            if self._parts
            else None
        )

        # Lazily derived, immutable once computed
        self._dataset_outline: Optional[BaseGeometry] = None
        self._frame_codes: Dict[FillHolesConfig, FrozenSet[str]] = {}

    @classmethod
    def build(
        cls,
        regions: Iterable[Region],
        granularity: Optional[Granularity] = None,
        config: Optional[GeometryConfig] = None,
    ) -> "GeometryIndex":
        """
        Validate regions and build the index.

        - Regions of another granularity are skipped (warning)
        - Invalid geometry is repaired via make_valid, or skipped when
          repair is disabled / nothing polygonal remains (warning)
        - Duplicate codes are merged into one geometry

        Args:
            regions: Candidate regions
            granularity: Expected tier; defaults to the first region's tier
            config: Geometry settings

        Returns:
            Read-only GeometryIndex.
        """
        config = config or GeometryConfig()
        t_start = time.perf_counter()

        merged: Dict[str, List[BaseGeometry]] = {}
        first: Dict[str, Region] = {}
        skipped = 0

        for region in regions:
            if granularity is None:
                granularity = region.granularity
            if region.granularity is not granularity:
                logger.warning(
                    f"⚠️ Region {region.code} has granularity "
                    f"{region.granularity.value}, expected {granularity.value} - skipped"
                )
                skipped += 1
                continue

            try:
                geom = clean_polygonal(region.geometry, config.repair_invalid)
            except (GEOSException, ValueError) as e:
                logger.warning(f"⚠️ Region {region.code}: unrepairable geometry ({e}) - skipped")
                skipped += 1
                continue

            if geom is None:
                logger.warning(f"⚠️ Region {region.code}: no usable polygon geometry - skipped")
                skipped += 1
                continue

            merged.setdefault(region.code, []).append(geom)
            first.setdefault(region.code, region)

        built: List[Region] = []
        for code, geoms in merged.items():
            base = first[code]
            if len(geoms) == 1:
                geometry = geoms[0]
            else:
                logger.debug(f"Merging {len(geoms)} features for duplicate code {code}")
                geometry = clean_polygonal(unary_union(geoms)) or geoms[0]
            built.append(
                Region(
                    code=code,
                    granularity=base.granularity,
                    geometry=geometry,
                    properties=base.properties,
                )
            )

        index = cls(granularity or Granularity.FIVE_DIGIT, built, config)
        elapsed_ms = (time.perf_counter() - t_start) * 1000
        logger.info(
            f"✅ Built {index.granularity.value} index: {len(index)} regions, "
            f"{len(index._parts)} polygons"
            + (f", {skipped} skipped" if skipped else "")
            + f" ({elapsed_ms:.0f}ms)"
        )
        return index

    # ═══════════════════════════════════════════════════════════════════════
    # 📋 ACCESSORS
    # ═══════════════════════════════════════════════════════════════════════

    def __len__(self) -> int:
        return len(self._regions)

    def __contains__(self, code: object) -> bool:
        return code in self._regions

    def __iter__(self) -> Iterator[Region]:
        return iter(self._regions.values())

    @property
    def codes(self) -> List[str]:
        """All region codes, sorted."""
        return list(self._regions.keys())

    @property
    def bounds(self) -> Optional[Tuple[float, float, float, float]]:
        """Total bounds of the dataset, or None if empty."""
        if self._tree is None:
            return None
        minx = min(p.bounds[0] for p in self._parts)
        miny = min(p.bounds[1] for p in self._parts)
        maxx = max(p.bounds[2] for p in self._parts)
        maxy = max(p.bounds[3] for p in self._parts)
        return (minx, miny, maxx, maxy)

    def get(self, code: str) -> Optional[Region]:
        """Region for ``code`` or None."""
        return self._regions.get(code)

    def parts_of(self, code: str) -> List[Polygon]:
        """Decomposed polygons of ``code`` (empty list if unknown)."""
        return self._region_parts.get(code, [])

    # ═══════════════════════════════════════════════════════════════════════
    # 🔍 QUERIES
    # ═══════════════════════════════════════════════════════════════════════

    def candidate_codes(self, geometry: BaseGeometry) -> List[str]:
        """Codes whose part bounding boxes intersect the geometry's bbox."""
        if self._tree is None or geometry is None or geometry.is_empty:
            return []
        idx = self._tree.query(geometry)
        return sorted({self._part_owner[i] for i in idx})

    def candidates_near(self, point: LonLat, radius_hint_km: float) -> List[Region]:
        """
        Bounding-box prefilter around a point.

        Args:
            point: (lon, lat)
            radius_hint_km: Search radius in kilometres

        Returns:
            Regions whose bounding box lies within ``radius_hint_km`` of the
            point, sorted by code. No exact geometry test is performed.
        """
        if self._tree is None or radius_hint_km < 0:
            return []
        query_box = box(*km_to_degree_box(point, radius_hint_km))
        out = []
        for code in self.candidate_codes(query_box):
            region = self._regions[code]
            if point_to_bbox_km(point, region.bounds) <= radius_hint_km:
                out.append(region)
        return out

    def regions_intersecting(self, shape: Optional[BaseGeometry]) -> List[Region]:
        """
        Exact list of regions whose geometry intersects ``shape``.

        Both sides are decomposed into single polygons; a region counts if
        ANY of its parts intersects ANY part of the shape (shared edge,
        shared vertex or overlapping area). Point and line shapes are
        tested directly. Predicate failures skip that pair.

        Returns:
            Regions sorted by code.
        """
        if self._tree is None or shape is None or shape.is_empty:
            return []

        query_parts: List[BaseGeometry] = polygon_parts(shape) or [shape]
        hit: set = set()

        for qpart in query_parts:
            prepared = prep(qpart)
            for i in self._tree.query(qpart):
                owner = self._part_owner[i]
                if owner in hit:
                    continue
                try:
                    if prepared.intersects(self._parts[i]):
                        hit.add(owner)
                except (GEOSException, ValueError) as e:
                    logger.debug(f"Intersection test failed for {owner}: {e}")

        return [self._regions[c] for c in sorted(hit)]

    def region_at(self, point: LonLat) -> Optional[Region]:
        """
        Region containing a point (boundary inclusive).

        A point on a boundary shared by several regions resolves to the
        lowest region code.
        """
        if self._tree is None:
            return None
        pt = Point(point)
        matches = set()
        for i in self._tree.query(pt):
            try:
                if self._parts[i].covers(pt):
                    matches.add(self._part_owner[i])
            except (GEOSException, ValueError) as e:
                logger.debug(f"Containment test failed for {self._part_owner[i]}: {e}")
        if not matches:
            return None
        return self._regions[min(matches)]

    # ═══════════════════════════════════════════════════════════════════════
    # 🖼️ OUTER FRAME
    # ═══════════════════════════════════════════════════════════════════════

    def outer_frame(self) -> Optional[BaseGeometry]:
        """
        Exterior boundary of the union of all regions.

        Interior gaps of the union (uncovered enclaves) are not part of the
        outline. Computed once per index.
        """
        if self._tree is None:
            return None
        if self._dataset_outline is None:
            union = unary_union(self._parts)
            rings = [p.exterior for p in polygon_parts(union)]
            self._dataset_outline = MultiLineString([list(r.coords) for r in rings])
        return self._dataset_outline

    def frame_codes(self, config: FillHolesConfig) -> FrozenSet[str]:
        """
        Codes of all regions on the outer edge of the territory.

        - "dataset" mode: the region lies within ``frame_tolerance_deg`` of
          the dataset outline (one STRtree ``dwithin`` query)
        - "bbox" mode: any vertex of the region falls outside the fixed
          frame box (legacy behaviour)

        Cached per config; the index never changes after construction.
        """
        cached = self._frame_codes.get(config)
        if cached is not None:
            return cached

        start = time.perf_counter()
        if config.frame_mode == "bbox":
            codes = frozenset(
                code
                for code, parts in self._region_parts.items()
                if _outside_box(parts, config.frame_bbox)
            )
        else:
            outline = self.outer_frame()
            if outline is None:
                codes = frozenset()
            else:
                hits = self._tree.query(
                    outline, predicate="dwithin", distance=config.frame_tolerance_deg
                )
                codes = frozenset(self._part_owner[i] for i in hits)

        self._frame_codes[config] = codes
        logger.debug(
            f"Outer frame ({config.frame_mode}): {len(codes)} regions "
            f"in {time.perf_counter() - start:.3f}s"
        )
        return codes

    def touches_outer_frame(self, code: str, config: FillHolesConfig) -> bool:
        """Whether a region lies on the outer edge of the territory."""
        return code in self.frame_codes(config)


def _outside_box(parts: Sequence[Polygon], frame_bbox: Tuple[float, float, float, float]) -> bool:
    min_lon, min_lat, max_lon, max_lat = frame_bbox
    for part in parts:
        for ring in [part.exterior, *part.interiors]:
            for lon, lat in ring.coords:
                if lat < min_lat or lat > max_lat or lon < min_lon or lon > max_lon:
                    return True
    return False
