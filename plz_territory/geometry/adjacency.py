#!/usr/bin/env python3
"""
PLZ Territory Engine - Adjacency Resolver

ARCHITECTURAL OVERVIEW:
=======================
Responsibility: Pairwise topological relationships (touches / overlaps)
between regions of one GeometryIndex, computed on demand.

No full adjacency graph is precomputed. Results are memoised per resolver
instance, keyed by the unordered code pair, so a single bulk operation never
evaluates the same pair twice and adjacency stays symmetric.

Adjacency Rule:
- Two regions are adjacent if ANY of their constituent polygons intersect
- A single shared vertex counts as adjacent
- A predicate failure on one pair counts as "not adjacent"

For Navigation: Use VS Code outline (Ctrl+Shift+O)
"""

from typing import Dict, FrozenSet, Iterable, List, Optional, Set, Union
import logging

from shapely.errors import GEOSException
from shapely.geometry.base import BaseGeometry
from shapely.prepared import PreparedGeometry, prep

from plz_territory.geometry.geometry_index import GeometryIndex
from plz_territory.geometry.shape_utils import parts_intersect

logger = logging.getLogger(__name__)


class AdjacencyResolver:
    """
    On-demand adjacency over a GeometryIndex.

    Attributes:
        index: The read-only index the resolver queries
        pair_evaluations: Number of exact predicate evaluations performed
    """

    def __init__(self, index: GeometryIndex) -> None:
        self.index = index
        self._pair_cache: Dict[FrozenSet[str], bool] = {}
        self._neighbour_cache: Dict[str, List[str]] = {}
        self.pair_evaluations = 0

    # ═══════════════════════════════════════════════════════════════════════
    # 🔗 PAIRWISE
    # ═══════════════════════════════════════════════════════════════════════

    def touches(self, code_a: str, code_b: str) -> bool:
        """
        Whether two regions touch or overlap.

        A region is not adjacent to itself; unknown codes are never adjacent.
        """
        if code_a == code_b:
            return False
        key = frozenset((code_a, code_b))
        cached = self._pair_cache.get(key)
        if cached is not None:
            return cached

        parts_a = self.index.parts_of(code_a)
        parts_b = self.index.parts_of(code_b)
        result = bool(parts_a and parts_b) and parts_intersect(parts_a, parts_b)
        self.pair_evaluations += 1
        self._pair_cache[key] = result
        return result

    def is_adjacent(self, code: str, selected: Iterable[str]) -> bool:
        """
        True if ``code`` touches or overlaps ANY region in ``selected``.

        Members of ``selected`` equal to ``code`` are ignored.
        """
        for other in selected:
            if other != code and self.touches(code, other):
                return True
        return False

    def is_adjacent_to_union(
        self, code: str, combined: Optional[Union[BaseGeometry, PreparedGeometry]]
    ) -> bool:
        """
        True if ``code`` intersects a pre-unioned geometry.

        The caller builds the union once per bulk operation; passing a
        prepared geometry avoids re-preparing it for every candidate.
        """
        if combined is None:
            return False
        prepared = combined if isinstance(combined, PreparedGeometry) else prep(combined)
        for part in self.index.parts_of(code):
            try:
                if prepared.intersects(part):
                    return True
            except (GEOSException, ValueError) as e:
                logger.debug(f"Union predicate failed for {code}, treating as disjoint: {e}")
        return False

    # ═══════════════════════════════════════════════════════════════════════
    # 🗺️ NEIGHBOURHOOD
    # ═══════════════════════════════════════════════════════════════════════

    def neighbours(self, code: str) -> List[str]:
        """
        All regions adjacent to ``code``, sorted.

        STRtree candidates are narrowed by the exact pairwise predicate;
        results are memoised.
        """
        cached = self._neighbour_cache.get(code)
        if cached is not None:
            return cached

        region = self.index.get(code)
        if region is None:
            return []

        out = [
            other
            for other in self.index.candidate_codes(region.geometry)
            if other != code and self.touches(code, other)
        ]
        self._neighbour_cache[code] = out
        return out

    def neighbours_within(self, code: str, allowed: Set[str]) -> List[str]:
        """Neighbours of ``code`` restricted to ``allowed``."""
        return [n for n in self.neighbours(code) if n in allowed]

    def clear_cache(self) -> None:
        """Drop memoised results (the index itself never changes)."""
        self._pair_cache.clear()
        self._neighbour_cache.clear()
        self.pair_evaluations = 0
