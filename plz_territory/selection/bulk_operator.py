#!/usr/bin/env python3
"""
PLZ Territory Engine - Bulk Region Operator

ARCHITECTURAL OVERVIEW:
=======================
Responsibility: Derive new selections from the current selection with
set-topology operations over the loaded GeometryIndex. All operations are
pure functions of (index, selected codes); ``apply`` computes the full result
before it mutates the selection, so an interrupted operation never leaves a
partial change behind.

Operations:
1. expand: unselected regions touching the selection
   (empty selection -> every region of the granularity)
2. holes: unselected regions unreachable from the outer frame without
   crossing selected territory (empty selection -> nothing)
3. all: unselected regions intersecting the union of the selection
   (empty selection -> every region of the granularity)

Fill-holes Algorithm:
- Seeds: unselected regions touching the outer frame (see FillHolesConfig)
- Flood fill (BFS) over the adjacency graph restricted to unselected regions
- Every unselected region not visited is a hole
- Pairwise adjacency is evaluated lazily and memoised by the resolver

For Navigation: Use VS Code outline (Ctrl+Shift+O)
"""

from collections import deque
from typing import Callable, Dict, Iterable, List, Optional, Set, Union
import logging
import time

from shapely.ops import unary_union
from shapely.prepared import prep

from plz_territory.config_types import FillHolesConfig
from plz_territory.geometry.adjacency import AdjacencyResolver
from plz_territory.geometry.geometry_index import GeometryIndex
from plz_territory.models import BulkOperation
from plz_territory.selection.selection_set import SelectionSetManager

logger = logging.getLogger(__name__)


class BulkRegionOperator:
    """Expand / fill-holes / intersects-union over one granularity."""

    def __init__(
        self,
        index: GeometryIndex,
        resolver: Optional[AdjacencyResolver] = None,
        fill_holes_config: Optional[FillHolesConfig] = None,
    ) -> None:
        self.index = index
        self.resolver = resolver or AdjacencyResolver(index)
        self.fill_holes_config = fill_holes_config or FillHolesConfig()

        self._operations: Dict[BulkOperation, Callable[[Set[str]], List[str]]] = {
            BulkOperation.EXPAND: self._expand,
            BulkOperation.HOLES: self._fill_holes,
            BulkOperation.ALL: self._intersects_union,
        }

    # ═══════════════════════════════════════════════════════════════════════
    # 🎯 ENTRY POINTS
    # ═══════════════════════════════════════════════════════════════════════

    def run(self, mode: Union[BulkOperation, str], selected: Iterable[str]) -> List[str]:
        """
        Compute the codes an operation would add, without mutating anything.

        Args:
            mode: BulkOperation or its name ("expand" | "holes" | "all")
            selected: Current selection

        Returns:
            Sorted list of codes to add (never includes selected codes).

        Raises:
            ValueError: If ``mode`` names no operation.
        """
        op = mode if isinstance(mode, BulkOperation) else BulkOperation(str(mode).lower())
        if len(self.index) == 0:
            return []

        selected_set = {str(c) for c in selected}
        t_start = time.perf_counter()
        result = self._operations[op](selected_set)
        elapsed_ms = (time.perf_counter() - t_start) * 1000
        logger.info(
            f"✅ {op.value}: {len(result)} regions from a selection of "
            f"{len(selected_set)} ({elapsed_ms:.0f}ms)"
        )
        return result

    def apply(
        self, mode: Union[BulkOperation, str], selection: SelectionSetManager
    ) -> List[str]:
        """
        Run an operation against a selection and add the result to it.

        Returns:
            Codes that were added.
        """
        result = self.run(mode, selection.snapshot())
        if result:
            selection.add(result)
        return result

    def expand(self, selected: Iterable[str]) -> List[str]:
        return self.run(BulkOperation.EXPAND, selected)

    def fill_holes(self, selected: Iterable[str]) -> List[str]:
        return self.run(BulkOperation.HOLES, selected)

    def intersects_union(self, selected: Iterable[str]) -> List[str]:
        return self.run(BulkOperation.ALL, selected)

    # ═══════════════════════════════════════════════════════════════════════
    # 🔧 OPERATIONS
    # ═══════════════════════════════════════════════════════════════════════

    def _expand(self, selected: Set[str]) -> List[str]:
        if not selected:
            return self.index.codes

        found: Set[str] = set()
        for code in selected:
            if code not in self.index:
                continue
            for other in self.resolver.neighbours(code):
                if other not in selected:
                    found.add(other)
        return sorted(found)

    def _intersects_union(self, selected: Set[str]) -> List[str]:
        if not selected:
            return self.index.codes

        parts = [p for code in selected for p in self.index.parts_of(code)]
        if not parts:
            return []
        union = unary_union(parts)
        prepared = prep(union)

        return [
            code
            for code in self.index.candidate_codes(union)
            if code not in selected and self.resolver.is_adjacent_to_union(code, prepared)
        ]

    def _fill_holes(self, selected: Set[str]) -> List[str]:
        if not selected:
            return []

        unselected = {c for c in self.index.codes if c not in selected}
        if not unselected:
            return []

        seeds = sorted(unselected & self.index.frame_codes(self.fill_holes_config))
        logger.debug(
            f"Fill holes: {len(unselected)} unselected, {len(seeds)} on the outer frame "
            f"({self.fill_holes_config.frame_mode} mode)"
        )

        visited: Set[str] = set(seeds)
        queue = deque(seeds)
        while queue:
            code = queue.popleft()
            for other in self.resolver.neighbours_within(code, unselected):
                if other not in visited:
                    visited.add(other)
                    queue.append(other)

        return sorted(unselected - visited)
