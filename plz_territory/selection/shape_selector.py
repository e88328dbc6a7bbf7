#!/usr/bin/env python3
"""
PLZ Territory Engine - Shape Selector

ARCHITECTURAL OVERVIEW:
=======================
Responsibility: Resolve a user-drawn shape into region codes and apply them
to the Selection Set Manager.

Key Interactions:
- Input: DrawnShape (polygon / rectangle / circle / point) or a ready
  shapely geometry
- Lookup: GeometryIndex.regions_intersecting (exact, decomposed polygons);
  points go through GeometryIndex.region_at and hit at most one region
- Output: SelectionSetManager mutation per SelectionMode

Modes:
- REPLACE: selection becomes exactly the intersected regions
- ADD: intersected regions are added
- TOGGLE: each intersected region is flipped individually (lasso default)

Degenerate shapes (fewer than 3 distinct vertices, non-positive circle
radius) resolve to no regions and leave the selection unchanged.

For Navigation: Use VS Code outline (Ctrl+Shift+O)
"""

from typing import List, Optional, Union
import logging

from shapely.geometry.base import BaseGeometry

from plz_territory.config_types import GeometryConfig, SelectionConfig
from plz_territory.geometry.geometry_index import GeometryIndex
from plz_territory.geometry.shape_utils import shape_to_geometry
from plz_territory.models import DrawnShape, LonLat, SelectionMode
from plz_territory.selection.selection_set import SelectionSetManager

logger = logging.getLogger(__name__)

ShapeInput = Union[DrawnShape, BaseGeometry]


class ShapeSelector:
    """Applies drawn shapes and clicks to a selection."""

    def __init__(
        self,
        index: GeometryIndex,
        selection: SelectionSetManager,
        geometry_config: Optional[GeometryConfig] = None,
        selection_config: Optional[SelectionConfig] = None,
    ) -> None:
        self.index = index
        self.selection = selection
        self.geometry_config = geometry_config or GeometryConfig()
        self.selection_config = selection_config or SelectionConfig()

    def _to_geometry(self, shape: ShapeInput) -> Optional[BaseGeometry]:
        if isinstance(shape, DrawnShape):
            geometry = shape_to_geometry(shape, self.geometry_config.circle_vertex_count)
            if geometry is None:
                logger.debug(f"Degenerate {shape.kind.value} shape, nothing selected")
            return geometry
        if shape is None or shape.is_empty:
            return None
        return shape

    def _codes_for(self, geometry: Optional[BaseGeometry]) -> List[str]:
        if geometry is None:
            return []
        # A point picks one region, like a click
        if geometry.geom_type == "Point":
            region = self.index.region_at((geometry.x, geometry.y))
            return [region.code] if region is not None else []
        return [r.code for r in self.index.regions_intersecting(geometry)]

    def resolve(self, shape: ShapeInput) -> List[str]:
        """
        Codes of all regions intersecting ``shape``, sorted, without
        touching the selection.

        A point resolves to at most one region (lowest code on a shared
        boundary).
        """
        return self._codes_for(self._to_geometry(shape))

    def select_by_shape(
        self,
        shape: ShapeInput,
        mode: Optional[Union[SelectionMode, str]] = None,
    ) -> List[str]:
        """
        Resolve ``shape`` and apply the result to the selection.

        Args:
            shape: Drawn shape or shapely geometry
            mode: SelectionMode or its string value; defaults to the
                configured default (TOGGLE)

        Returns:
            Codes intersected by the shape, sorted.
        """
        if mode is None:
            mode = self.selection_config.default_shape_mode
        if not isinstance(mode, SelectionMode):
            mode = SelectionMode.from_string(mode)

        codes = self._codes_for(self._to_geometry(shape))

        if mode is SelectionMode.REPLACE:
            self.selection.replace(codes)
        elif not codes:
            return codes
        elif mode is SelectionMode.ADD:
            self.selection.add(codes)
        else:
            self.selection.toggle_many(codes)

        logger.debug(f"Shape selection ({mode.value}): {len(codes)} regions")
        return codes

    def select_at_point(self, point: LonLat) -> Optional[str]:
        """
        Toggle the region under a click.

        On a boundary shared by several regions the lowest code is used.

        Returns:
            The toggled code, or None if the point hits no region.
        """
        shape = DrawnShape.point(point[0], point[1])
        if shape_to_geometry(shape) is None:
            return None
        region = self.index.region_at(shape.center)
        if region is None:
            return None
        self.selection.toggle(region.code)
        return region.code
