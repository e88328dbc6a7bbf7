"""Spatial index, adjacency and shape helpers."""

from .adjacency import AdjacencyResolver
from .geometry_index import GeometryIndex
from .shape_utils import (
    circle_polygon,
    clean_polygonal,
    geometry_from_geojson,
    haversine_km,
    parts_intersect,
    shape_to_geometry,
)

__all__ = [
    "AdjacencyResolver",
    "GeometryIndex",
    "circle_polygon",
    "clean_polygonal",
    "geometry_from_geojson",
    "haversine_km",
    "parts_intersect",
    "shape_to_geometry",
]
