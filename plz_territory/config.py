#!/usr/bin/env python3
"""
PLZ Territory Engine - Configuration

ARCHITECTURAL OVERVIEW:
=======================
Responsibility: Centralized configuration for the postal-code selection and
topology engine. Single source of truth for geometry tolerances, bulk
operation behaviour, distance search constants, routing service settings,
dataset locations and the HTTP server.

Configuration Sections (ordered by how often they are tuned):
1. geometry: Circle rasterisation and spatial index settings
2. selection: Default selection modes
3. fill_holes: Outer frame detection for hole filling
4. search: Prefilter multiplier, candidate cap, approximation model
5. routing: OSRM table service settings
6. dataset: Region dataset files/URLs per granularity + download cache
7. server: Flask host/port
8. logging: Log directory and level

Navigation Guide:
- Use VS Code outline (Ctrl+Shift+O) to jump between sections
"""

import os
from typing import Dict, Any, TypeVar, Callable, Optional

T = TypeVar("T")


def _env_or_default(
    key: str, default: T, type_fn: Optional[Callable[[str], T]] = None
) -> T:
    """
    Get value from environment variable or use default.

    Args:
        key: Environment variable name (e.g., "PLZ_ROUTING_BASE_URL")
        default: Default value if env var not set
        type_fn: Optional type conversion function (e.g., float, int)

    Returns:
        Value from environment (converted) or default

    Example:
        >>> _env_or_default("PLZ_SEARCH_MAX_CANDIDATES", 1000, int)
        1000  # If env var not set
    """
    val = os.getenv(key)
    if val is not None:
        if type_fn is not None:
            return type_fn(val)
        return val  # type: ignore
    return default


def _env_bool(key: str, default: bool) -> bool:
    """
    Get boolean value from environment variable.

    Treats "true", "1", "yes" as True (case-insensitive).
    Any other value or unset returns default.
    """
    val = os.getenv(key)
    if val is None:
        return default
    return val.lower() in ("true", "1", "yes")


# ═══════════════════════════════════════════════════════════════════════════
# 🔧 ENVIRONMENT VARIABLE OVERRIDES
# ═══════════════════════════════════════════════════════════════════════════
# These settings can be overridden via environment variables:
#
# PLZ_DATA_DIR               - directory holding plz-<n>stellig.geojson files
# PLZ_CACHE_DIR              - directory for downloaded datasets (default: .cache)
# PLZ_ROUTING_ENABLED        - "true" or "false" (default: "true")
# PLZ_ROUTING_BASE_URL       - OSRM base URL (default: public demo server)
# PLZ_ROUTING_TIMEOUT_S      - float, per-batch timeout (default: 10.0)
# PLZ_SEARCH_MAX_CANDIDATES  - int, prefilter cap (default: 1000)
# PLZ_FILL_HOLES_FRAME       - "dataset" or "bbox" (default: "dataset")
# PLZ_SERVER_HOST            - bind host (default: 127.0.0.1)
# PLZ_SERVER_PORT            - bind port (default: 5052)
# PLZ_LOG_LEVEL              - logging level name (default: INFO)
#
# Example usage:
#   export PLZ_DATA_DIR=/srv/plz
#   export PLZ_ROUTING_ENABLED=false
#   python -m plz_territory.server
# ═══════════════════════════════════════════════════════════════════════════

# ═══════════════════════════════════════════════════════════════════════════
# ⚙️ MASTER CONFIGURATION
# ═══════════════════════════════════════════════════════════════════════════

CONFIG: Dict[str, Any] = {
    # ═══════════════════════════════════════════════════════════════════════
    # 📐 GEOMETRY
    # ═══════════════════════════════════════════════════════════════════════
    "geometry": {
        # Vertex count of the polygon used to approximate drawn circles.
        # 64 keeps the chord error below 0.12% of the radius.
        "circle_vertex_count": 64,
        # Minimum number of points of a closed ring (first == last)
        "min_ring_points": 4,
        # Repair invalid polygons with make_valid (otherwise they are dropped)
        "repair_invalid": True,
        # STRtree node capacity
        "strtree_node_capacity": 10,
    },
    # ═══════════════════════════════════════════════════════════════════════
    # 🖱️ SELECTION
    # ═══════════════════════════════════════════════════════════════════════
    "selection": {
        # Mode applied to freehand/lasso/polygon draws when none is given
        "default_shape_mode": "toggle",  # "replace" | "add" | "toggle"
        # Drop codes that are not part of the active granularity's index
        "validate_codes": True,
    },
    # ═══════════════════════════════════════════════════════════════════════
    # 🕳️ FILL HOLES
    # ═══════════════════════════════════════════════════════════════════════
    # frame_mode:
    #   - "dataset": regions touching the outline of the whole dataset are
    #                "outside" (works for any territory)
    #   - "bbox":    legacy behaviour, regions with any vertex outside the
    #                fixed Germany box below are "outside"
    "fill_holes": {
        "frame_mode": _env_or_default("PLZ_FILL_HOLES_FRAME", "dataset"),
        # (min_lon, min_lat, max_lon, max_lat)
        "frame_bbox": (5.7, 47.2, 15.1, 55.1),
        # Snap tolerance (degrees) when testing contact with the outer frame
        "frame_tolerance_deg": 1e-9,
    },
    # ═══════════════════════════════════════════════════════════════════════
    # 📏 DISTANCE SEARCH
    # ═══════════════════════════════════════════════════════════════════════
    "search": {
        # Driving routes are longer than the crow flies: prefilter wider
        "prefilter_multiplier": 1.5,
        # Cap on prefiltered candidates to bound routing cost
        "max_candidates": _env_or_default("PLZ_SEARCH_MAX_CANDIDATES", 1000, int),
        # Road network inflation over great-circle distance (German roads)
        "driving_distance_factor": 1.25,
        # Average speeds (km/h) for the piecewise travel time model
        "city_speed_kmh": 45.0,
        "suburban_speed_kmh": 65.0,
        "rural_speed_kmh": 80.0,
        "highway_speed_kmh": 110.0,
        # Accepted radius range (km or minutes)
        "min_radius": 0.1,
        "max_radius": 200.0,
        # Default method for driving searches: "osrm" | "approximation"
        "default_method": "approximation",
    },
    # ═══════════════════════════════════════════════════════════════════════
    # 🚗 ROUTING (OSRM table service)
    # ═══════════════════════════════════════════════════════════════════════
    "routing": {
        "enabled": _env_bool("PLZ_ROUTING_ENABLED", True),
        "base_url": _env_or_default(
            "PLZ_ROUTING_BASE_URL", "https://router.project-osrm.org"
        ),
        "profile": "driving",
        # Max destinations per request (avoids HTTP 414 on the public server)
        "batch_size": 80,
        # Pause between batches, seconds
        "batch_delay_s": 0.1,
        "timeout_s": _env_or_default("PLZ_ROUTING_TIMEOUT_S", 10.0, float),
        "user_agent": "PLZ-Territory-Engine/1.0",
    },
    # ═══════════════════════════════════════════════════════════════════════
    # 📂 REGION DATASETS
    # ═══════════════════════════════════════════════════════════════════════
    "dataset": {
        "data_dir": _env_or_default("PLZ_DATA_DIR", "data"),
        "cache_dir": _env_or_default("PLZ_CACHE_DIR", ".cache"),
        # Local file name per granularity (inside data_dir)
        "files": {
            "1digit": "plz-1stellig.geojson",
            "2digit": "plz-2stellig.geojson",
            "3digit": "plz-3stellig.geojson",
            "5digit": "plz-5stellig.geojson",
        },
        # Remote fallback when the local file is missing
        "urls": {
            "1digit": "https://download-v2.suche-postleitzahl.org/wgs84/gering2/plz-1stellig/geojson/plz-1stellig.geojson",
            "2digit": "https://download-v2.suche-postleitzahl.org/wgs84/gering2/plz-2stellig/geojson/plz-2stellig.geojson",
            "3digit": "https://download-v2.suche-postleitzahl.org/wgs84/gering2/plz-3stellig/geojson/plz-3stellig.geojson",
            "5digit": "https://download-v2.suche-postleitzahl.org/wgs84/gering2/plz-5stellig/geojson/plz-5stellig.geojson",
        },
        "download_timeout_s": 60.0,
        # Max seconds to wait for another process downloading the same file
        "lock_timeout_s": 300.0,
        # Property keys that may carry the region code, in priority order
        "code_keys": ["code", "plz", "PLZ", "PLZ99", "plz99", "id"],
    },
    # ═══════════════════════════════════════════════════════════════════════
    # 🌐 SERVER
    # ═══════════════════════════════════════════════════════════════════════
    "server": {
        "host": _env_or_default("PLZ_SERVER_HOST", "127.0.0.1"),
        "port": _env_or_default("PLZ_SERVER_PORT", 5052, int),
        "debug": _env_bool("PLZ_SERVER_DEBUG", False),
    },
    # ═══════════════════════════════════════════════════════════════════════
    # 📋 LOGGING
    # ═══════════════════════════════════════════════════════════════════════
    "logging": {
        "log_dir": "logs",
        "level": _env_or_default("PLZ_LOG_LEVEL", "INFO"),
    },
}
