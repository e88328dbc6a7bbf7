#!/usr/bin/env python3
"""
PLZ Territory Engine - Flask Server

ARCHITECTURAL OVERVIEW:
=======================
Responsibility: Thin HTTP surface over the selection and topology engine.
Request parsing and validation live here; all geometry work is delegated
to the session registry and its components.

Key Interactions:
- SessionRegistry: one GeometryIndex per granularity (loaded lazily from
  the configured datasets), one SelectionSession per layer
- InMemoryLayerStore: reference layer storage for explicit saves
- OSRMRoutingClient: live driving distances when routing is enabled

Navigation Guide:
- ROUTES: /api/health, /api/granularities, /api/geoprocess,
  /api/radius-search, /api/driving-radius-search, /api/search-by-boundary,
  /api/select/shape, /api/select/point, /api/layers/<id>/...
- STARTUP: setup_logging, initialize_services, main

For Navigation: Use VS Code outline (Ctrl+Shift+O)
"""

from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional, Tuple
import logging
import sys

from flask import Flask, jsonify, request
from flask_cors import CORS

from plz_territory.config import CONFIG
from plz_territory.config_types import AppConfig, LoggingConfig
from plz_territory.data.granularity_utils import granularity_options
from plz_territory.data.region_loader import load_granularity
from plz_territory.geometry.geometry_index import GeometryIndex
from plz_territory.models import (
    BulkOperation,
    DrawnShape,
    Granularity,
    SearchMethod,
    SearchMetric,
    SelectionMode,
)
from plz_territory.search.routing_client import OSRMRoutingClient
from plz_territory.selection.session import (
    InMemoryLayerStore,
    SelectionSession,
    SessionRegistry,
)

# ═══════════════════════════════════════════════════════════════════════════
# 🔧 CONFIGURATION
# ═══════════════════════════════════════════════════════════════════════════

APP_CONFIG = AppConfig.from_dict(CONFIG)

# ═══════════════════════════════════════════════════════════════════════════
# 🌐 FLASK APPLICATION
# ═══════════════════════════════════════════════════════════════════════════

app = Flask(__name__)
CORS(app)

# Global services - initialized on startup
registry: Optional[SessionRegistry] = None

logger = logging.getLogger(__name__)


class RequestError(ValueError):
    """Invalid request body; answered with HTTP 400."""


def _body() -> Dict[str, Any]:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise RequestError("Request body must be a JSON object")
    return data


def _granularity(data: Dict[str, Any]) -> Granularity:
    value = data.get("granularity")
    if value is None:
        raise RequestError("Missing granularity")
    try:
        return Granularity.from_string(value)
    except ValueError as e:
        raise RequestError(str(e)) from e


def _coordinates(data: Dict[str, Any]) -> Tuple[float, float]:
    """(lon, lat) from ``coordinates`` or ``longitude``/``latitude``."""
    coords = data.get("coordinates")
    try:
        if coords is not None:
            lon, lat = float(coords[0]), float(coords[1])
        else:
            lon, lat = float(data["longitude"]), float(data["latitude"])
    except (KeyError, IndexError, TypeError, ValueError) as e:
        raise RequestError("Missing or invalid coordinates [lon, lat]") from e
    if not (-180 <= lon <= 180 and -90 <= lat <= 90):
        raise RequestError("Coordinates out of range")
    return lon, lat


def _radius(data: Dict[str, Any]) -> float:
    cfg = APP_CONFIG.search
    try:
        radius = float(data["radius"])
    except (KeyError, TypeError, ValueError) as e:
        raise RequestError("Missing or invalid radius") from e
    if not (cfg.min_radius <= radius <= cfg.max_radius):
        raise RequestError(f"Radius must be between {cfg.min_radius} and {cfg.max_radius}")
    return radius


def _enum(enum_cls, value: Any, field_name: str):
    try:
        return enum_cls(str(value).lower())
    except ValueError as e:
        allowed = ", ".join(m.value for m in enum_cls)
        raise RequestError(f"Invalid {field_name} {value!r} (expected one of: {allowed})") from e


def _registry() -> SessionRegistry:
    if registry is None:
        raise RuntimeError("Server not initialized")
    return registry


def _shared_session(granularity: Granularity) -> SelectionSession:
    """Session not bound to any layer, used for stateless queries."""
    return _registry().session(f"__shared__{granularity.value}", granularity)


@app.errorhandler(RequestError)
def handle_request_error(e: RequestError):
    return jsonify({"error": str(e)}), 400


@app.errorhandler(FileNotFoundError)
def handle_missing_dataset(e: FileNotFoundError):
    logger.error(f"❌ Dataset unavailable: {e}")
    return jsonify({"error": "Region dataset unavailable"}), 503


# ═══════════════════════════════════════════════════════════════════════════
# 🛣️ API ROUTES
# ═══════════════════════════════════════════════════════════════════════════


@app.route("/api/health")
def health():
    """Liveness plus the granularities whose index is loaded."""
    if registry is None:
        return jsonify({"status": "not initialized"}), 500
    loaded = [g.value for g in registry.loaded_granularities()]
    return jsonify({"status": "ok", "loadedGranularities": loaded, "sessions": len(registry)})


@app.route("/api/granularities")
def granularities():
    return jsonify(granularity_options())


@app.route("/api/geoprocess", methods=["POST"])
def geoprocess():
    """
    Bulk set-topology operation over a code list.

    Request Body:
        {
            "mode": "expand" | "holes" | "all",
            "granularity": "1digit" | "2digit" | "3digit" | "5digit",
            "selectedCodes": [str, ...]
        }

    Returns:
        {"resultCodes": [...]} - codes to add to the selection.
    """
    data = _body()
    mode = data.get("mode")
    selected = data.get("selectedCodes")
    if not mode or data.get("granularity") is None or not isinstance(selected, list):
        raise RequestError("Missing required parameters")

    operation = _enum(BulkOperation, mode, "mode")
    result = _shared_session(_granularity(data)).bulk.run(operation, [str(c) for c in selected])
    return jsonify({"resultCodes": result})


@app.route("/api/radius-search", methods=["POST"])
def radius_search():
    """
    Straight-line radius search against exact region geometry.

    Request Body: {"coordinates": [lon, lat], "radius": km, "granularity": str}
    """
    data = _body()
    center = _coordinates(data)
    radius = _radius(data)
    granularity = _granularity(data)

    session = _shared_session(granularity)
    result = session.search_engine.radius_search(center, radius)
    payload = result.as_dict()
    payload["granularity"] = granularity.value
    return jsonify(payload)


@app.route("/api/driving-radius-search", methods=["POST"])
def driving_radius_search():
    """
    Driving distance / time search with approximation fallback.

    Request Body:
        {
            "coordinates": [lon, lat],
            "radius": float,          # km (distance) or minutes (time)
            "granularity": str,
            "mode": "distance" | "time",
            "method": "osrm" | "approximation" | "straight"  (optional)
        }
    """
    data = _body()
    center = _coordinates(data)
    radius = _radius(data)
    granularity = _granularity(data)
    metric = _enum(SearchMetric, data.get("mode", "distance"), "mode")
    method = _enum(SearchMethod, data.get("method", APP_CONFIG.search.default_method), "method")

    session = _shared_session(granularity)
    result = session.search_engine.search(center, radius, metric, method)
    payload = result.as_dict()
    payload["granularity"] = granularity.value
    return jsonify(payload)


@app.route("/api/search-by-boundary", methods=["POST"])
def search_by_boundary():
    """
    Codes intersecting a boundary polygon.

    Request Body: {"granularity": str, "boundary": GeoJSON geometry or Feature}
    """
    data = _body()
    granularity = _granularity(data)
    boundary = data.get("boundary")
    if not isinstance(boundary, dict):
        raise RequestError("Missing boundary geometry")

    session = _shared_session(granularity)
    codes = session.search_engine.boundary_search(boundary)
    return jsonify({"granularity": granularity.value, "postalCodes": codes, "count": len(codes)})


@app.route("/api/select/shape", methods=["POST"])
def select_shape():
    """
    Apply a drawn shape to a layer's selection.

    Request Body:
        {
            "layerId": str,
            "granularity": str,
            "shape": {"type": "polygon" | "rectangle" | "circle" | "point", ...},
            "mode": "replace" | "add" | "toggle"  (optional, default toggle)
        }
    """
    data = _body()
    layer_id = str(data.get("layerId") or "")
    if not layer_id:
        raise RequestError("Missing layerId")
    granularity = _granularity(data)
    shape_data = data.get("shape")
    if not isinstance(shape_data, dict):
        raise RequestError("Missing shape")
    try:
        shape = DrawnShape.from_dict(shape_data)
    except (TypeError, ValueError) as e:
        raise RequestError(f"Invalid shape: {e}") from e
    mode = SelectionMode.from_string(data.get("mode", APP_CONFIG.selection.default_shape_mode))

    session = _registry().session(layer_id, granularity)
    intersected = session.select_by_shape(shape, mode)
    return jsonify(
        {"layerId": layer_id, "intersected": intersected, "selection": session.snapshot()}
    )


@app.route("/api/select/point", methods=["POST"])
def select_point():
    """
    Toggle the region under a click.

    Request Body: {"layerId": str, "granularity": str, "coordinates": [lon, lat]}
    """
    data = _body()
    layer_id = str(data.get("layerId") or "")
    if not layer_id:
        raise RequestError("Missing layerId")
    granularity = _granularity(data)
    point = _coordinates(data)

    session = _registry().session(layer_id, granularity)
    toggled = session.select_at_point(point)
    return jsonify({"layerId": layer_id, "toggled": toggled, "selection": session.snapshot()})


@app.route("/api/layers/<layer_id>/selection")
def get_selection(layer_id: str):
    session = _registry().session(layer_id, _granularity(request.args))
    return jsonify(
        {"layerId": layer_id, "granularity": session.granularity.value, "selection": session.snapshot()}
    )


@app.route("/api/layers/<layer_id>/bulk", methods=["POST"])
def layer_bulk(layer_id: str):
    """Run expand / holes / all against a layer and apply the result."""
    data = _body()
    granularity = _granularity(data)
    operation = _enum(BulkOperation, data.get("operation"), "operation")

    session = _registry().session(layer_id, granularity)
    added = session.run_bulk(operation)
    return jsonify({"layerId": layer_id, "added": added, "selection": session.snapshot()})


@app.route("/api/layers/<layer_id>/save", methods=["POST"])
def layer_save(layer_id: str):
    data = _body()
    session = _registry().session(layer_id, _granularity(data))
    result = session.save()
    status = 200 if result.success else 502
    return (
        jsonify(
            {
                "success": result.success,
                "layerId": result.layer_id,
                "count": result.code_count,
                "error": result.error,
            }
        ),
        status,
    )


# ═══════════════════════════════════════════════════════════════════════════
# 🚀 STARTUP
# ═══════════════════════════════════════════════════════════════════════════


def setup_logging(config: Optional[LoggingConfig] = None) -> Path:
    """
    Configure the package logger with a file and a console handler.

    Returns:
        Path of the log file.
    """
    config = config or APP_CONFIG.logging
    log_dir = config.log_path
    log_dir.mkdir(parents=True, exist_ok=True)
    log_path = log_dir / f"server_{datetime.now().strftime('%m%d_%H%M')}.log"

    level = getattr(logging, str(config.level).upper(), logging.INFO)
    pkg_logger = logging.getLogger("plz_territory")
    pkg_logger.setLevel(level)
    pkg_logger.handlers.clear()

    fh = logging.FileHandler(log_path, encoding="utf-8")
    fh.setLevel(level)
    fh.setFormatter(
        logging.Formatter(
            "%(asctime)s | %(levelname)-8s | %(message)s", datefmt="%Y-%m-%d %H:%M:%S"
        )
    )

    ch = logging.StreamHandler(sys.stdout)
    ch.setLevel(level)
    ch.setFormatter(logging.Formatter("%(message)s"))

    pkg_logger.addHandler(fh)
    pkg_logger.addHandler(ch)
    return log_path


def _load_index(granularity: Granularity) -> GeometryIndex:
    regions = load_granularity(granularity, APP_CONFIG.dataset, APP_CONFIG.geometry)
    return GeometryIndex.build(regions, granularity, APP_CONFIG.geometry)


def initialize_services(session_registry: Optional[SessionRegistry] = None) -> SessionRegistry:
    """
    Create the session registry used by all routes.

    Args:
        session_registry: Pre-built registry (tests); by default indexes are
            loaded lazily from the configured datasets.
    """
    global registry

    if session_registry is None:
        routing_client = OSRMRoutingClient(APP_CONFIG.routing) if APP_CONFIG.routing.enabled else None
        session_registry = SessionRegistry(
            _load_index,
            APP_CONFIG,
            layer_store=InMemoryLayerStore(),
            routing_client=routing_client,
        )
        logger.info(
            f"🚀 Services ready (data: {APP_CONFIG.dataset.data_path}, "
            f"routing: {'on' if routing_client else 'off'})"
        )
    registry = session_registry
    return registry


def main() -> None:
    """Main entry point - initialize and start server.

    An optional first argument preloads a granularity ("5digit").
    """
    log_path = setup_logging()
    logger.info(f"📋 Logging to {log_path}")
    initialize_services()

    if len(sys.argv) > 1:
        try:
            index = _registry().index_for(sys.argv[1])
        except (FileNotFoundError, ValueError) as e:
            logger.error(f"❌ Failed to load {sys.argv[1]}: {e}")
            sys.exit(1)
        logger.info(f"✅ Preloaded {index.granularity.value}: {len(index)} regions")

    server = APP_CONFIG.server
    logger.info(f"🌐 Starting server at http://{server.host}:{server.port}")
    app.run(host=server.host, port=server.port, debug=server.debug)


if __name__ == "__main__":
    main()
