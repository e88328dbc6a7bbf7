"""
═══════════════════════════════════════════════════════════════════════════════
📋 CONFIGURATION TYPES
═══════════════════════════════════════════════════════════════════════════════

ARCHITECTURAL OVERVIEW
----------------------
Responsibility: Typed, frozen views over the CONFIG dictionary.

Usage:
    from plz_territory.config import CONFIG
    from plz_territory.config_types import AppConfig

    # Create once at application startup
    app_config = AppConfig.from_dict(CONFIG)
    engine = DistanceSearchEngine(index, search_config=app_config.search)

For Navigation: Use VS Code outline (Ctrl+Shift+O)

NAVIGATION GUIDE
----------------
# ═════ 1. GEOMETRY CONFIGURATION
# ═════ 2. SELECTION / FILL-HOLES CONFIGURATION
# ═════ 3. SEARCH + ROUTING CONFIGURATION
# ═════ 4. DATASET CONFIGURATION
# ═════ 5. SERVER + LOGGING CONFIGURATION
# ═════ 6. APP CONFIG (MASTER FACADE)

═══════════════════════════════════════════════════════════════════════════════
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Any, List, Tuple


# ═══════════════════════════════════════════════════════════════════════════════
# 📐 1. GEOMETRY CONFIGURATION
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class GeometryConfig:
    """
    Geometry index and shape rasterisation settings.

    Attributes:
        circle_vertex_count: Vertices of the N-gon approximating a circle.
        min_ring_points: Minimum points of a closed ring (first == last).
        repair_invalid: Repair invalid polygons instead of dropping them.
        strtree_node_capacity: STRtree node capacity.
    """

    circle_vertex_count: int = 64
    min_ring_points: int = 4
    repair_invalid: bool = True
    strtree_node_capacity: int = 10

    def __post_init__(self) -> None:
        if self.circle_vertex_count < 3:
            raise ValueError(
                f"circle_vertex_count must be >= 3, got {self.circle_vertex_count}"
            )

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "GeometryConfig":
        """Create GeometryConfig from CONFIG['geometry'] dictionary."""
        return cls(
            circle_vertex_count=d.get("circle_vertex_count", 64),
            min_ring_points=d.get("min_ring_points", 4),
            repair_invalid=d.get("repair_invalid", True),
            strtree_node_capacity=d.get("strtree_node_capacity", 10),
        )


# ═══════════════════════════════════════════════════════════════════════════════
# 🖱️ 2. SELECTION / FILL-HOLES CONFIGURATION
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class SelectionConfig:
    """Selection defaults."""

    default_shape_mode: str = "toggle"
    validate_codes: bool = True

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "SelectionConfig":
        """Create SelectionConfig from CONFIG['selection'] dictionary."""
        return cls(
            default_shape_mode=d.get("default_shape_mode", "toggle"),
            validate_codes=d.get("validate_codes", True),
        )


@dataclass(frozen=True)
class FillHolesConfig:
    """
    Outer frame detection for the fill-holes operation.

    Attributes:
        frame_mode: "dataset" (outline of all regions) or "bbox" (fixed box).
        frame_bbox: (min_lon, min_lat, max_lon, max_lat) used in "bbox" mode.
        frame_tolerance_deg: Snap tolerance when testing frame contact.
    """

    frame_mode: str = "dataset"
    frame_bbox: Tuple[float, float, float, float] = (5.7, 47.2, 15.1, 55.1)
    frame_tolerance_deg: float = 1e-9

    def __post_init__(self) -> None:
        if self.frame_mode not in ("dataset", "bbox"):
            raise ValueError(
                f"frame_mode must be 'dataset' or 'bbox', got '{self.frame_mode}'"
            )

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "FillHolesConfig":
        """Create FillHolesConfig from CONFIG['fill_holes'] dictionary."""
        return cls(
            frame_mode=d.get("frame_mode", "dataset"),
            frame_bbox=tuple(d.get("frame_bbox", (5.7, 47.2, 15.1, 55.1))),
            frame_tolerance_deg=d.get("frame_tolerance_deg", 1e-9),
        )


# ═══════════════════════════════════════════════════════════════════════════════
# 📏 3. SEARCH + ROUTING CONFIGURATION
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class SearchConfig:
    """
    Distance search and travel-time approximation settings.

    Attributes:
        prefilter_multiplier: Radius inflation for the bbox prefilter.
        max_candidates: Cap on prefiltered candidates.
        driving_distance_factor: Road network inflation over great-circle.
        city_speed_kmh: Average city speed.
        suburban_speed_kmh: Average suburban speed.
        rural_speed_kmh: Average rural road speed.
        highway_speed_kmh: Average highway speed.
        min_radius: Smallest accepted radius (km or minutes).
        max_radius: Largest accepted radius (km or minutes).
        default_method: "osrm" or "approximation".
    """

    prefilter_multiplier: float = 1.5
    max_candidates: int = 1000
    driving_distance_factor: float = 1.25
    city_speed_kmh: float = 45.0
    suburban_speed_kmh: float = 65.0
    rural_speed_kmh: float = 80.0
    highway_speed_kmh: float = 110.0
    min_radius: float = 0.1
    max_radius: float = 200.0
    default_method: str = "approximation"

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "SearchConfig":
        """Create SearchConfig from CONFIG['search'] dictionary."""
        return cls(
            prefilter_multiplier=d.get("prefilter_multiplier", 1.5),
            max_candidates=d.get("max_candidates", 1000),
            driving_distance_factor=d.get("driving_distance_factor", 1.25),
            city_speed_kmh=d.get("city_speed_kmh", 45.0),
            suburban_speed_kmh=d.get("suburban_speed_kmh", 65.0),
            rural_speed_kmh=d.get("rural_speed_kmh", 80.0),
            highway_speed_kmh=d.get("highway_speed_kmh", 110.0),
            min_radius=d.get("min_radius", 0.1),
            max_radius=d.get("max_radius", 200.0),
            default_method=d.get("default_method", "approximation"),
        )


@dataclass(frozen=True)
class RoutingConfig:
    """
    OSRM table service settings.

    Attributes:
        enabled: Whether a live routing client is created at all.
        base_url: OSRM base URL.
        profile: OSRM profile segment ("driving").
        batch_size: Destinations per table request.
        batch_delay_s: Pause between consecutive batches.
        timeout_s: Per-request timeout.
        user_agent: User-Agent header sent to the service.
    """

    enabled: bool = True
    base_url: str = "https://router.project-osrm.org"
    profile: str = "driving"
    batch_size: int = 80
    batch_delay_s: float = 0.1
    timeout_s: float = 10.0
    user_agent: str = "PLZ-Territory-Engine/1.0"

    def __post_init__(self) -> None:
        if self.batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {self.batch_size}")

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "RoutingConfig":
        """Create RoutingConfig from CONFIG['routing'] dictionary."""
        return cls(
            enabled=d.get("enabled", True),
            base_url=d.get("base_url", "https://router.project-osrm.org"),
            profile=d.get("profile", "driving"),
            batch_size=d.get("batch_size", 80),
            batch_delay_s=d.get("batch_delay_s", 0.1),
            timeout_s=d.get("timeout_s", 10.0),
            user_agent=d.get("user_agent", "PLZ-Territory-Engine/1.0"),
        )


# ═══════════════════════════════════════════════════════════════════════════════
# 📂 4. DATASET CONFIGURATION
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class DatasetConfig:
    """
    Region dataset locations.

    Attributes:
        data_dir: Directory with local GeoJSON files.
        cache_dir: Directory for downloaded GeoJSON files.
        files: Granularity value -> local file name.
        urls: Granularity value -> remote URL.
        download_timeout_s: HTTP timeout for dataset downloads.
        lock_timeout_s: Max wait for a concurrent download of the same file.
        code_keys: Property keys that may carry the region code.
    """

    data_dir: str = "data"
    cache_dir: str = ".cache"
    files: Dict[str, str] = field(default_factory=dict)
    urls: Dict[str, str] = field(default_factory=dict)
    download_timeout_s: float = 60.0
    lock_timeout_s: float = 300.0
    code_keys: List[str] = field(
        default_factory=lambda: ["code", "plz", "PLZ", "PLZ99", "plz99", "id"]
    )

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "DatasetConfig":
        """Create DatasetConfig from CONFIG['dataset'] dictionary."""
        return cls(
            data_dir=d.get("data_dir", "data"),
            cache_dir=d.get("cache_dir", ".cache"),
            files=dict(d.get("files", {})),
            urls=dict(d.get("urls", {})),
            download_timeout_s=d.get("download_timeout_s", 60.0),
            lock_timeout_s=d.get("lock_timeout_s", 300.0),
            code_keys=list(
                d.get("code_keys", ["code", "plz", "PLZ", "PLZ99", "plz99", "id"])
            ),
        )

    @property
    def data_path(self) -> Path:
        """Get data directory as Path object."""
        return Path(self.data_dir)

    @property
    def cache_path(self) -> Path:
        """Get cache directory as Path object."""
        return Path(self.cache_dir)


# ═══════════════════════════════════════════════════════════════════════════════
# 🌐 5. SERVER + LOGGING CONFIGURATION
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class ServerConfig:
    """Flask server bind settings."""

    host: str = "127.0.0.1"
    port: int = 5052
    debug: bool = False

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "ServerConfig":
        """Create ServerConfig from CONFIG['server'] dictionary."""
        return cls(
            host=d.get("host", "127.0.0.1"),
            port=d.get("port", 5052),
            debug=d.get("debug", False),
        )


@dataclass(frozen=True)
class LoggingConfig:
    """Log directory and level."""

    log_dir: str = "logs"
    level: str = "INFO"

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "LoggingConfig":
        """Create LoggingConfig from CONFIG['logging'] dictionary."""
        return cls(log_dir=d.get("log_dir", "logs"), level=d.get("level", "INFO"))

    @property
    def log_path(self) -> Path:
        """Get log directory as Path object."""
        return Path(self.log_dir)


# ═══════════════════════════════════════════════════════════════════════════════
# 🎯 6. APP CONFIG (MASTER FACADE)
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class AppConfig:
    """
    Master configuration object for the territory engine.

    Create it once at application startup using AppConfig.from_dict(CONFIG)
    and pass the sub-configs to the components that need them.

    Example:
        from plz_territory.config import CONFIG
        from plz_territory.config_types import AppConfig

        app_config = AppConfig.from_dict(CONFIG)
        index = GeometryIndex.build(regions, app_config.geometry)
    """

    geometry: GeometryConfig = field(default_factory=GeometryConfig)
    selection: SelectionConfig = field(default_factory=SelectionConfig)
    fill_holes: FillHolesConfig = field(default_factory=FillHolesConfig)
    search: SearchConfig = field(default_factory=SearchConfig)
    routing: RoutingConfig = field(default_factory=RoutingConfig)
    dataset: DatasetConfig = field(default_factory=DatasetConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def from_dict(cls, config_dict: Dict[str, Any]) -> "AppConfig":
        """
        Create AppConfig from the CONFIG dictionary.

        Args:
            config_dict: The CONFIG dictionary from config.py.

        Returns:
            AppConfig instance with all settings populated.
        """
        return cls(
            geometry=GeometryConfig.from_dict(config_dict.get("geometry", {})),
            selection=SelectionConfig.from_dict(config_dict.get("selection", {})),
            fill_holes=FillHolesConfig.from_dict(config_dict.get("fill_holes", {})),
            search=SearchConfig.from_dict(config_dict.get("search", {})),
            routing=RoutingConfig.from_dict(config_dict.get("routing", {})),
            dataset=DatasetConfig.from_dict(config_dict.get("dataset", {})),
            server=ServerConfig.from_dict(config_dict.get("server", {})),
            logging=LoggingConfig.from_dict(config_dict.get("logging", {})),
        )
