#!/usr/bin/env python3
"""
PLZ Territory Engine - Region Dataset Loader

ARCHITECTURAL OVERVIEW:
=======================
Responsibility: Load the static region dataset of one granularity into
immutable Region objects, normalising property-key variants onto a single
canonical ``code`` on the way.

Key Interactions:
- Input: GeoJSON FeatureCollection (local file, cached download or URL),
  or any vector file / GeoDataFrame readable by geopandas
- Output: List[Region] ready for GeometryIndex.build()

Data Quality vs Fatal Errors:
- Feature without a code, malformed coordinates, rings too short:
  logged as warning, feature skipped
- Missing file, failed download, unreadable JSON, or a dataset whose
  features are ALL unusable: raised (FileNotFoundError / ValueError)

Download Cache:
- Remote datasets are stored in dataset.cache_dir
- One filelock per file serialises concurrent downloads across processes
- Lock timeout falls back to an unlocked download into the cache
  via an atomic rename

For Navigation: Use VS Code outline (Ctrl+Shift+O)
"""

import json
import logging
import os
import threading
import time
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence, Union

import filelock
import geopandas as gpd
import pandas as pd
import requests
from shapely.geometry.base import BaseGeometry

from plz_territory.config_types import DatasetConfig, GeometryConfig
from plz_territory.geometry.shape_utils import geometry_from_geojson
from plz_territory.models import Granularity, Region

logger = logging.getLogger(__name__)

WGS84 = "EPSG:4326"
GEOJSON_SUFFIXES = (".geojson", ".json")

# Properties that hold the code itself; not kept as descriptive metadata
_DEFAULT_CODE_KEYS = ("code", "plz", "PLZ", "PLZ99", "plz99", "id")


# ═══════════════════════════════════════════════════════════════════════════
# 🏷️ CODE NORMALISATION
# ═══════════════════════════════════════════════════════════════════════════


def normalise_code(
    properties: Optional[Dict[str, Any]],
    code_keys: Sequence[str] = _DEFAULT_CODE_KEYS,
    feature_id: Any = None,
) -> Optional[str]:
    """
    Canonical region code from a feature's properties.

    Keys are tried in order; the feature-level ``id`` is the last resort.
    Numeric codes are stringified ("1" stays "1", 80331.0 becomes "80331").
    """
    props = properties or {}
    for key in code_keys:
        value = props.get(key)
        if value is None:
            continue
        if isinstance(value, float):
            if value != value:
                continue
            if value.is_integer():
                value = int(value)
        text = str(value).strip()
        if text:
            return text
    if feature_id is not None and str(feature_id).strip():
        return str(feature_id).strip()
    return None


def _descriptive_properties(props: Dict[str, Any], code_keys: Sequence[str]) -> Dict[str, Any]:
    return {k: v for k, v in props.items() if k not in code_keys and k != "geometry"}


# ═══════════════════════════════════════════════════════════════════════════
# 📂 FEATURE PARSING
# ═══════════════════════════════════════════════════════════════════════════


def regions_from_features(
    features: Iterable[Dict[str, Any]],
    granularity: Granularity,
    geometry_config: Optional[GeometryConfig] = None,
    code_keys: Sequence[str] = _DEFAULT_CODE_KEYS,
) -> List[Region]:
    """
    Convert GeoJSON features to Regions.

    Rings are repaired at coordinate level (closed, short rings dropped)
    before shapely sees them. Invalid topology is left for
    GeometryIndex.build() to repair.

    Raises:
        ValueError: If features were given but none is usable.
    """
    geometry_config = geometry_config or GeometryConfig()
    regions: List[Region] = []
    total = 0
    skipped = 0

    for feature in features:
        total += 1
        props = feature.get("properties") or {}
        code = normalise_code(props, code_keys, feature.get("id"))
        if code is None:
            logger.warning(f"⚠️ Feature #{total} has no code property - skipped")
            skipped += 1
            continue

        try:
            geometry = geometry_from_geojson(
                feature.get("geometry"), geometry_config.min_ring_points
            )
        except ValueError as e:
            logger.warning(f"⚠️ Region {code}: malformed geometry ({e}) - skipped")
            skipped += 1
            continue

        if geometry is None or geometry.is_empty:
            logger.warning(f"⚠️ Region {code}: no usable polygon rings - skipped")
            skipped += 1
            continue

        regions.append(
            Region(
                code=code,
                granularity=granularity,
                geometry=geometry,
                properties=_descriptive_properties(props, code_keys),
            )
        )

    if total and not regions:
        raise ValueError(
            f"Dataset for {granularity.value} has {total} features but none is usable"
        )
    if skipped:
        logger.warning(f"⚠️ {skipped}/{total} features skipped for {granularity.value}")
    return regions


def regions_from_geodataframe(
    gdf: gpd.GeoDataFrame,
    granularity: Granularity,
    code_keys: Sequence[str] = _DEFAULT_CODE_KEYS,
) -> List[Region]:
    """
    Convert a GeoDataFrame to Regions, reprojecting to WGS84 lon/lat.

    Raises:
        ValueError: If the frame has rows but none is usable.
    """
    if gdf.crs is None:
        gdf = gdf.set_crs(WGS84)
    elif gdf.crs.to_string() != WGS84:
        gdf = gdf.to_crs(WGS84)

    regions: List[Region] = []
    skipped = 0
    for idx, row in gdf.iterrows():
        # Missing cells (NaN, None, pd.NA) are dropped before code lookup
        props = {
            k: v for k, v in row.items() if k != gdf.geometry.name and pd.notna(v)
        }
        code = normalise_code(props, code_keys)
        geometry: Optional[BaseGeometry] = row[gdf.geometry.name]
        if code is None or geometry is None or geometry.is_empty:
            logger.warning(f"⚠️ Row {idx}: missing code or geometry - skipped")
            skipped += 1
            continue
        regions.append(
            Region(
                code=code,
                granularity=granularity,
                geometry=geometry,
                properties=_descriptive_properties(props, code_keys),
            )
        )

    if len(gdf) and not regions:
        raise ValueError(
            f"Dataset for {granularity.value} has {len(gdf)} rows but none is usable"
        )
    if skipped:
        logger.warning(f"⚠️ {skipped}/{len(gdf)} rows skipped for {granularity.value}")
    return regions


def regions_to_geodataframe(regions: Iterable[Region]) -> gpd.GeoDataFrame:
    """GeoDataFrame (WGS84) with code, granularity and descriptive columns."""
    rows = [
        {**r.properties, "code": r.code, "granularity": r.granularity.value, "geometry": r.geometry}
        for r in regions
    ]
    if not rows:
        return gpd.GeoDataFrame(
            {"code": [], "granularity": []}, geometry=[], crs=WGS84
        )
    return gpd.GeoDataFrame(rows, geometry="geometry", crs=WGS84)


# ═══════════════════════════════════════════════════════════════════════════
# 📥 FILE / URL LOADING
# ═══════════════════════════════════════════════════════════════════════════


def load_regions(
    path: Union[str, Path],
    granularity: Union[Granularity, str],
    geometry_config: Optional[GeometryConfig] = None,
    code_keys: Sequence[str] = _DEFAULT_CODE_KEYS,
) -> List[Region]:
    """
    Load regions from a local file.

    GeoJSON is parsed directly so broken rings can be repaired; any other
    vector format goes through geopandas.

    Raises:
        FileNotFoundError: If the file does not exist.
        ValueError: If the file is unreadable or has no usable features.
    """
    granularity = Granularity.from_string(granularity)
    path = Path(path)
    logger.info(f"📂 Loading {granularity.value} regions: {path}")

    if not path.exists():
        raise FileNotFoundError(f"Region dataset not found: {path}")

    if path.suffix.lower() in GEOJSON_SUFFIXES:
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise ValueError(f"Unreadable GeoJSON {path}: {e}") from e
        regions = regions_from_collection(data, granularity, geometry_config, code_keys)
    else:
        gdf = gpd.read_file(path)
        regions = regions_from_geodataframe(gdf, granularity, code_keys)

    logger.info(f"   ✅ Loaded {len(regions)} regions")
    return regions


def regions_from_collection(
    data: Any,
    granularity: Granularity,
    geometry_config: Optional[GeometryConfig] = None,
    code_keys: Sequence[str] = _DEFAULT_CODE_KEYS,
) -> List[Region]:
    """Regions from a parsed FeatureCollection (or a bare feature list)."""
    if isinstance(data, dict) and data.get("type") == "FeatureCollection":
        features = data.get("features") or []
    elif isinstance(data, list):
        features = data
    else:
        raise ValueError("Expected a GeoJSON FeatureCollection")
    return regions_from_features(features, granularity, geometry_config, code_keys)


def _download(url: str, target: Path, timeout_s: float) -> None:
    """Stream ``url`` to ``target`` via a temporary sibling file."""
    tmp = target.with_name(f"{target.name}.{os.getpid()}-{threading.get_ident()}.part")
    try:
        with requests.get(url, stream=True, timeout=timeout_s) as response:
            response.raise_for_status()
            with open(tmp, "wb") as f:
                for chunk in response.iter_content(chunk_size=1 << 16):
                    f.write(chunk)
        tmp.replace(target)
    finally:
        tmp.unlink(missing_ok=True)


def ensure_dataset(granularity: Union[Granularity, str], config: DatasetConfig) -> Path:
    """
    Local path of the dataset for a granularity, downloading it if needed.

    Lookup order: data_dir file, cache_dir file, download into cache_dir.

    Raises:
        FileNotFoundError: If no local file exists and no URL is configured,
            or the download fails.
    """
    g = Granularity.from_string(granularity)
    file_name = config.files.get(g.value, f"plz-{g.level}stellig.geojson")

    local = config.data_path / file_name
    if local.exists():
        return local

    cached = config.cache_path / file_name
    if cached.exists():
        return cached

    url = config.urls.get(g.value)
    if not url:
        raise FileNotFoundError(f"No dataset file or URL configured for {g.value}: {local}")

    config.cache_path.mkdir(parents=True, exist_ok=True)
    lock = filelock.FileLock(str(cached.with_suffix(".lock")), timeout=config.lock_timeout_s)
    t_start = time.perf_counter()

    try:
        with lock:
            # Another process may have finished the download while we waited
            if cached.exists():
                return cached
            logger.info(f"📥 Downloading {g.value} dataset from {url}")
            _download(url, cached, config.download_timeout_s)
            logger.info(
                f"   💾 Cached {cached.name} ({time.perf_counter() - t_start:.1f}s)"
            )
            return cached
    except filelock.Timeout:
        logger.warning(
            f"⏱️ Lock timeout for {cached.name} after {config.lock_timeout_s}s "
            f"- downloading without the lock"
        )
        # Atomic rename; a concurrent holder of the lock writes the same file
        try:
            _download(url, cached, config.download_timeout_s)
        except requests.RequestException as e:
            raise FileNotFoundError(f"Download of {url} failed: {e}") from e
        return cached
    except requests.RequestException as e:
        raise FileNotFoundError(f"Download of {url} failed: {e}") from e


def load_granularity(
    granularity: Union[Granularity, str],
    dataset_config: Optional[DatasetConfig] = None,
    geometry_config: Optional[GeometryConfig] = None,
) -> List[Region]:
    """Resolve (and if needed download) the dataset of a tier and load it."""
    dataset_config = dataset_config or DatasetConfig()
    path = ensure_dataset(granularity, dataset_config)
    return load_regions(path, granularity, geometry_config, dataset_config.code_keys)
