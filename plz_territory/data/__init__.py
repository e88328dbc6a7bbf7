"""Region dataset loading and granularity helpers."""

from .granularity_utils import (
    GranularityChange,
    convert_code_to_granularity,
    describe_granularity_change,
    granularity_options,
    is_code_compatible,
    is_granularity_change_compatible,
    migrate_codes,
    normalise_codes,
    would_granularity_change_cause_data_loss,
)
from .region_loader import (
    ensure_dataset,
    load_granularity,
    load_regions,
    normalise_code,
    regions_from_collection,
    regions_from_features,
    regions_from_geodataframe,
    regions_to_geodataframe,
)

__all__ = [
    "GranularityChange",
    "convert_code_to_granularity",
    "describe_granularity_change",
    "granularity_options",
    "is_code_compatible",
    "is_granularity_change_compatible",
    "migrate_codes",
    "normalise_codes",
    "would_granularity_change_cause_data_loss",
    "ensure_dataset",
    "load_granularity",
    "load_regions",
    "normalise_code",
    "regions_from_collection",
    "regions_from_features",
    "regions_from_geodataframe",
    "regions_to_geodataframe",
]
