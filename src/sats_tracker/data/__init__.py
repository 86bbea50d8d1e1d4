"""Configuration loading."""

from sats_tracker.data.loader import (
    MempoolConfig,
    PriceConfig,
    StorageConfig,
    TrackerConfig,
    load_config,
    load_defaults,
    merge_config,
)

__all__ = [
    "MempoolConfig",
    "PriceConfig",
    "StorageConfig",
    "TrackerConfig",
    "load_config",
    "load_defaults",
    "merge_config",
]
