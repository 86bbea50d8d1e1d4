"""Configuration loader: packaged YAML defaults merged with an optional user file."""

import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, HttpUrl

CONFIG_ENV_VAR = "SATS_TRACKER_CONFIG"
HOME_ENV_VAR = "SATS_TRACKER_HOME"


class PriceConfig(BaseModel):
    """Spot price feed settings."""

    url: HttpUrl
    asset_id: str = "bitcoin"
    currency: str = "usd"


class MempoolConfig(BaseModel):
    """Ledger and fee service settings."""

    api_url: HttpUrl
    explorer_url: HttpUrl


class StorageConfig(BaseModel):
    """Where persisted state lives."""

    directory: Path


class TrackerConfig(BaseModel):
    """
    Complete tracker configuration.

    Attributes
    ----------
    price : PriceConfig
        Spot price feed
    mempool : MempoolConfig
        Ledger, fee and explorer endpoints
    refresh_interval_seconds : float
        Seconds between periodic refresh cycles
    http_timeout_seconds : float
        Per-request timeout; a timed-out request counts as a failed fetch
    storage : StorageConfig
        Persisted state location

    """

    price: PriceConfig
    mempool: MempoolConfig
    refresh_interval_seconds: float = Field(default=60, gt=0)
    http_timeout_seconds: float = Field(default=30, gt=0)
    storage: StorageConfig

    def explorer_link(self, address: str) -> str:
        """Block explorer page for ``address``."""
        return f"{str(self.mempool.explorer_url).rstrip('/')}/{address}"


def load_defaults() -> dict[str, Any]:
    """
    Load the packaged ``defaults.yaml``.

    Returns
    -------
    dict[str, Any]
        Raw default configuration

    """
    path = Path(__file__).parent / "defaults.yaml"
    with open(path, encoding="utf-8") as f:
        return yaml.safe_load(f)


def merge_config(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge ``override`` into a copy of ``base``."""
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = merge_config(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_config(path: Path | None = None) -> TrackerConfig:
    """
    Build the effective configuration.

    Parameters
    ----------
    path : Path | None
        User YAML file. Falls back to ``$SATS_TRACKER_CONFIG`` when None.

    Returns
    -------
    TrackerConfig
        Validated configuration

    Raises
    ------
    FileNotFoundError
        If an explicitly named config file does not exist
    ValueError
        If the config file is not a YAML mapping
    pydantic.ValidationError
        If the merged configuration is invalid

    """
    raw = load_defaults()

    if path is None and os.environ.get(CONFIG_ENV_VAR):
        path = Path(os.environ[CONFIG_ENV_VAR])
    if path is not None:
        with open(Path(path).expanduser(), encoding="utf-8") as f:
            user = yaml.safe_load(f) or {}
        if not isinstance(user, dict):
            msg = f"Config file {path} must contain a mapping"
            raise ValueError(msg)
        raw = merge_config(raw, user)

    if os.environ.get(HOME_ENV_VAR):
        raw = merge_config(raw, {"storage": {"directory": os.environ[HOME_ENV_VAR]}})

    config = TrackerConfig.model_validate(raw)
    config.storage.directory = config.storage.directory.expanduser()
    return config
