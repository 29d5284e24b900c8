"""
Balance Sources - Configuration.

============================================================
SOURCE CONFIGURATION
============================================================

One SourceConfig describes one source instance:
- protocol identifier (registry key)
- ledger endpoint
- ordered asset table
- paging and concurrency tunables

Configuration can be loaded from:
- A plain dictionary
- A YAML config file
- Environment variables (overrides)

Missing required fields raise ConfigurationError at load time.

============================================================
"""

import logging
import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Optional, Union

import yaml

from balance_sources.exceptions import ConfigurationError


logger = logging.getLogger(__name__)


DEFAULT_CONCURRENCY_LIMIT = 3
DEFAULT_PAGINATION_LIMIT = 30
DEFAULT_REQUEST_TIMEOUT = 30.0

# Legacy spellings found in older config files
_ALIASES = {
    "concurrencyLimit": "concurrency_limit",
    "paginationLimit": "pagination_limit",
    "requestTimeout": "request_timeout",
    "rpc": "endpoint",
    "source": "source_name",
}

# Environment variables and the fields they override
_ENV_VARS = {
    "endpoint": "BALANCE_SOURCES_ENDPOINT",
    "concurrency_limit": "BALANCE_SOURCES_CONCURRENCY_LIMIT",
    "pagination_limit": "BALANCE_SOURCES_PAGINATION_LIMIT",
    "request_timeout": "BALANCE_SOURCES_REQUEST_TIMEOUT",
}

_TRUE_STRINGS = {"true", "yes", "on", "1"}
_FALSE_STRINGS = {"false", "no", "off", "0"}


# =============================================================
# ASSET DESCRIPTOR
# =============================================================


@dataclass(frozen=True)
class AssetDescriptor:
    """
    One trackable position type within a source.

    pool_contract is the pair/pool contract for liquidity sources and
    None for sources that read balances directly.
    """
    asset_id: str
    denom: str
    pool_contract: Optional[str] = None

    @classmethod
    def from_dict(cls, asset_id: str, data: dict[str, Any]) -> "AssetDescriptor":
        """Build from a config table entry."""
        if not isinstance(data, dict):
            raise ConfigurationError(
                f"Asset '{asset_id}' must be a mapping",
                config_key=f"assets.{asset_id}",
            )
        denom = data.get("denom")
        if not denom:
            raise ConfigurationError(
                f"No denom configured for asset '{asset_id}'",
                config_key=f"assets.{asset_id}.denom",
            )
        pool_contract = data.get("pool_contract") or data.get("pair_contract")
        return cls(asset_id=asset_id, denom=denom, pool_contract=pool_contract)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "asset_id": self.asset_id,
            "denom": self.denom,
            "pool_contract": self.pool_contract,
        }


# =============================================================
# SOURCE CONFIG
# =============================================================


@dataclass
class SourceConfig:
    """Configuration for a single balance source."""

    protocol: str
    endpoint: str
    assets: dict[str, AssetDescriptor]
    source_name: str = ""

    concurrency_limit: int = DEFAULT_CONCURRENCY_LIMIT
    """Maximum per-holder reads in flight."""

    pagination_limit: int = DEFAULT_PAGINATION_LIMIT
    """Holders requested per page."""

    request_timeout: float = DEFAULT_REQUEST_TIMEOUT
    """Per-request timeout in seconds."""

    tolerate_holder_failures: bool = True
    """Drop holders whose read fails instead of aborting the pass."""

    deduplicate_holders: bool = False
    """Skip addresses already seen for the current asset."""

    params: dict[str, Any] = field(default_factory=dict)
    """Variant-specific settings (e.g. generator_contract)."""

    def __post_init__(self) -> None:
        if not self.source_name:
            self.source_name = self.protocol
        self.validate()

    def validate(self) -> None:
        """Validate values; raises ConfigurationError."""
        if not self.protocol:
            raise ConfigurationError("No protocol configured", config_key="protocol")
        if not self.endpoint:
            raise ConfigurationError(
                "No endpoint configured", self.source_name, config_key="endpoint"
            )
        if not self.assets:
            raise ConfigurationError(
                "No assets configured in params", self.source_name, config_key="assets"
            )
        if self.concurrency_limit < 1:
            raise ConfigurationError(
                "concurrency_limit must be at least 1",
                self.source_name,
                config_key="concurrency_limit",
            )
        if self.pagination_limit < 1:
            raise ConfigurationError(
                "pagination_limit must be at least 1",
                self.source_name,
                config_key="pagination_limit",
            )
        if self.request_timeout <= 0:
            raise ConfigurationError(
                "request_timeout must be positive",
                self.source_name,
                config_key="request_timeout",
            )

    @classmethod
    def from_dict(cls, data: dict[str, Any], env: bool = False) -> "SourceConfig":
        """
        Create from a dictionary (e.g. one entry of a YAML file).

        With env=True, BALANCE_SOURCES_* variables are merged in before
        validation, so they can supply values the dictionary lacks.
        """
        if not isinstance(data, dict):
            raise ConfigurationError("Source config must be a mapping")
        data = {_ALIASES.get(key, key): value for key, value in data.items()}
        if env:
            data.update(_env_values())

        protocol = data.get("protocol")
        if not protocol:
            raise ConfigurationError("No protocol configured", config_key="protocol")
        source_name = data.get("source_name") or protocol

        raw_assets = data.get("assets")
        if not raw_assets:
            raise ConfigurationError(
                "No assets configured in params", source_name, config_key="assets"
            )
        if not isinstance(raw_assets, dict):
            raise ConfigurationError(
                "assets must be a mapping of asset id to descriptor",
                source_name,
                config_key="assets",
            )
        assets = {
            asset_id: AssetDescriptor.from_dict(asset_id, asset)
            for asset_id, asset in raw_assets.items()
        }

        known = {
            "protocol", "endpoint", "assets", "source_name", "concurrency_limit",
            "pagination_limit", "request_timeout", "tolerate_holder_failures",
            "deduplicate_holders", "params", "multipliers",
        }
        params = dict(data.get("params") or {})
        params.update({k: v for k, v in data.items() if k not in known})

        return cls(
            protocol=protocol,
            endpoint=data.get("endpoint", ""),
            assets=assets,
            source_name=source_name,
            concurrency_limit=_as_int(
                data.get("concurrency_limit", DEFAULT_CONCURRENCY_LIMIT),
                "concurrency_limit",
                source_name,
            ),
            pagination_limit=_as_int(
                data.get("pagination_limit", DEFAULT_PAGINATION_LIMIT),
                "pagination_limit",
                source_name,
            ),
            request_timeout=_as_float(
                data.get("request_timeout", DEFAULT_REQUEST_TIMEOUT),
                "request_timeout",
                source_name,
            ),
            tolerate_holder_failures=_as_bool(
                data.get("tolerate_holder_failures", True),
                "tolerate_holder_failures",
                source_name,
            ),
            deduplicate_holders=_as_bool(
                data.get("deduplicate_holders", False),
                "deduplicate_holders",
                source_name,
            ),
            params=params,
        )

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> "SourceConfig":
        """Load configuration from YAML file."""
        data = load_yaml(path)
        source = data.get("source", data)
        return cls.from_dict(source)

    def with_env_overrides(self) -> "SourceConfig":
        """Return a copy with BALANCE_SOURCES_* environment overrides applied."""
        overrides: dict[str, Any] = _env_values()
        for key in ("concurrency_limit", "pagination_limit"):
            if key in overrides:
                overrides[key] = _as_int(overrides[key], _ENV_VARS[key], self.source_name)
        if "request_timeout" in overrides:
            overrides["request_timeout"] = _as_float(
                overrides["request_timeout"],
                _ENV_VARS["request_timeout"],
                self.source_name,
            )
        if overrides:
            logger.info(f"[{self.source_name}] Applying env overrides: {sorted(overrides)}")
        return replace(self, **overrides)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "protocol": self.protocol,
            "endpoint": self.endpoint,
            "source_name": self.source_name,
            "assets": {k: v.to_dict() for k, v in self.assets.items()},
            "concurrency_limit": self.concurrency_limit,
            "pagination_limit": self.pagination_limit,
            "request_timeout": self.request_timeout,
            "tolerate_holder_failures": self.tolerate_holder_failures,
            "deduplicate_holders": self.deduplicate_holders,
            "params": self.params,
        }


# =============================================================
# HELPERS
# =============================================================


def load_yaml(path: Union[str, Path]) -> dict[str, Any]:
    """Read a YAML mapping; raises ConfigurationError on any problem."""
    path = Path(path)
    try:
        with open(path, "r") as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        raise ConfigurationError(
            f"Failed to load YAML config from {path}",
            config_key=str(path),
            original_error=e,
        ) from e
    if not isinstance(data, dict):
        raise ConfigurationError(
            f"Config file {path} must contain a mapping",
            config_key=str(path),
        )
    return data


def _env_values() -> dict[str, str]:
    """Non-empty BALANCE_SOURCES_* values keyed by field name."""
    values = {}
    for key, var in _ENV_VARS.items():
        value = os.getenv(var)
        if value:
            values[key] = value
    return values


def _as_bool(value: Any, key: str, source_name: Optional[str]) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in _TRUE_STRINGS:
            return True
        if lowered in _FALSE_STRINGS:
            return False
    raise ConfigurationError(
        f"{key} must be a boolean, got {value!r}",
        source_name,
        config_key=key,
    )


def _as_int(value: Any, key: str, source_name: Optional[str]) -> int:
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(
            f"{key} must be an integer, got {value!r}",
            source_name,
            config_key=key,
            original_error=e,
        ) from e


def _as_float(value: Any, key: str, source_name: Optional[str]) -> float:
    try:
        return float(value)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(
            f"{key} must be a number, got {value!r}",
            source_name,
            config_key=key,
            original_error=e,
        ) from e
