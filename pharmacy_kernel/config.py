"""
Engine Configuration Schema.

Defines the policy constants of the inventory engine with their standard
defaults. The rules themselves are fixed; only these values may be tuned.
Values can be supplied directly or loaded from a YAML file:

    config = load_config(Path("pharmacy.yaml"))

    # pharmacy.yaml
    default_order_quantity: 150
    expected_delivery_days: 5
    receipt_expiry_bands:
      - [7, critical]
      - [30, high]
      - [90, medium]
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Self

import yaml

from pharmacy_kernel.logging_config import get_logger

logger = get_logger("config")


VALID_SEVERITIES = ("low", "medium", "high", "critical")

# (max days until expiry, severity); first band that fits wins
ExpiryBands = tuple[tuple[int, str], ...]

DEFAULT_RECEIPT_EXPIRY_BANDS: ExpiryBands = ((7, "critical"), (30, "high"), (90, "medium"))
DEFAULT_SCAN_EXPIRY_BANDS: ExpiryBands = ((7, "high"), (30, "medium"))


def _validate_bands(name: str, bands: ExpiryBands) -> None:
    previous = None
    for max_days, severity in bands:
        if severity not in VALID_SEVERITIES:
            raise ValueError(f"{name}: severity must be one of {VALID_SEVERITIES}, got '{severity}'")
        if previous is not None and max_days <= previous:
            raise ValueError(f"{name}: band limits must be strictly increasing")
        previous = max_days


@dataclass(frozen=True)
class EngineConfig:
    """
    Policy constants for the inventory engine.

    Field defaults match the standard dispensing rules:

        config = EngineConfig(default_order_quantity=250)
    """

    # Procurement
    default_order_quantity: int = 100
    expected_delivery_days: int = 7
    order_number_prefix: str = "PO"

    # Reorder severity: remaining <= reorder_point // divisor is "high"
    # and triggers an automatic purchase order
    reorder_critical_divisor: int = 2

    # Expiry alert bands
    receipt_expiry_bands: ExpiryBands = DEFAULT_RECEIPT_EXPIRY_BANDS
    scan_expiry_bands: ExpiryBands = DEFAULT_SCAN_EXPIRY_BANDS
    scan_default_severity: str = "low"

    # Stock status projection
    critical_expiry_days: int = 7
    near_expiry_days: int = 30
    rollup_window_days: int = 30

    # Transaction boundary
    max_transaction_retries: int = 3
    retry_backoff_seconds: float = 0.05

    extra: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if self.default_order_quantity <= 0:
            raise ValueError("default_order_quantity must be positive")
        if self.expected_delivery_days < 0:
            raise ValueError("expected_delivery_days cannot be negative")
        if self.reorder_critical_divisor <= 0:
            raise ValueError("reorder_critical_divisor must be positive")
        if self.max_transaction_retries < 1:
            raise ValueError("max_transaction_retries must be at least 1")
        if self.retry_backoff_seconds < 0:
            raise ValueError("retry_backoff_seconds cannot be negative")
        if self.scan_default_severity not in VALID_SEVERITIES:
            raise ValueError(
                f"scan_default_severity must be one of {VALID_SEVERITIES}, "
                f"got '{self.scan_default_severity}'"
            )
        if not 0 <= self.critical_expiry_days <= self.near_expiry_days:
            raise ValueError("critical_expiry_days must be between 0 and near_expiry_days")
        _validate_bands("receipt_expiry_bands", self.receipt_expiry_bands)
        _validate_bands("scan_expiry_bands", self.scan_expiry_bands)

        logger.debug(
            "engine_config_initialized",
            extra={
                "default_order_quantity": self.default_order_quantity,
                "expected_delivery_days": self.expected_delivery_days,
                "reorder_critical_divisor": self.reorder_critical_divisor,
                "max_transaction_retries": self.max_transaction_retries,
            },
        )

    @classmethod
    def with_defaults(cls) -> Self:
        """Create config with the standard policy values."""
        return cls()

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Self:
        """
        Build a config from a plain mapping (e.g. parsed YAML).

        Unknown keys are kept in ``extra`` rather than rejected so that
        collaborators can share one settings file.
        """
        known = {f.name for f in fields(cls)} - {"extra"}
        kwargs: dict[str, Any] = {}
        extra: dict[str, Any] = {}
        for key, value in data.items():
            if key in known:
                kwargs[key] = value
            else:
                extra[key] = value
        for band_key in ("receipt_expiry_bands", "scan_expiry_bands"):
            if band_key in kwargs:
                kwargs[band_key] = tuple(
                    (int(max_days), str(severity)) for max_days, severity in kwargs[band_key]
                )
        return cls(**kwargs, extra=extra)


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def load_config(path: Path | None = None) -> EngineConfig:
    """Load engine configuration from YAML, or the defaults when no path is given."""
    if path is None:
        return EngineConfig.with_defaults()
    data = load_yaml_file(path)
    config = EngineConfig.from_dict(data)
    logger.info(
        "engine_config_loaded",
        extra={"path": str(path), "keys": sorted(data.keys())},
    )
    return config
