"""
Configuration Loader (``costing_config.loader``).

Responsibility
--------------
Loads a YAML costing configuration set and parses it into the typed
``costing_config.schema`` dataclasses. Runtime callers go through
``costing_config.get_active_config()`` instead of calling this directly.

Invariants enforced
-------------------
* Parse errors raise ``ValueError`` or ``KeyError`` with descriptive
  messages; required keys have no silent defaults.
* Tolerances are read as strings and converted to Decimal, never float.
* ``compute_checksum`` produces a deterministic SHA-256 hash for
  configuration identity and change detection.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing ``config_id`` / ``version``  -> ``KeyError`` propagates.
* Unknown currency, a tolerance that differs from the fixed constants,
  or a non-boolean ``require_lot_approval_default``  -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import yaml

from costing_config.schema import CostingSettings, PolicySettings
from costing_kernel.domain.currency import CurrencyRegistry
from costing_kernel.domain.tolerances import DEFAULT_TOLERANCES, Tolerances

_TOLERANCE_FIELDS = ("allocation_epsilon", "quantity_match", "variance")


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def parse_decimal(value: Any, name: str) -> Decimal:
    """Parse a tolerance from YAML. Quote values in YAML to keep them exact."""
    try:
        return Decimal(str(value))
    except InvalidOperation as e:
        raise ValueError(f"Invalid decimal for {name}: {value!r}") from e


def parse_tolerances(data: dict[str, Any] | None) -> Tolerances:
    """
    Parse the ``tolerances`` block.

    The thresholds are fixed constants shared with every consumer of lot
    costing data. A set may restate them but not change them.

    Raises:
        ValueError: If a value is not a decimal, is negative, or differs
            from the fixed constant.
    """
    if not data:
        return DEFAULT_TOLERANCES
    unknown = sorted(set(data) - set(_TOLERANCE_FIELDS))
    if unknown:
        raise ValueError(f"Unknown tolerance keys: {', '.join(unknown)}")
    tolerances = Tolerances(**{
        name: parse_decimal(data.get(name, getattr(DEFAULT_TOLERANCES, name)), name)
        for name in _TOLERANCE_FIELDS
    })
    if not tolerances.is_standard:
        changed = [
            f"{name}={getattr(tolerances, name)} (fixed at {getattr(DEFAULT_TOLERANCES, name)})"
            for name in _TOLERANCE_FIELDS
            if getattr(tolerances, name) != getattr(DEFAULT_TOLERANCES, name)
        ]
        raise ValueError(f"Costing tolerances cannot be overridden: {'; '.join(changed)}")
    return tolerances


def parse_policies(data: dict[str, Any] | None) -> PolicySettings:
    data = data or {}
    require_approval = data.get("require_lot_approval_default", False)
    if not isinstance(require_approval, bool):
        raise ValueError(
            "require_lot_approval_default must be a YAML boolean, "
            f"got {require_approval!r}"
        )
    return PolicySettings(require_lot_approval_default=require_approval)


def parse_settings(data: dict[str, Any]) -> CostingSettings:
    """Parse a full configuration set.

    Raises:
        KeyError: If ``config_id`` or ``version`` is missing.
        ValueError: On invalid currency, tolerances or policies.
    """
    currency = str(data.get("currency", "TRY")).upper()
    if not CurrencyRegistry.is_valid(currency):
        raise ValueError(f"Invalid ISO 4217 currency code in config: {currency!r}")

    return CostingSettings(
        config_id=data["config_id"],
        version=int(data["version"]),
        currency=currency,
        tolerances=parse_tolerances(data.get("tolerances")),
        policies=parse_policies(data.get("policies")),
        checksum=compute_checksum(data),
    )


def compute_checksum(data: dict[str, Any]) -> str:
    """
    Compute SHA-256 checksum of canonical JSON serialization.

    Identical ``data`` always produces identical checksums.
    """
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
