"""
Costing settings schema.

Typed, frozen form of a costing configuration set. YAML files are parsed
into these types by the loader; services receive a ``CostingSettings``
instance and never read files themselves.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from costing_kernel.domain.tolerances import DEFAULT_TOLERANCES, Tolerances


@dataclass(frozen=True)
class PolicySettings:
    """Costing policy defaults."""

    require_lot_approval_default: bool = False


@dataclass(frozen=True)
class CostingSettings:
    """Resolved costing configuration."""

    config_id: str = "default"
    version: int = 1
    currency: str = "TRY"
    # Fixed constants; the loader rejects sets that change them.
    tolerances: Tolerances = DEFAULT_TOLERANCES
    policies: PolicySettings = field(default_factory=PolicySettings)
    checksum: str = ""
