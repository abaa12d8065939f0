"""
costing_config -- single public entrypoint for costing configuration.

Responsibility:
    Provides the ONLY way to obtain costing configuration at runtime
    through ``get_active_config()``. Services receive the returned
    ``CostingSettings`` through their constructors and never read files,
    environment variables or flags themselves.

Architecture position:
    Configuration -- YAML-driven settings. Sits above ``costing_kernel``
    and below ``costing_services``. The kernel and engines never import
    from this package.

Failure modes:
    - ``FileNotFoundError`` -- the requested configuration set does not exist.
    - ``KeyError`` / ``ValueError`` -- schema failures from the loader.

Audit relevance:
    Every successful ``get_active_config()`` call emits a
    ``COSTING_CONFIG_TRACE`` log entry with the config_id, version and
    checksum, tying every costing back to the settings that governed it.
"""

from __future__ import annotations

import logging
from pathlib import Path

from costing_config.loader import load_yaml_file, parse_settings
from costing_config.schema import CostingSettings, PolicySettings

_logger = logging.getLogger("costing_kernel.config")

# Default configuration sets directory
_DEFAULT_CONFIG_DIR = Path(__file__).parent / "sets"


def get_active_config(
    config_dir: Path | None = None,
    set_name: str = "default",
) -> CostingSettings:
    """The ONLY public configuration entrypoint.

    Args:
        config_dir: Override path to the configuration sets directory.
            Defaults to costing_config/sets/.
        set_name: Configuration set to load (``<set_name>.yaml``).

    Raises:
        FileNotFoundError: If the configuration set does not exist.
        KeyError: If a required key is missing.
        ValueError: If a value fails validation.
    """
    sets_dir = config_dir or _DEFAULT_CONFIG_DIR
    path = sets_dir / f"{set_name}.yaml"
    if not path.is_file():
        raise FileNotFoundError(f"Costing configuration set not found: {path}")

    settings = parse_settings(load_yaml_file(path))

    _logger.info(
        "COSTING_CONFIG_TRACE",
        extra={
            "trace_type": "COSTING_CONFIG_TRACE",
            "config_set_id": settings.config_id,
            "config_set_version": settings.version,
            "checksum": settings.checksum,
            "currency": settings.currency,
            "standard_tolerances": settings.tolerances.is_standard,
        },
    )
    return settings


__all__ = ["CostingSettings", "PolicySettings", "get_active_config"]
