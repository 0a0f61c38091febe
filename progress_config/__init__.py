"""
progress_config -- single public entrypoint for engine configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_active_config()``.  No other component may read configuration
    files directly.  Returns a frozen ``EngineConfig``.

Architecture position:
    Configuration -- sits above ``progress_kernel`` and below
    ``progress_services``.  The kernel MUST NEVER import from
    ``progress_config``; ``progress_config.bridges`` translates config
    values into kernel inputs.

Failure modes:
    - ``FileNotFoundError`` -- the requested YAML file does not exist.
    - ``KeyError`` / ``ValueError`` -- missing or invalid fields.

Audit relevance:
    Every successful ``get_active_config()`` call emits a
    ``progress_config_loaded`` log entry with the config_id, version and
    checksum, tying engine behaviour to an exact configuration version.
"""

from __future__ import annotations

import logging
from pathlib import Path

from progress_config.loader import load_yaml_file, parse_engine_config
from progress_config.schema import (
    DatabaseConfig,
    DefaultStageTemplate,
    EngineConfig,
    PropagationConfig,
    RetryPolicy,
)

_logger = logging.getLogger("progress_kernel.config")

DEFAULT_CONFIG_PATH = Path(__file__).parent / "defaults" / "engine.yaml"


def get_active_config(config_path: Path | str | None = None) -> EngineConfig:
    """The ONLY public configuration entrypoint.

    Args:
        config_path: Override path to an engine YAML file.  Defaults to
            the packaged ``progress_config/defaults/engine.yaml``.

    Returns:
        EngineConfig -- frozen, with checksum of the source document.
    """
    path = Path(config_path) if config_path is not None else DEFAULT_CONFIG_PATH
    config = parse_engine_config(load_yaml_file(path))

    _logger.info(
        "progress_config_loaded",
        extra={
            "config_id": config.config_id,
            "config_version": config.version,
            "checksum": config.checksum,
            "default_stages": len(config.default_stages),
        },
    )
    return config


__all__ = [
    "DEFAULT_CONFIG_PATH",
    "DatabaseConfig",
    "DefaultStageTemplate",
    "EngineConfig",
    "PropagationConfig",
    "RetryPolicy",
    "get_active_config",
]
