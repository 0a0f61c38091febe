"""
Configuration Loader (``progress_config.loader``).

Responsibility
--------------
Loads the engine YAML file and parses it into typed
``progress_config.schema`` dataclass instances.  No service or
orchestrator should call this directly; the single public entry point
for runtime config is ``progress_config.get_active_config()``.

Invariants enforced
-------------------
* Parse errors raise ``ValueError`` or ``KeyError`` with descriptive
  messages; no silent defaults for required fields.
* Every parsed object is a frozen dataclass from ``schema.py``.
* ``compute_checksum`` produces a deterministic SHA-256 hash for
  configuration identity and change detection.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing required keys in parsed dict  -> ``KeyError`` propagates.
"""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any

import yaml

from progress_config.schema import (
    DatabaseConfig,
    DefaultStageTemplate,
    EngineConfig,
    PropagationConfig,
    RetryPolicy,
)


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def parse_database(data: dict[str, Any]) -> DatabaseConfig:
    """Parse a DatabaseConfig from a dict."""
    return DatabaseConfig(
        url=data["url"],
        echo=bool(data.get("echo", False)),
        pool_size=int(data.get("pool_size", 5)),
        max_overflow=int(data.get("max_overflow", 10)),
        pool_timeout=int(data.get("pool_timeout", 30)),
        pool_recycle=int(data.get("pool_recycle", 1800)),
    )


def parse_retry(data: dict[str, Any]) -> RetryPolicy:
    return RetryPolicy(
        read_attempts=int(data.get("read_attempts", 2)),
        backoff_seconds=float(data.get("backoff_seconds", 0.05)),
    )


def parse_propagation(data: dict[str, Any]) -> PropagationConfig:
    return PropagationConfig(
        publish_events=bool(data.get("publish_events", True)),
        sync_routines=bool(data.get("sync_routines", True)),
    )


def parse_default_stage(data: dict[str, Any]) -> DefaultStageTemplate:
    """Parse one default stage; ``name`` is required and non-empty."""
    name = data["name"]
    if not isinstance(name, str) or not name.strip():
        raise ValueError(f"Default stage name must be a non-empty string: {name!r}")
    return DefaultStageTemplate(
        name=name.strip(),
        description=data.get("description"),
        category=data.get("category"),
        is_required=bool(data.get("is_required", True)),
    )


def parse_engine_config(data: dict[str, Any]) -> EngineConfig:
    """
    Parse the whole engine document.

    Raises:
        KeyError: if config_id, version or database.url is missing.
        ValueError: if a value is out of range.
    """
    return EngineConfig(
        config_id=data["config_id"],
        version=int(data["version"]),
        database=parse_database(data["database"]),
        retry=parse_retry(data.get("retry") or {}),
        propagation=parse_propagation(data.get("propagation") or {}),
        default_stages=tuple(
            parse_default_stage(s) for s in data.get("default_stages") or ()
        ),
        checksum=compute_checksum(data),
    )


def compute_checksum(data: dict[str, Any]) -> str:
    """
    Compute SHA-256 checksum of canonical JSON serialization.

    Identical ``data`` always produces identical checksums.
    """
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
