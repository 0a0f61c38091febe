"""
Engine configuration schema.

Frozen dataclasses parsed from YAML by ``progress_config.loader``.  The
returned ``EngineConfig`` is the only runtime configuration artifact.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class DatabaseConfig:
    """Connection settings passed to ``init_engine_from_url``."""

    url: str
    echo: bool = False
    pool_size: int = 5
    max_overflow: int = 10
    pool_timeout: int = 30
    pool_recycle: int = 1800


@dataclass(frozen=True)
class RetryPolicy:
    """Read retry policy.  Writes are never retried."""

    read_attempts: int = 2
    backoff_seconds: float = 0.05

    def __post_init__(self) -> None:
        if self.read_attempts < 1:
            raise ValueError("retry.read_attempts must be >= 1")
        if self.backoff_seconds < 0:
            raise ValueError("retry.backoff_seconds must be >= 0")


@dataclass(frozen=True)
class PropagationConfig:
    """Status propagation switches."""

    publish_events: bool = True
    sync_routines: bool = True


@dataclass(frozen=True)
class DefaultStageTemplate:
    """One entry of the default checklist seeded into new services."""

    name: str
    description: str | None = None
    category: str | None = None
    is_required: bool = True


@dataclass(frozen=True)
class EngineConfig:
    """Complete engine configuration; checksum identifies the source YAML."""

    config_id: str
    version: int
    database: DatabaseConfig
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    propagation: PropagationConfig = field(default_factory=PropagationConfig)
    default_stages: tuple[DefaultStageTemplate, ...] = ()
    checksum: str = ""
