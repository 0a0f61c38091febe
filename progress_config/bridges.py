"""
Config -> Kernel Bridges.

Functions that convert EngineConfig values into kernel inputs.  They live
in progress_config (the producer) because the kernel must never import
progress_config.
"""

from __future__ import annotations

from progress_config.schema import EngineConfig
from progress_kernel.domain.dtos import StageTemplate


def build_stage_templates(config: EngineConfig) -> tuple[StageTemplate, ...]:
    """Default checklist for ``StageDefinitionService.create_default_stages``."""
    return tuple(
        StageTemplate(
            name=stage.name,
            description=stage.description,
            category=stage.category,
            is_required=stage.is_required,
        )
        for stage in config.default_stages
    )
