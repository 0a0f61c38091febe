"""Kernel services (write side) for the progress kernel."""

from progress_kernel.services.base import BaseService
from progress_kernel.services.contract_service_service import ContractServiceService
from progress_kernel.services.stage_definition_service import StageDefinitionService
from progress_kernel.services.stage_instance_service import StageInstanceService
from progress_kernel.services.stage_sync_service import StageSyncService
from progress_kernel.services.status_propagator import StatusPropagator

__all__ = [
    "BaseService",
    "ContractServiceService",
    "StageDefinitionService",
    "StageInstanceService",
    "StageSyncService",
    "StatusPropagator",
]
