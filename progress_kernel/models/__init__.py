"""ORM models for the progress kernel."""

from progress_kernel.domain.statuses import (
    HOLD_STATES,
    ContractServiceStatus,
    ContractStatus,
    RoutineStatus,
    StageInstanceStatus,
)
from progress_kernel.models.catalog import Service, ServiceStageDefinition
from progress_kernel.models.contract import Client, Contract, ContractService
from progress_kernel.models.routine import ServiceRoutine
from progress_kernel.models.stage_instance import ContractServiceStageInstance

__all__ = [
    "Client",
    "Contract",
    "ContractService",
    "ContractServiceStageInstance",
    "ContractServiceStatus",
    "ContractStatus",
    "HOLD_STATES",
    "RoutineStatus",
    "Service",
    "ServiceRoutine",
    "ServiceStageDefinition",
    "StageInstanceStatus",
]
