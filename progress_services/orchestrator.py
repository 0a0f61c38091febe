"""
progress_services.orchestrator -- Central DI container for kernel services.

Responsibility:
    Creates every kernel service exactly once for a session and wires
    them together.  No kernel service creates other services internally.

Architecture position:
    Services -- orchestration over the kernel.  The only place where
    kernel services are constructed and composed.

Invariants enforced:
    - Single-instance lifecycle: one propagator and one sync engine per
      session, shared by every service that needs them.
    - DI transparency: all service wiring is visible in ``__init__``.

Non-goals:
    - Does NOT manage transaction boundaries (ProgressEngine does).

Usage:
    orchestrator = ProgressOrchestrator(session, clock=clock)
    orchestrator.stage_instances.set_status(instance_id, "completed", actor_id)
"""

from __future__ import annotations

from collections.abc import Sequence

from sqlalchemy.orm import Session

from progress_kernel.domain.clock import Clock, SystemClock
from progress_kernel.domain.dtos import StageTemplate
from progress_kernel.selectors.progress_selector import ProgressSelector
from progress_kernel.services.contract_service_service import ContractServiceService
from progress_kernel.services.stage_definition_service import StageDefinitionService
from progress_kernel.services.stage_instance_service import StageInstanceService
from progress_kernel.services.stage_sync_service import StageSyncService
from progress_kernel.services.status_propagator import StatusPropagator
from progress_services.event_dispatcher import StatusEventDispatcher
from progress_services.routine_sync import register_routine_sync


class ProgressOrchestrator:
    """Central factory for kernel services bound to one session."""

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        default_stages: Sequence[StageTemplate] = (),
        read_attempts: int = 1,
        backoff_seconds: float = 0.0,
        publish_events: bool = True,
        sync_routines: bool = True,
    ) -> None:
        self.session = session
        self.clock = clock or SystemClock()

        self.dispatcher = StatusEventDispatcher(session)
        if sync_routines:
            register_routine_sync(self.dispatcher)

        self.sync = StageSyncService(session)
        self.propagator = StatusPropagator(
            session,
            sink=self.dispatcher if publish_events else None,
            clock=self.clock,
        )
        self.stage_definitions = StageDefinitionService(
            session,
            self.sync,
            propagator=self.propagator,
            default_stages=default_stages,
        )
        self.stage_instances = StageInstanceService(session, self.propagator, self.clock)
        self.contract_services = ContractServiceService(session, self.sync)
        self.progress = ProgressSelector(
            session,
            read_attempts=read_attempts,
            backoff_seconds=backoff_seconds,
        )
