"""
progress_services.routine_sync -- mirror contract service status onto routines.

Routines are a scheduling/reporting view of a contract service.  When a
contract service starts automatically, routines still at not_started move
to in_progress; when it completes, every routine is marked completed.
"""

from __future__ import annotations

import logging

from sqlalchemy import update
from sqlalchemy.orm import Session

from progress_kernel.domain.events import (
    ContractServiceCompleted,
    ContractServiceStarted,
    StatusEvent,
)
from progress_kernel.domain.statuses import RoutineStatus
from progress_kernel.models.routine import ServiceRoutine
from progress_services.event_dispatcher import StatusEventDispatcher, StatusEventHandler

_logger = logging.getLogger("progress_kernel.services.routine_sync")


class RoutineSyncHandler:
    """Applies status events to ServiceRoutine rows."""

    name = "routine_sync"

    def on_started(self, session: Session, event: StatusEvent) -> None:
        self._mirror(
            session,
            event,
            RoutineStatus.IN_PROGRESS,
            only_from=RoutineStatus.NOT_STARTED,
        )

    def on_completed(self, session: Session, event: StatusEvent) -> None:
        self._mirror(session, event, RoutineStatus.COMPLETED)

    def _mirror(
        self,
        session: Session,
        event: StatusEvent,
        target: RoutineStatus,
        only_from: RoutineStatus | None = None,
    ) -> int:
        stmt = (
            update(ServiceRoutine)
            .where(ServiceRoutine.contract_service_id == event.contract_service_id)
            .values(
                status=target.value,
                updated_at=event.occurred_at,
                updated_by_id=event.actor_id,
            )
            .execution_options(synchronize_session="fetch")
        )
        if only_from is not None:
            stmt = stmt.where(ServiceRoutine.status == only_from.value)

        updated = session.execute(stmt).rowcount or 0
        _logger.info(
            "routines_synced",
            extra={
                "contract_service_id": str(event.contract_service_id),
                "event_type": event.event_type,
                "routine_status": target.value,
                "updated": updated,
            },
        )
        return updated


def register_routine_sync(
    dispatcher: StatusEventDispatcher,
    handler: RoutineSyncHandler | None = None,
) -> RoutineSyncHandler:
    """Wire the routine mirror into a dispatcher."""
    handler = handler or RoutineSyncHandler()
    dispatcher.register(
        ContractServiceStarted.event_type,
        StatusEventHandler(name=handler.name, handle=handler.on_started),
    )
    dispatcher.register(
        ContractServiceCompleted.event_type,
        StatusEventHandler(name=handler.name, handle=handler.on_completed),
    )
    return handler
