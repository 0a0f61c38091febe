"""
progress_services.event_dispatcher -- in-transaction status event dispatch.

Responsibility:
    Routes status events published by the StatusPropagator to the
    handlers registered for their event type.

Architecture position:
    Services -- orchestration over the kernel.  Implements the kernel's
    StatusEventSink protocol so the kernel never imports this package.

Invariants enforced:
    - Handlers run synchronously, in registration order, on the session
      of the unit of work that published the event.
    - Handler failures propagate: a routine that cannot be mirrored
      aborts the stage write that caused it.

Usage:
    dispatcher = StatusEventDispatcher(session)
    register_routine_sync(dispatcher)
    propagator = StatusPropagator(session, sink=dispatcher, clock=clock)
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass

from sqlalchemy.orm import Session

from progress_kernel.domain.events import StatusEvent

_logger = logging.getLogger("progress_kernel.services.event_dispatcher")


@dataclass(frozen=True)
class StatusEventHandler:
    """A registered handler callable.

    The handle function receives the dispatcher's session and the event.
    """

    name: str
    handle: Callable[[Session, StatusEvent], None]


class StatusEventDispatcher:
    """Registry of status event handlers keyed by event type."""

    def __init__(self, session: Session) -> None:
        self._session = session
        self._registry: dict[str, list[StatusEventHandler]] = {}

    def register(self, event_type: str, handler: StatusEventHandler) -> None:
        """Register a handler for an event type.

        Raises:
            ValueError: If a handler with the same name is already
                registered for the event type.
        """
        handlers = self._registry.setdefault(event_type, [])
        if any(h.name == handler.name for h in handlers):
            raise ValueError(
                f"Handler '{handler.name}' already registered for '{event_type}'"
            )
        handlers.append(handler)

    def handlers_for(self, event_type: str) -> tuple[StatusEventHandler, ...]:
        return tuple(self._registry.get(event_type, ()))

    def publish(self, event: StatusEvent) -> None:
        """Run every handler registered for the event's type."""
        handlers = self.handlers_for(event.event_type)
        _logger.debug(
            "status_event_published",
            extra={
                "event_type": event.event_type,
                "contract_service_id": str(event.contract_service_id),
                "handlers": len(handlers),
            },
        )
        for handler in handlers:
            handler.handle(self._session, event)
