"""
progress_services -- orchestration over the progress kernel.

    from progress_services import ProgressEngine

    engine = ProgressEngine(get_session_factory())
    engine.set_stage_status(instance_id, "completed", actor_id)
"""

from progress_services.event_dispatcher import StatusEventDispatcher, StatusEventHandler
from progress_services.orchestrator import ProgressOrchestrator
from progress_services.progress_engine import ProgressEngine
from progress_services.routine_sync import RoutineSyncHandler, register_routine_sync

__all__ = [
    "ProgressEngine",
    "ProgressOrchestrator",
    "RoutineSyncHandler",
    "StatusEventDispatcher",
    "StatusEventHandler",
    "register_routine_sync",
]
