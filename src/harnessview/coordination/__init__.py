"""
Execution-aware update coordination for the live results display.

Components, leaves first: the execution state monitor, the shared timeline,
the update scheduler, the template cache, the progressive disclosure state
machine, the render lock and the memory guardian.
"""

from .capabilities import CapabilityRegistry
from .execution_state import ExecutionFlags, ExecutionRegime, ExecutionStateMonitor, FlagBoard
from .memory_guardian import MemoryGuardian, SampleOutcome
from .progressive import ProgressiveDisclosureStateMachine, ProgressiveState
from .render_lock import RenderLock
from .template_cache import CacheProfile, TemplateCache
from .timeline import AsyncioTimeline, ManualTimeline, Timeline
from .update_scheduler import ScheduleOutcome, UpdateScheduler

__all__ = [
    'CapabilityRegistry',
    'ExecutionFlags',
    'ExecutionRegime',
    'ExecutionStateMonitor',
    'FlagBoard',
    'MemoryGuardian',
    'SampleOutcome',
    'ProgressiveDisclosureStateMachine',
    'ProgressiveState',
    'RenderLock',
    'CacheProfile',
    'TemplateCache',
    'AsyncioTimeline',
    'ManualTimeline',
    'Timeline',
    'ScheduleOutcome',
    'UpdateScheduler',
]
