"""Scheduler service package.

This package contains the core scheduler service components:
- state.py: State management and dependencies
- store.py: SQLite persistence layer
- registry.py: Live timer registry
- ops.py: Core operations (add, remove, pause, resume, result bookkeeping)
- timer.py: Reconciliation, firing and housekeeping
- events.py: Broadcast channel
- health.py: Health and debug snapshots
"""
from .registry import ScheduleEntry, ScheduleRegistry
from .service import SchedulerService
from .store import ActionStore

__all__ = ["SchedulerService", "ActionStore", "ScheduleRegistry", "ScheduleEntry"]
