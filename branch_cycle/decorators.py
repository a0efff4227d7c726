"""
Decorators for branch-cycle.

Provides the session lock used by GitBackend and the step checkpoint used by
CycleOrchestrator.
"""

import logging
from functools import wraps

logger = logging.getLogger(__name__)


def with_session_lock(func):
    """
    Decorator serializing backend methods through the session lock.

    The working tree and its checked-out ref are shared by every operation,
    so at most one git process may run against it at a time. The lock is
    re-entrant: a locked method may call other locked methods.

    Usage:
        class GitBackend:
            @with_session_lock
            def checkout(self, branch):
                ...

    Notes:
        - The decorated object must expose a ``_session_lock`` attribute
          (threading.RLock)
        - The lock is ALWAYS released, even on error
    """
    @wraps(func)
    def wrapper(self, *args, **kwargs):
        with self._session_lock:
            return func(self, *args, **kwargs)
    return wrapper


def cycle_step(step_name: str):
    """
    Decorator marking an orchestrator method as one step of a flow.

    Around the step:
        1. Honor a pending cancellation (step boundary only)
        2. Skip the step if the pending cycle record lists it as completed
        3. Run the step
        4. Record the step as completed and flush the status store

    Usage:
        @cycle_step('merge-uat')
        def _merge_uat(self, plan):
            ...

    Notes:
        - The decorated object must provide ``_check_cancelled(step_name)``,
          ``_persist()`` and a ``_status`` StatusStore
        - A step raising an exception is neither marked nor persisted, so a
          re-run executes it again
    """
    def decorator(func):
        @wraps(func)
        def wrapper(self, *args, **kwargs):
            self._check_cancelled(step_name)
            pending = self._status.pending_cycle
            if pending is not None and pending.is_done(step_name):
                logger.info("Step '%s' already completed by a previous run, skipping", step_name)
                return None
            result = func(self, *args, **kwargs)
            pending = self._status.pending_cycle
            if pending is not None:
                pending.mark_done(step_name)
            self._persist()
            return result

        wrapper.step_name = step_name
        return wrapper
    return decorator
