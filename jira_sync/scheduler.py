"""
Sync Scheduler Module
Runs the Jira sync cycle on a fixed interval without overlapping runs.
"""

import os
import threading
from datetime import datetime
from typing import Any, Callable, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from jira_sync.config_manager import ConfigManager
from jira_sync.utils.logger import get_logger

logger = get_logger(__name__)

DEFAULT_INTERVAL_MINUTES = 10
JOB_ID = 'jira_sync'
DISABLED_VALUES = ('false', '0', 'no', 'off')


def resolve_enabled(enabled: Optional[bool], scheduler_config: dict) -> bool:
    """Explicit flag first, then config/env; enabled unless switched off."""
    if enabled is not None:
        return bool(enabled)

    value = scheduler_config.get('enabled', os.getenv('JIRA_SYNC_ENABLED'))
    if value is None or value == '':
        return True
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() not in DISABLED_VALUES


def _positive_number(value: Any) -> Optional[float]:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if number > 0 else None


def resolve_interval(interval_minutes: Optional[float], scheduler_config: dict) -> float:
    """Explicit interval, else config/env, else the default; only positive numbers count."""
    for candidate in (
        interval_minutes,
        scheduler_config.get('interval_minutes'),
        os.getenv('JIRA_SYNC_INTERVAL_MINUTES'),
    ):
        number = _positive_number(candidate)
        if number is not None:
            return number
    return DEFAULT_INTERVAL_MINUTES


class SyncScheduler:
    """
    Interval scheduler for sync cycles with a single-flight guard.

    A tick that fires while a cycle is still running is skipped, not queued.
    ``stop()`` only prevents future ticks; a running cycle finishes normally.
    """

    def __init__(
        self,
        run_cycle: Callable[[], Any] = None,
        interval_minutes: float = None,
        enabled: bool = None,
        scheduler: BackgroundScheduler = None
    ):
        scheduler_config = ConfigManager().get_scheduler_config()

        if run_cycle is None:
            from jira_sync.sync_engine import run_sync_cycle
            run_cycle = run_sync_cycle

        self.enabled = resolve_enabled(enabled, scheduler_config)
        self.interval_minutes = resolve_interval(interval_minutes, scheduler_config)
        self._run_cycle = run_cycle
        self._scheduler = scheduler or BackgroundScheduler()
        self._in_progress = False
        self._guard = threading.Lock()
        self.last_result = None

    @property
    def in_progress(self) -> bool:
        return self._in_progress

    @property
    def running(self) -> bool:
        return self._scheduler.running

    def run_once(self) -> bool:
        """
        Run one cycle unless one is already in flight.

        Returns:
            True if a cycle ran, False if the tick was skipped
        """
        with self._guard:
            if self._in_progress:
                logger.warning("Jira sync already running; skipping overlapping run")
                return False
            self._in_progress = True

        try:
            self.last_result = self._run_cycle()
        except Exception as e:
            logger.exception(f"Jira sync cycle failed: {e}")
            self.last_result = None
        finally:
            self._in_progress = False

        return True

    def start(self) -> 'SyncScheduler':
        """Run a cycle right away, then every interval. A disabled scheduler does nothing."""
        if not self.enabled:
            logger.info("Jira sync scheduler disabled")
            return self

        self._scheduler.add_job(
            self.run_once,
            IntervalTrigger(minutes=self.interval_minutes),
            id=JOB_ID,
            next_run_time=datetime.now(),
            coalesce=True,
            replace_existing=True
        )
        self._scheduler.start()

        logger.info(f"Jira sync scheduler started: interval_minutes={self.interval_minutes}")
        return self

    def stop(self) -> None:
        """Halt future scheduling without waiting for an in-flight cycle."""
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
            logger.info("Jira sync scheduler stopped")


def start_sync_scheduler(
    run_cycle: Callable[[], Any] = None,
    interval_minutes: float = None,
    enabled: bool = None
) -> SyncScheduler:
    """Create and start a sync scheduler; the result exposes ``stop()``."""
    return SyncScheduler(run_cycle, interval_minutes=interval_minutes, enabled=enabled).start()
