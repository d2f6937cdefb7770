"""
APScheduler configuration and backup cycle orchestration for backupd.

Manages:
- Scheduled backup cycles (every backup_hours)
- Manual backup triggers
- Graceful shutdown with a bounded wait

Scheduled and manual cycles are jobs on the same single-worker executor, so
at most one cycle runs at a time and cycles run in the order they were due.
"""

import itertools
import logging
import threading
from collections import deque
from datetime import datetime, timezone
from typing import Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger
from apscheduler.triggers.date import DateTrigger
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.executors.pool import ThreadPoolExecutor

from backupd.backup.executor import BackupContext, CycleResult, execute_backup_cycle


logger = logging.getLogger(__name__)

SCHEDULED_JOB_ID = 'backup_cycle'
HISTORY_SIZE = 50


def create_scheduler() -> BackgroundScheduler:
    """
    Create the APScheduler instance that runs backup cycles.

    A single worker thread serializes every cycle.
    """
    jobstores = {
        'default': MemoryJobStore()
    }

    executors = {
        'default': ThreadPoolExecutor(max_workers=1)
    }

    job_defaults = {
        'coalesce': True,  # Combine multiple pending instances into one
        'max_instances': 1,  # Only one instance of a job at a time
        'misfire_grace_time': 300  # 5 minutes grace period for misfires
    }

    return BackgroundScheduler(
        jobstores=jobstores,
        executors=executors,
        job_defaults=job_defaults,
        timezone='UTC'
    )


class BackupOrchestrator:
    """
    Owns the backup schedule, the shutdown flag and the cycle history.

    Usage::

        orchestrator = BackupOrchestrator(create_context(config))
        orchestrator.start()
        orchestrator.trigger_manual()
        orchestrator.stop(timeout=300)
    """

    def __init__(self, context: BackupContext, scheduler: BackgroundScheduler = None):
        """
        Initialize orchestrator.

        Args:
            context: BackupContext used by every cycle
            scheduler: Scheduler to use (default: create_scheduler())
        """
        self.context = context
        self.config = context.config
        self.scheduler = scheduler or create_scheduler()
        self.history = deque(maxlen=HISTORY_SIZE)
        self.last_result: Optional[CycleResult] = None

        self._condition = threading.Condition()
        self._shutting_down = threading.Event()
        self._in_flight = False
        self._running = False
        self._manual_ids = itertools.count(1)

    @property
    def running(self) -> bool:
        return self._running

    @property
    def shutting_down(self) -> bool:
        return self._shutting_down.is_set()

    @property
    def in_flight(self) -> bool:
        with self._condition:
            return self._in_flight

    def start(self):
        """
        Schedule backup cycles every interval_hours and start the scheduler.

        The first scheduled cycle runs one interval after start. A fire that
        comes while the previous scheduled cycle is still running is queued
        behind it and runs late; further fires in that time are coalesced.

        Returns:
            The scheduled APScheduler job

        Raises:
            RuntimeError: If already started or shutting down
        """
        if self._running:
            raise RuntimeError("Orchestrator already started")
        if self.shutting_down:
            raise RuntimeError("Orchestrator is shutting down")

        hours = self.config.interval_hours
        logger.info(f"Starting backup task with {hours} hours delay...")

        self.scheduler.add_job(
            func=self.run_cycle,
            trigger=IntervalTrigger(hours=hours),
            id=SCHEDULED_JOB_ID,
            name='Scheduled backup',
            max_instances=2,  # One running, one queued on the single worker
            replace_existing=True
        )
        self.scheduler.start()
        self._running = True

        job = self.scheduler.get_job(SCHEDULED_JOB_ID)
        next_run = job.next_run_time.isoformat() if job.next_run_time else 'N/A'
        logger.info(f"Scheduler started (next backup: {next_run})")
        return job

    def trigger_manual(self):
        """
        Queue a backup cycle to run now.

        If a cycle is running the manual one runs right after it.

        Returns:
            The one-shot APScheduler job, or None if shutdown was requested

        Raises:
            RuntimeError: If the orchestrator was never started
        """
        if self.shutting_down:
            logger.warning("Manual backup ignored, shutdown in progress")
            return None
        if not self._running:
            raise RuntimeError("Orchestrator not started. Call start() first.")

        job_id = f"manual_{next(self._manual_ids):06d}"
        job = self.scheduler.add_job(
            func=self.run_cycle,
            trigger=DateTrigger(run_date=datetime.now(timezone.utc)),
            id=job_id,
            name='Manual backup',
            misfire_grace_time=None  # Run however long it waits behind another cycle
        )

        logger.info(f"Manual backup queued ({job_id})")
        return job

    def run_cycle(self) -> Optional[CycleResult]:
        """
        Run one backup cycle unless shutdown was requested.

        Never raises, so a failing cycle cannot stop the scheduler.

        Returns:
            CycleResult, or None if skipped because of shutdown
        """
        with self._condition:
            if self._shutting_down.is_set():
                logger.info("Skipping backup, shutdown in progress")
                return None
            self._in_flight = True

        try:
            try:
                result = execute_backup_cycle(self.context, shutdown_check=self._shutting_down.is_set)
            except Exception as e:
                logger.exception("Backup cycle crashed")
                result = CycleResult(
                    success=False,
                    error=e,
                    failed_step='unexpected',
                    completed_at=datetime.now()
                )

            self.last_result = result
            self.history.append(result)
            return result
        finally:
            with self._condition:
                self._in_flight = False
                self._condition.notify_all()

    def stop(self, timeout: float) -> bool:
        """
        Stop scheduling cycles and wait for the running one to finish.

        The running cycle is never interrupted. If it does not finish within
        timeout it is abandoned, possibly leaving a partial archive or
        secondary copy behind.

        Args:
            timeout: Maximum seconds to wait for the running cycle

        Returns:
            True if no cycle was running when the wait ended, False on timeout
        """
        with self._condition:
            first_request = not self._shutting_down.is_set()
            self._shutting_down.set()

        if first_request:
            logger.info("Stopping...")

        if self.scheduler.running:
            self.scheduler.remove_all_jobs()
            self.scheduler.shutdown(wait=False)
        self._running = False

        with self._condition:
            drained = self._condition.wait_for(lambda: not self._in_flight, timeout)

        if drained:
            logger.info("Backup scheduler stopped")
        else:
            logger.warning(
                f"Backup still running after {timeout} seconds, stopping anyway. "
                f"The newest archive or secondary copy may be incomplete."
            )
        return drained
