"""
APScheduler Engine - timer adapter for the billing and analytics runs.

Scheduled triggers and manual triggers go through run_job(), so both
produce identical results and are recorded the same way in the job history.
"""

import logging
import socket
import threading
from datetime import date
from typing import Any, Callable, Dict, List, Optional

from apscheduler.events import (
    EVENT_JOB_ERROR, EVENT_JOB_EXECUTED, EVENT_JOB_MISSED,
    EVENT_SCHEDULER_SHUTDOWN, EVENT_SCHEDULER_STARTED,
)
from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from sqlalchemy import select

from ..analytics.engine import AnalyticsEngine
from ..billing.engine import BillingEngine
from ..common.date_utils import utcnow
from ..common.session import SessionManager
from .alert_manager import AlertManager
from .config import JobDefinition, SchedulerConfig
from .models import JobHistory, create_scheduler_tables

logger = logging.getLogger(__name__)


class SchedulerEngine:
    """
    Scheduler engine that owns the APScheduler instance.

    Responsibilities:
    - Initialize and manage APScheduler
    - Register the billing and analytics jobs from configuration
    - Run jobs on schedule or on demand through one code path
    - Track execution history in the database
    """

    def __init__(
        self,
        config: SchedulerConfig,
        session_manager: SessionManager,
        billing_engine: BillingEngine,
        analytics_engine: AnalyticsEngine,
        alert_manager: Optional[AlertManager] = None
    ):
        """
        Initialize scheduler engine.

        Args:
            config: Scheduler configuration
            session_manager: Session provider for the job history table
            billing_engine: Engine behind the daily_billing job
            analytics_engine: Engine behind the analytics_* jobs
            alert_manager: Optional alert manager for notifications
        """
        self.config = config
        self.session_manager = session_manager
        self.billing_engine = billing_engine
        self.analytics_engine = analytics_engine
        self.alert_manager = alert_manager

        self._scheduler: Optional[BackgroundScheduler] = None
        self._running = False
        self._shutdown_event = threading.Event()

        self._tables_ready = False
        self._jobs: Dict[str, Callable[[str], Dict[str, Any]]] = {
            'daily_billing': self._run_billing,
            'analytics_daily': lambda triggered_by: self.analytics_engine.run_daily().to_dict(),
            'analytics_weekly': lambda triggered_by: self.analytics_engine.run_weekly().to_dict(),
            'analytics_monthly': lambda triggered_by: self.analytics_engine.run_monthly().to_dict(),
            'analytics_cleanup': self._run_cleanup,
        }

    def initialize(self):
        """Create the history table and configure APScheduler."""
        logger.info("Initializing scheduler engine...")

        self._ensure_tables()

        # Jobs are re-registered from config on each startup
        jobstores = {
            'default': MemoryJobStore()
        }

        executors = {
            'default': ThreadPoolExecutor(max_workers=self.config.executor_max_workers)
        }

        job_defaults = {
            'coalesce': self.config.coalesce,
            'max_instances': self.config.max_instances,
            'misfire_grace_time': self.config.misfire_grace_time,
        }

        self._scheduler = BackgroundScheduler(
            jobstores=jobstores,
            executors=executors,
            job_defaults=job_defaults,
            timezone=self.config.timezone
        )

        self._scheduler.add_listener(self._on_job_event, EVENT_JOB_EXECUTED | EVENT_JOB_ERROR | EVENT_JOB_MISSED)
        self._scheduler.add_listener(self._on_scheduler_event, EVENT_SCHEDULER_STARTED | EVENT_SCHEDULER_SHUTDOWN)

        logger.info("Scheduler engine initialized")

    def start(self):
        """Start the scheduler."""
        from .. import __version__

        if self._running:
            logger.warning("Scheduler is already running")
            return

        logger.info(f"Starting Fleet Scheduler v{__version__}...")

        if not self._scheduler:
            self.initialize()

        self._register_jobs()
        self._scheduler.start()
        self._running = True
        self._shutdown_event.clear()

        logger.info("Scheduler started successfully")

    def stop(self, wait: bool = None):
        """
        Stop the scheduler.

        Args:
            wait: Whether to wait for running jobs to complete (default from config)
        """
        if not self._running:
            logger.warning("Scheduler is not running")
            return

        logger.info("Stopping scheduler...")
        self._shutdown_event.set()

        if self._scheduler:
            self._scheduler.shutdown(wait=self.config.wait_for_jobs if wait is None else wait)

        self._running = False
        logger.info("Scheduler stopped")

    def wait(self):
        """Block until stop() is called."""
        self._shutdown_event.wait()

    def _register_jobs(self):
        """Register all enabled jobs with APScheduler."""
        for job in self.config.get_enabled_jobs():
            self._scheduler.add_job(
                func=self._execute_job,
                trigger=self._create_trigger(job),
                id=f"job_{job.name}",
                name=job.display_name,
                kwargs={'job_name': job.name},
                replace_existing=True
            )
            logger.info(f"Registered job: {job.name} ({job.cron})")

    def _create_trigger(self, job: JobDefinition) -> CronTrigger:
        """Create APScheduler cron trigger from a 5-field cron expression."""
        parts = job.cron.split()
        if len(parts) != 5:
            raise ValueError(f"Invalid cron expression for {job.name}: {job.cron}")

        return CronTrigger(
            minute=parts[0],
            hour=parts[1],
            day=parts[2],
            month=parts[3],
            day_of_week=parts[4],
            timezone=self.config.timezone
        )

    def _execute_job(self, job_name: str):
        """Entry point called by APScheduler."""
        try:
            self.run_job(job_name, triggered_by='scheduler')
        except Exception as e:
            # Already recorded in history and alerted
            logger.error(f"Scheduled job {job_name} failed: {e}")

    # ------------------------------------------------------------------
    # Job bodies
    # ------------------------------------------------------------------

    def _run_billing(self, triggered_by: str) -> Dict[str, Any]:
        return self.billing_engine.run_billing_cycle(triggered_by=triggered_by).to_dict()

    def _run_cleanup(self, triggered_by: str) -> Dict[str, Any]:
        return {'deleted': self.analytics_engine.cleanup_old_metrics()}

    @property
    def job_names(self) -> List[str]:
        return list(self._jobs)

    def run_job(self, job_name: str, triggered_by: str = 'manual') -> Dict[str, Any]:
        """
        Run a job now, in the calling thread, and record it in the job history.

        Args:
            job_name: One of job_names
            triggered_by: Who triggered this run (scheduler, cli, api, manual)

        Returns:
            dict: The job history record

        Raises:
            ValueError: Unknown job
            Exception: Whatever the job raised (after it has been recorded)
        """
        if job_name not in self._jobs:
            raise ValueError(f"Job not found: {job_name}")

        self._ensure_tables()
        history_id = self._create_history_record(job_name, triggered_by)
        logger.info(f"[{job_name}] Starting (triggered_by={triggered_by})")

        try:
            result = self._jobs[job_name](triggered_by)
        except Exception as e:
            logger.exception(f"[{job_name}] Job execution error: {e}")
            self._finish_history_record(history_id, 'failed', error=str(e))
            if self.alert_manager:
                self.alert_manager.send_job_failure_alert(job_name, str(e), triggered_by)
            raise

        record = self._finish_history_record(history_id, 'completed', result=result)
        logger.info(f"[{job_name}] Completed in {record['duration_seconds']}s")
        return record

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    def _ensure_tables(self):
        if not self._tables_ready:
            create_scheduler_tables(self.session_manager.engine)
            self._tables_ready = True

    def _create_history_record(self, job_name: str, triggered_by: str) -> int:
        with self.session_manager.session_scope() as session:
            history = JobHistory(
                job_name=job_name,
                status='running',
                started_at=utcnow(),
                triggered_by=triggered_by,
                host_name=socket.gethostname(),
            )
            session.add(history)
            session.flush()
            return history.id

    def _finish_history_record(self, history_id: int, status: str, result: Dict[str, Any] = None,
                               error: str = None) -> Dict[str, Any]:
        with self.session_manager.session_scope() as session:
            record = session.get(JobHistory, history_id)
            record.status = status
            record.completed_at = utcnow()
            record.duration_seconds = round((record.completed_at - record.started_at).total_seconds(), 2)
            record.result = _json_safe(result)
            record.error_message = error
            session.flush()
            return record.to_dict()

    def get_history(self, limit: int = 20, job_name: Optional[str] = None) -> List[Dict[str, Any]]:
        """Most recent job runs, newest first."""
        self._ensure_tables()
        stmt = select(JobHistory).order_by(JobHistory.started_at.desc(), JobHistory.id.desc()).limit(limit)
        if job_name:
            stmt = stmt.where(JobHistory.job_name == job_name)
        with self.session_manager.session_scope() as session:
            return [row.to_dict() for row in session.execute(stmt).scalars().all()]

    # ------------------------------------------------------------------
    # APScheduler listeners and status
    # ------------------------------------------------------------------

    def _on_job_event(self, event):
        """Handle APScheduler job events."""
        if event.code == EVENT_JOB_ERROR:
            logger.error(f"Job {event.job_id} error: {event.exception}")
        elif event.code == EVENT_JOB_MISSED:
            logger.warning(f"Job {event.job_id} missed its scheduled run time")
        elif event.code == EVENT_JOB_EXECUTED:
            logger.debug(f"Job {event.job_id} executed successfully")

    def _on_scheduler_event(self, event):
        """Handle APScheduler lifecycle events."""
        if event.code == EVENT_SCHEDULER_STARTED:
            logger.info("APScheduler started")
        elif event.code == EVENT_SCHEDULER_SHUTDOWN:
            logger.info("APScheduler shutdown")

    def get_jobs(self) -> List[Dict[str, Any]]:
        """Configured jobs with their next run time (when the scheduler is running)."""
        scheduled = {}
        if self._scheduler:
            scheduled = {job.id: job for job in self._scheduler.get_jobs()}

        jobs = []
        for job in self.config.jobs.values():
            aps_job = scheduled.get(f"job_{job.name}")
            next_run = getattr(aps_job, 'next_run_time', None) if aps_job else None
            jobs.append({
                'id': f"job_{job.name}",
                'name': job.name,
                'display_name': job.display_name,
                'cron': job.cron,
                'enabled': job.enabled,
                'next_run': next_run.isoformat() if next_run else None,
            })
        return jobs

    def get_status(self) -> Dict[str, Any]:
        """Get scheduler status."""
        return {
            'running': self._running,
            'timezone': self.config.timezone,
            'jobs_scheduled': len(self._scheduler.get_jobs()) if self._scheduler else 0,
            'jobs_enabled': len(self.config.get_enabled_jobs()),
        }

    @property
    def is_running(self) -> bool:
        """Check if scheduler is running."""
        return self._running


def _json_safe(value: Any) -> Any:
    if isinstance(value, dict):
        return {k: _json_safe(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_json_safe(v) for v in value]
    if isinstance(value, date):
        return value.isoformat()
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    return str(value)
