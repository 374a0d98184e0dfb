"""
In-process job scheduler for chain timers

Every timer is a row in scheduled_jobs before it is armed, so a restart can
re-arm pending jobs (recover) and run the overdue ones immediately.
Handlers must be idempotent: a job may run more than once across restarts.
"""
from typing import Callable, Dict, Optional
from datetime import datetime, timedelta
import logging
import threading

from models import ScheduledJob
from repositories.job_repository import JobRepository
from services.clock import utcnow

logger = logging.getLogger(__name__)

JobHandler = Callable[[str], None]


class JobScheduler:
    """
    Persisted one-shot timers keyed by chain id and job kind.

    With arm_timers=False nothing runs on its own; run_due() drives jobs,
    which is how tests and the startup sweep use it.
    """

    def __init__(
        self,
        jobs: JobRepository,
        clock: Callable[[], datetime] = utcnow,
        arm_timers: bool = True,
    ):
        self.jobs = jobs
        self.clock = clock
        self.arm_timers = arm_timers
        self.handlers: Dict[str, JobHandler] = {}
        self._timers: Dict[int, threading.Timer] = {}
        self._timers_lock = threading.Lock()

    def register(self, kind: str, handler: JobHandler) -> None:
        self.handlers[kind] = handler

    def schedule(self, chain_id: str, kind: str, delay_seconds: float) -> ScheduledJob:
        """Persist a job due delay_seconds from now and arm its timer"""
        now = self.clock()
        job = self.jobs.add(
            chain_id=chain_id,
            kind=kind,
            due_at=now + timedelta(seconds=max(0.0, delay_seconds)),
            created_at=now,
        )
        logger.debug(f"[JOBS] Scheduled {kind} for {chain_id} in {delay_seconds:.3f}s (job {job.id})")
        self._arm(job)
        return job

    def has_open_job(self, chain_id: str, kind: str) -> bool:
        return self.jobs.has_open(chain_id, kind)

    def _arm(self, job: ScheduledJob) -> None:
        if not self.arm_timers:
            return
        delay = max(0.0, (job.due_at - self.clock()).total_seconds())
        timer = threading.Timer(delay, self.run_job, args=(job.id,))
        timer.daemon = True
        with self._timers_lock:
            self._timers[job.id] = timer
        timer.start()

    def run_job(self, job_id: int) -> bool:
        """
        Run one job if it is still pending.

        Returns:
            True if this call ran the handler
        """
        with self._timers_lock:
            self._timers.pop(job_id, None)

        if not self.jobs.claim(job_id):
            return False

        job = self.jobs.get(job_id)
        handler = self.handlers.get(job.kind)
        if handler is None:
            logger.error(f"[JOBS] No handler for job kind {job.kind!r} (job {job_id})")
            self.jobs.finish(job_id, self.clock(), error=f"no handler for {job.kind}")
            return False

        try:
            handler(job.chain_id)
        except Exception as e:
            logger.error(f"[JOBS] {job.kind} failed for chain {job.chain_id}: {e}", exc_info=True)
            self.jobs.finish(job_id, self.clock(), error=str(e))
            return True

        self.jobs.finish(job_id, self.clock())
        return True

    def run_due(self, now: Optional[datetime] = None) -> int:
        """Run every pending job due at or before now, including ones they schedule"""
        ran = 0
        while True:
            due = self.jobs.pending(due_before=now or self.clock())
            if not due:
                return ran
            for job in due:
                if self.run_job(job.id):
                    ran += 1

    def recover(self) -> int:
        """
        Startup sweep: requeue interrupted jobs, run overdue ones now and
        re-arm the rest.

        Returns:
            Number of pending jobs found
        """
        self.jobs.requeue_interrupted()
        pending = self.jobs.pending()
        now = self.clock()
        overdue = [job for job in pending if job.due_at <= now]
        logger.info(f"[JOBS] Recovery: {len(pending)} pending, {len(overdue)} overdue")

        for job in overdue:
            self.run_job(job.id)
        for job in pending:
            if job.due_at > now:
                self._arm(job)
        return len(pending)

    def shutdown(self) -> None:
        """Cancel armed timers; their rows stay pending for the next start"""
        with self._timers_lock:
            timers = list(self._timers.values())
            self._timers.clear()
        for timer in timers:
            timer.cancel()
        if timers:
            logger.info(f"[JOBS] Cancelled {len(timers)} armed timer(s)")
