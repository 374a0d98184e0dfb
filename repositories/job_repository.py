"""
Job Repository - persisted one-shot timers
"""
import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy.orm import sessionmaker

from database import session_scope
from models import JobStatus, ScheduledJob

logger = logging.getLogger(__name__)


class JobRepository:
    """Repository for ScheduledJob rows"""

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def add(self, chain_id: str, kind: str, due_at: datetime, created_at: datetime) -> ScheduledJob:
        with session_scope(self.session_factory) as db:
            job = ScheduledJob(
                chain_id=chain_id,
                kind=kind,
                due_at=due_at,
                status=JobStatus.PENDING.value,
                attempts=0,
                created_at=created_at,
            )
            db.add(job)
            db.flush()
        return job

    def get(self, job_id: int) -> Optional[ScheduledJob]:
        with session_scope(self.session_factory) as db:
            return db.get(ScheduledJob, job_id)

    def pending(self, due_before: Optional[datetime] = None) -> List[ScheduledJob]:
        """Pending jobs in due order"""
        with session_scope(self.session_factory) as db:
            query = db.query(ScheduledJob).filter(ScheduledJob.status == JobStatus.PENDING.value)
            if due_before is not None:
                query = query.filter(ScheduledJob.due_at <= due_before)
            return query.order_by(ScheduledJob.due_at, ScheduledJob.id).all()

    def for_chain(self, chain_id: str) -> List[ScheduledJob]:
        with session_scope(self.session_factory) as db:
            return db.query(ScheduledJob).filter(
                ScheduledJob.chain_id == chain_id,
            ).order_by(ScheduledJob.id).all()

    def has_open(self, chain_id: str, kind: str) -> bool:
        """True if a job of this kind is still pending or running for the chain"""
        with session_scope(self.session_factory) as db:
            return db.query(ScheduledJob.id).filter(
                ScheduledJob.chain_id == chain_id,
                ScheduledJob.kind == kind,
                ScheduledJob.status.in_([JobStatus.PENDING.value, JobStatus.RUNNING.value]),
            ).first() is not None

    def claim(self, job_id: int) -> bool:
        """pending -> running; False if another runner got there first"""
        with session_scope(self.session_factory) as db:
            job = db.get(ScheduledJob, job_id)
            if job is None:
                return False
            claimed = db.query(ScheduledJob).filter(
                ScheduledJob.id == job_id,
                ScheduledJob.status == JobStatus.PENDING.value,
            ).update(
                {"status": JobStatus.RUNNING.value, "attempts": job.attempts + 1},
                synchronize_session=False,
            )
        return bool(claimed)

    def finish(self, job_id: int, completed_at: datetime, error: Optional[str] = None) -> None:
        status = JobStatus.FAILED if error else JobStatus.DONE
        with session_scope(self.session_factory) as db:
            db.query(ScheduledJob).filter(ScheduledJob.id == job_id).update(
                {"status": status.value, "completed_at": completed_at, "last_error": error},
                synchronize_session=False,
            )

    def requeue_interrupted(self) -> int:
        """Jobs left running by a previous process go back to pending"""
        with session_scope(self.session_factory) as db:
            count = db.query(ScheduledJob).filter(
                ScheduledJob.status == JobStatus.RUNNING.value,
            ).update({"status": JobStatus.PENDING.value}, synchronize_session=False)
        if count:
            logger.info(f"[JOBS] Requeued {count} interrupted job(s)")
        return count
