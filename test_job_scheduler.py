"""
Tests for the persisted job scheduler
"""
import pytest

from models import JobStatus
from repositories.job_repository import JobRepository
from scheduler import JobScheduler


@pytest.fixture
def jobs(session_factory):
    return JobRepository(session_factory)


@pytest.fixture
def scheduler(jobs, clock):
    scheduler = JobScheduler(jobs, clock=clock, arm_timers=False)
    yield scheduler
    scheduler.shutdown()


def test_schedule_persists_pending_job(scheduler, jobs, clock):
    job = scheduler.schedule("chain_a", "fire", 90)

    stored = jobs.get(job.id)
    assert stored.status == JobStatus.PENDING.value
    assert (stored.due_at - clock()).total_seconds() == 90
    assert stored.attempts == 0


def test_negative_delay_is_due_now(scheduler, jobs, clock):
    job = scheduler.schedule("chain_a", "fire", -5)
    assert jobs.get(job.id).due_at == clock()


def test_run_due_only_runs_due_jobs_in_order(scheduler, jobs, clock):
    seen = []
    scheduler.register("fire", seen.append)
    scheduler.schedule("chain_late", "fire", 20)
    scheduler.schedule("chain_early", "fire", 10)

    assert scheduler.run_due() == 0
    clock.advance(15)
    assert scheduler.run_due() == 1
    clock.advance(5)
    assert scheduler.run_due() == 1
    assert seen == ["chain_early", "chain_late"]


def test_run_due_picks_up_jobs_scheduled_by_handlers(scheduler, clock):
    seen = []

    def fire(chain_id):
        seen.append(("fire", chain_id))
        scheduler.schedule(chain_id, "adjudicate", 0)

    scheduler.register("fire", fire)
    scheduler.register("adjudicate", lambda chain_id: seen.append(("adjudicate", chain_id)))
    scheduler.schedule("chain_a", "fire", 0)

    assert scheduler.run_due() == 2
    assert seen == [("fire", "chain_a"), ("adjudicate", "chain_a")]


def test_job_runs_once(scheduler, jobs):
    calls = []
    scheduler.register("fire", calls.append)
    job = scheduler.schedule("chain_a", "fire", 0)

    assert scheduler.run_job(job.id) is True
    assert scheduler.run_job(job.id) is False
    assert calls == ["chain_a"]
    assert jobs.get(job.id).status == JobStatus.DONE.value


def test_handler_failure_marks_job_failed(scheduler, jobs):
    def boom(chain_id):
        raise RuntimeError("gateway on fire")

    scheduler.register("fire", boom)
    job = scheduler.schedule("chain_a", "fire", 0)
    scheduler.run_due()

    stored = jobs.get(job.id)
    assert stored.status == JobStatus.FAILED.value
    assert stored.last_error == "gateway on fire"
    assert stored.attempts == 1


def test_missing_handler_fails_job(scheduler, jobs):
    job = scheduler.schedule("chain_a", "mystery", 0)
    assert scheduler.run_job(job.id) is False
    stored = jobs.get(job.id)
    assert stored.status == JobStatus.FAILED.value
    assert "mystery" in stored.last_error


def test_recover_runs_overdue_and_requeues_interrupted(jobs, clock):
    # first process: one job claimed but never finished, one overdue, one future
    first = JobScheduler(jobs, clock=clock, arm_timers=False)
    interrupted = first.schedule("chain_a", "fire", 0)
    jobs.claim(interrupted.id)
    overdue = first.schedule("chain_b", "fire", 5)
    future = first.schedule("chain_c", "fire", 600)
    clock.advance(30)

    seen = []
    second = JobScheduler(jobs, clock=clock, arm_timers=False)
    second.register("fire", seen.append)
    assert second.recover() == 3

    assert sorted(seen) == ["chain_a", "chain_b"]
    assert jobs.get(interrupted.id).status == JobStatus.DONE.value
    assert jobs.get(interrupted.id).attempts == 2
    assert jobs.get(overdue.id).status == JobStatus.DONE.value
    assert jobs.get(future.id).status == JobStatus.PENDING.value


def test_armed_timer_is_cancelled_on_shutdown(jobs, clock):
    scheduler = JobScheduler(jobs, clock=clock, arm_timers=True)
    scheduler.register("fire", lambda chain_id: None)
    job = scheduler.schedule("chain_a", "fire", 3600)
    assert job.id in scheduler._timers

    scheduler.shutdown()
    assert scheduler._timers == {}
    assert jobs.get(job.id).status == JobStatus.PENDING.value


def test_game_start_recovers_pending_fire(game, consented, gateway, rng, clock):
    consented("+13235550101")
    rng.queue(0.0)
    chain_id, _ = game.chains.create("still there?", ["+13235550101"])
    clock.advance(120)

    game.start()
    assert game.chain_repo.get(chain_id).status == "awaiting_answers"
    assert len(gateway.sent) == 1
