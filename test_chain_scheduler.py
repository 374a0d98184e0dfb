"""
Tests for chain creation and firing
"""
from datetime import timedelta

import pytest

from conftest import ALICE, BOB, CAROL
from models import Chain, JobKind
from services.chain_scheduler import fire_window
from services.errors import InvalidRequest
from services.invisible_codec import BRAILLE_BLANK, decode_invisible


def count_chains(session_factory) -> int:
    db = session_factory()
    try:
        return db.query(Chain).count()
    finally:
        db.close()


# =============================================================================
# CREATE
# =============================================================================

@pytest.mark.parametrize("question, participants", [
    ("", [ALICE]),
    ("   ", [ALICE]),
    (None, [ALICE]),
    ("what did you avoid today?", []),
    ("what did you avoid today?", None),
    ("what did you avoid today?", ALICE),
    ("what did you avoid today?", [42, None, "  "]),
])
def test_create_rejects_missing_question_or_participants(game, consented, session_factory, question, participants):
    consented(ALICE)
    with pytest.raises(InvalidRequest, match="question and participants required"):
        game.chains.create(question, participants)
    assert count_chains(session_factory) == 0


def test_create_rejects_when_nobody_consented(game, session_factory):
    with pytest.raises(InvalidRequest, match="no consented recipients"):
        game.chains.create("what did you avoid today?", [ALICE, BOB])
    assert count_chains(session_factory) == 0


def test_create_keeps_only_consented_participants(game, consented):
    consented(ALICE, CAROL)
    chain_id, _ = game.chains.create("what did you avoid today?", [ALICE, BOB, CAROL])
    chain = game.chain_repo.get(chain_id)
    assert chain.participants == [ALICE, CAROL]
    assert chain.status == "scheduled"
    assert chain.id.startswith("chain_")
    assert [e.type for e in chain.events] == ["scheduled"]


def test_create_arms_fire_job_inside_window(game, consented, rng, clock):
    consented(ALICE)
    rng.queue(0.5)
    chain_id, delay = game.chains.create("  what did you avoid today?  ", [ALICE], {"min": 2, "max": 4})
    assert delay == 180

    chain = game.chain_repo.get(chain_id)
    assert chain.question == "what did you avoid today?"
    assert chain.scheduled_at == clock.now + timedelta(seconds=180)

    jobs = game.scheduler.jobs.for_chain(chain_id)
    assert [(j.kind, j.due_at) for j in jobs] == [(JobKind.FIRE.value, clock.now + timedelta(seconds=180))]


def test_fire_job_waits_for_its_due_time(game, consented, rng, clock):
    consented(ALICE)
    rng.queue(0.0)
    chain_id, delay = game.chains.create("q?", [ALICE])
    assert delay == 60

    clock.advance(59)
    assert game.scheduler.run_due() == 0
    assert game.chain_repo.get(chain_id).status == "scheduled"

    clock.advance(1)
    assert game.scheduler.run_due() == 1
    assert game.chain_repo.get(chain_id).status == "awaiting_answers"


@pytest.mark.parametrize("window, expected", [
    (None, (1, 15)),
    ({"min": 0, "max": -5}, (0.1, 0.1)),
    ({"min": 3}, (3, 15)),
    ({"min": 20}, (20, 20)),
    ({"min": "soon", "max": "later"}, (1, 15)),
    ({"min": True, "max": 5}, (1, 5)),
    ([3, 5], (1, 15)),
    ("3-5", (1, 15)),
])
def test_fire_window_clamps(window, expected):
    assert fire_window(window, 1, 15) == pytest.approx(expected)


# =============================================================================
# FIRE
# =============================================================================

def test_fire_single_issues_token_with_solo_deadline(game, fired_chain, gateway, clock):
    chain_id = fired_chain([ALICE])
    chain = game.chain_repo.get(chain_id)
    assert chain.mode == "single"
    assert chain.recipients == [ALICE]
    assert chain.status == "awaiting_answers"

    (token,) = game.tokens.for_chain(chain_id)
    assert token.recipient == ALICE
    assert token.deadline == token.sent_at + timedelta(seconds=40)
    assert token.used is False

    (body,) = gateway.bodies_for(ALICE)
    lines = body.split("\n")
    assert lines[0] == "Dread:"
    assert lines[2] == f"a whisper waits. open now: https://dread.test/open/{token.token}"

    types = [e.type for e in chain.events]
    assert types == ["scheduled", "fired", "chosen_recipients", "sent"]


def test_fire_single_arms_solo_adjudication_with_grace(game, fired_chain, clock):
    chain_id = fired_chain([ALICE])
    adjudicate = [j for j in game.scheduler.jobs.for_chain(chain_id) if j.kind == JobKind.ADJUDICATE.value]
    assert len(adjudicate) == 1
    assert adjudicate[0].due_at == clock.now + timedelta(seconds=40.3)


def test_fire_mirrored_leaves_deadlines_unset(game, fired_chain, gateway, clock):
    chain_id = fired_chain([ALICE, BOB], mirrored=True, picks=[BOB, ALICE])
    chain = game.chain_repo.get(chain_id)
    assert chain.mode == "mirrored"
    assert chain.recipients == [BOB, ALICE]

    tokens = game.tokens.for_chain(chain_id)
    assert sorted(t.recipient for t in tokens) == [ALICE, BOB]
    assert all(t.deadline is None and t.opened_at is None for t in tokens)
    assert len(gateway.sent) == 2

    adjudicate = [j for j in game.scheduler.jobs.for_chain(chain_id) if j.kind == JobKind.ADJUDICATE.value]
    assert adjudicate[0].due_at == clock.now + timedelta(seconds=3600)


def test_fire_with_two_participants_defaults_to_single(game, fired_chain):
    chain_id = fired_chain([ALICE, BOB], mirrored=False, picks=[BOB])
    chain = game.chain_repo.get(chain_id)
    assert chain.mode == "single"
    assert chain.recipients == [BOB]


def test_fire_is_idempotent(game, fired_chain, gateway):
    chain_id = fired_chain([ALICE])
    game.chains.fire(chain_id)
    assert len(game.tokens.for_chain(chain_id)) == 1
    assert len(gateway.sent) == 1


def test_fire_for_unknown_chain_is_a_no_op(game, gateway):
    game.chains.fire("chain_missing")
    assert gateway.sent == []


def test_fire_survives_delivery_failures(game, fired_chain, gateway):
    gateway.fail_for.add(ALICE)
    chain_id = fired_chain([ALICE])

    chain = game.chain_repo.get(chain_id)
    assert chain.status == "awaiting_answers"
    (sent,) = [e for e in chain.events if e.type == "sent"]
    assert sent.payload["delivered"] is False
    assert "carrier unreachable" in sent.payload["error"]


def test_blank_ping_carries_riddle_and_keyphrase(game, fired_chain, gateway, settings):
    settings.BLANK_PROB = 1.0
    chain_id = fired_chain([ALICE])

    blanks = [body for body in gateway.bodies_for(ALICE) if body.startswith(BRAILLE_BLANK)]
    assert len(blanks) == 1
    assert decode_invisible(blanks[0]) == f"{settings.RIDDLE_TEXT}|||{settings.KEYPHRASE}"

    events = game.chain_repo.events(chain_id, "blank_sent")
    assert events[0].payload == {"to": ALICE}


def test_blank_ping_failure_is_recorded(game, fired_chain, gateway, settings):
    settings.BLANK_PROB = 1.0
    gateway.fail_for.add(ALICE)
    chain_id = fired_chain([ALICE])
    (event,) = game.chain_repo.events(chain_id, "blank_fail")
    assert event.payload["to"] == ALICE
    assert game.chain_repo.get(chain_id).status == "awaiting_answers"


# =============================================================================
# INTERRUPTED FIRE
# =============================================================================

def fail_nth_issue(game, monkeypatch, n):
    """Make the n-th token issue raise, as a crash mid-fire would"""
    real_issue = game.tokens.issue
    calls = []

    def issue(*args, **kwargs):
        calls.append(args)
        if len(calls) == n:
            raise RuntimeError("database went away")
        return real_issue(*args, **kwargs)

    monkeypatch.setattr(game.tokens, "issue", issue)


def fire_statuses(game, chain_id):
    return [j.status for j in game.scheduler.jobs.for_chain(chain_id) if j.kind == JobKind.FIRE.value]


def test_failed_fire_job_is_resumed_on_start(game, consented, gateway, rng, clock, monkeypatch):
    consented(ALICE)
    rng.queue(0.0)
    chain_id, _ = game.chains.create("what did you avoid today?", [ALICE])
    fail_nth_issue(game, monkeypatch, 1)

    clock.advance(60)
    game.scheduler.run_due()
    assert game.chain_repo.get(chain_id).status == "fired"
    assert game.tokens.for_chain(chain_id) == []
    assert fire_statuses(game, chain_id) == ["failed"]

    game.start()

    chain = game.chain_repo.get(chain_id)
    assert chain.status == "awaiting_answers"
    types = [e.type for e in chain.events]
    assert types.count("fired") == 1
    assert types.count("chosen_recipients") == 1
    assert types.count("sent") == 1
    assert len(game.tokens.for_chain(chain_id)) == 1
    assert len(gateway.bodies_for(ALICE)) == 1
    assert fire_statuses(game, chain_id) == ["failed", "done"]

    clock.advance(40.3)
    game.scheduler.run_due()
    assert game.chain_repo.get(chain_id).status == "adjudicated"


def test_fire_interrupted_while_running_resumes_unsent_recipients(game, consented, gateway, rng, clock, monkeypatch):
    consented(ALICE, BOB)
    rng.queue(0.0, 0.99, 0.0)
    rng.queue_picks(ALICE, BOB)
    chain_id, _ = game.chains.create("what did you avoid today?", [ALICE, BOB])
    (job,) = game.scheduler.jobs.for_chain(chain_id)
    clock.advance(60)

    # the process dies while the fire job is running, after ALICE was notified
    fail_nth_issue(game, monkeypatch, 2)
    assert game.scheduler.jobs.claim(job.id)
    with pytest.raises(RuntimeError):
        game.chains.fire(chain_id)
    assert len(gateway.bodies_for(ALICE)) == 1
    assert gateway.bodies_for(BOB) == []

    game.start()

    chain = game.chain_repo.get(chain_id)
    assert chain.status == "awaiting_answers"
    assert chain.mode == "mirrored"
    assert chain.recipients == [ALICE, BOB]
    assert len(gateway.bodies_for(ALICE)) == 1
    assert len(gateway.bodies_for(BOB)) == 1
    assert sorted(t.recipient for t in game.tokens.for_chain(chain_id)) == [ALICE, BOB]
    assert fire_statuses(game, chain_id) == ["done"]
    adjudications = [j for j in game.scheduler.jobs.for_chain(chain_id) if j.kind == JobKind.ADJUDICATE.value]
    assert len(adjudications) == 1


def test_start_leaves_chains_with_pending_fire_alone(game, consented, rng):
    consented(ALICE)
    rng.queue(0.5)
    chain_id, _ = game.chains.create("what did you avoid today?", [ALICE])

    game.start()

    assert game.chain_repo.get(chain_id).status == "scheduled"
    assert fire_statuses(game, chain_id) == ["pending"]
