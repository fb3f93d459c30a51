"""Integration tests for the narrative job queue

Tests cover:
- Enqueue is idempotent (one row per activity, max priority, created_at kept)
- Claim order and claim exclusivity
- Complete vs. re-enqueue while in flight
- Release records the error and frees the job
- Abandoned claims expire
"""

from __future__ import annotations

from datetime import timedelta

from rdevidence.narratives.queue import PRIORITY_DEFAULT, PRIORITY_USER, NarrativeJobQueue


def test_enqueue_is_idempotent(temp_db, now):
    NarrativeJobQueue.enqueue("act-1", "proj-1", PRIORITY_DEFAULT, now=now)
    NarrativeJobQueue.enqueue("act-1", "proj-1", PRIORITY_DEFAULT, now=now + timedelta(minutes=1))

    assert NarrativeJobQueue.count() == 1
    job = NarrativeJobQueue.get("act-1")
    assert job.created_at == now
    assert job.updated_at == now + timedelta(minutes=1)


def test_enqueue_keeps_higher_priority(temp_db, now):
    NarrativeJobQueue.enqueue("act-1", "proj-1", PRIORITY_USER, now=now)
    NarrativeJobQueue.enqueue("act-1", "proj-1", PRIORITY_DEFAULT, now=now)
    assert NarrativeJobQueue.get("act-1").priority == PRIORITY_USER

    NarrativeJobQueue.enqueue("act-2", "proj-1", PRIORITY_DEFAULT, now=now)
    NarrativeJobQueue.enqueue("act-2", "proj-1", PRIORITY_USER, now=now)
    assert NarrativeJobQueue.get("act-2").priority == PRIORITY_USER


def test_claim_order_priority_then_age(temp_db, now):
    NarrativeJobQueue.enqueue("old", "proj-1", PRIORITY_DEFAULT, now=now - timedelta(hours=2))
    NarrativeJobQueue.enqueue("new", "proj-1", PRIORITY_DEFAULT, now=now - timedelta(hours=1))
    NarrativeJobQueue.enqueue("urgent", "proj-1", PRIORITY_USER, now=now)

    jobs = NarrativeJobQueue.claim_batch(limit=10, now=now)

    assert [j.activity_id for j in jobs] == ["urgent", "old", "new"]
    assert all(j.claimed_at == now for j in jobs)


def test_claimed_jobs_not_claimed_twice(temp_db, now):
    NarrativeJobQueue.enqueue("act-1", "proj-1", now=now)

    assert len(NarrativeJobQueue.claim_batch(now=now)) == 1
    assert NarrativeJobQueue.claim_batch(now=now + timedelta(minutes=1)) == []


def test_abandoned_claim_expires(temp_db, now):
    NarrativeJobQueue.enqueue("act-1", "proj-1", now=now)
    NarrativeJobQueue.claim_batch(now=now)

    reclaimed = NarrativeJobQueue.claim_batch(now=now + timedelta(minutes=16))

    assert [j.activity_id for j in reclaimed] == ["act-1"]


def test_claim_respects_limit(temp_db, now):
    for n in range(5):
        NarrativeJobQueue.enqueue(f"act-{n}", "proj-1", now=now + timedelta(seconds=n))
    assert len(NarrativeJobQueue.claim_batch(limit=3, now=now + timedelta(minutes=1))) == 3


def test_complete_deletes_job(temp_db, now):
    NarrativeJobQueue.enqueue("act-1", "proj-1", now=now)
    [job] = NarrativeJobQueue.claim_batch(now=now)

    assert NarrativeJobQueue.complete(job) is True
    assert NarrativeJobQueue.get("act-1") is None


def test_reenqueue_in_flight_keeps_job(temp_db, now):
    NarrativeJobQueue.enqueue("act-1", "proj-1", now=now)
    [job] = NarrativeJobQueue.claim_batch(now=now)
    NarrativeJobQueue.enqueue("act-1", "proj-1", now=now + timedelta(seconds=5))

    assert NarrativeJobQueue.complete(job) is False

    pending = NarrativeJobQueue.get("act-1")
    assert pending is not None
    assert pending.claimed_at is None
    assert len(NarrativeJobQueue.claim_batch(now=now + timedelta(seconds=10))) == 1


def test_release_records_error(temp_db, now):
    NarrativeJobQueue.enqueue("act-1", "proj-1", now=now)
    [job] = NarrativeJobQueue.claim_batch(now=now)

    NarrativeJobQueue.release(job.id, "Narrative call failed: timeout")

    pending = NarrativeJobQueue.get("act-1")
    assert pending.claimed_at is None
    assert pending.last_error == "Narrative call failed: timeout"
    assert pending.created_at == now
