"""Tests for the SQLite item store: CAS transitions, eligibility and digest claims."""

from __future__ import annotations

import random

import pytest

from hn_digest.core.errors import InvalidTransition, StoreUnavailable
from hn_digest.core.types import (
    ALLOWED_TRANSITIONS,
    DeliveryStatus,
    DigestStatus,
    Stage,
    TransitionResult,
    Work,
)
from hn_digest.storage.item_store import ItemStore, make_digest_id

from conftest import StepClock, make_discovered, seed_summarized


def test_upsert_is_idempotent(store):
    first = store.upsert_discovered(make_discovered(1))
    second = store.upsert_discovered(make_discovered(1, title="Renamed"))

    assert first.created is True
    assert second.created is False
    item = store.get("1001")
    assert item.stage is Stage.DISCOVERED
    assert item.title == "Story 1"


def test_rediscovery_does_not_reset_progress(store):
    store.upsert_discovered(make_discovered(1))
    store.transition("1001", Stage.DISCOVERED, Stage.CONTENT_FETCHED, content_ref="c/1/x.txt")

    store.upsert_discovered(make_discovered(1))

    item = store.get("1001")
    assert item.stage is Stage.CONTENT_FETCHED
    assert item.content_ref == "c/1/x.txt"


def test_transition_cas_only_one_writer_wins(store):
    store.upsert_discovered(make_discovered(1))

    first = store.transition("1001", Stage.DISCOVERED, Stage.CONTENT_FETCHED)
    second = store.transition("1001", Stage.DISCOVERED, Stage.CONTENT_FAILED, error="late")

    assert first is TransitionResult.SUCCESS
    assert second is TransitionResult.CONFLICT
    item = store.get("1001")
    assert item.stage is Stage.CONTENT_FETCHED
    assert item.last_error is None


def test_cas_across_two_connections(tmp_path):
    path = tmp_path / "shared.db"
    a = ItemStore(path)
    b = ItemStore(path)
    try:
        a.upsert_discovered(make_discovered(1))

        results = [
            a.transition("1001", Stage.DISCOVERED, Stage.CONTENT_FETCHED),
            b.transition("1001", Stage.DISCOVERED, Stage.CONTENT_FETCHED),
        ]

        assert results.count(TransitionResult.SUCCESS) == 1
        assert results.count(TransitionResult.CONFLICT) == 1
    finally:
        a.close()
        b.close()


@pytest.mark.parametrize(
    "from_stage,to_stage",
    [
        (Stage.DISCOVERED, Stage.SUMMARIZED),
        (Stage.CONTENT_FETCHED, Stage.DISCOVERED),
        (Stage.NOTIFIED, Stage.SUMMARIZED),
        (Stage.CONTENT_FAILED, Stage.CONTENT_FETCHED),
        (Stage.DISCOVERED, Stage.SUMMARIZATION_FAILED),
    ],
)
def test_transition_rejects_non_forward_moves(store, from_stage, to_stage):
    store.upsert_discovered(make_discovered(1))

    with pytest.raises(InvalidTransition):
        store.transition("1001", from_stage, to_stage)


def test_random_interleavings_only_move_forward(store):
    rng = random.Random(7)
    ids = [store.upsert_discovered(make_discovered(i)).id for i in range(6)]
    pairs = sorted(ALLOWED_TRANSITIONS, key=lambda pair: (pair[0].value, pair[1].value))
    history = {item_id: [Stage.DISCOVERED] for item_id in ids}

    for _ in range(300):
        item_id = rng.choice(ids)
        from_stage, to_stage = rng.choice(pairs)
        result = store.transition(item_id, from_stage, to_stage)
        if result is TransitionResult.SUCCESS:
            history[item_id].append(to_stage)

    for item_id, stages in history.items():
        assert store.get(item_id).stage is stages[-1]
        orders = [stage.order for stage in stages]
        assert orders == sorted(orders)
        assert all(not stage.is_failed for stage in stages[:-1])


def test_list_eligible_orders_oldest_update_first_and_respects_budget(store):
    for i in range(4):
        store.upsert_discovered(make_discovered(i))
    # Touching an item moves it to the back of the queue.
    store.record_failure("1000", Stage.DISCOVERED, "timeout")
    for _ in range(5):
        store.record_failure("1002", Stage.DISCOVERED, "timeout")

    eligible = [item.id for item in store.list_eligible(Stage.DISCOVERED, limit=10)]

    assert eligible == ["1001", "1003", "1000"]
    assert [item.id for item in store.list_eligible(Stage.DISCOVERED, limit=2)] == ["1001", "1003"]


def test_list_eligible_skips_items_updated_after_cutoff(store, clock):
    store.upsert_discovered(make_discovered(0))
    store.upsert_discovered(make_discovered(1))
    store.transition("1000", Stage.DISCOVERED, Stage.CONTENT_FETCHED)
    cutoff = clock()
    store.transition("1001", Stage.DISCOVERED, Stage.CONTENT_FETCHED)

    bounded = store.list_eligible(Stage.CONTENT_FETCHED, limit=10, updated_before=cutoff)
    unbounded = store.list_eligible(Stage.CONTENT_FETCHED, limit=10)

    assert [item.id for item in bounded] == ["1000"]
    assert [item.id for item in unbounded] == ["1000", "1001"]


def test_transition_adds_prior_attempts_to_the_leaving_work(store):
    store.upsert_discovered(make_discovered(1))
    store.record_failure("1001", Stage.DISCOVERED, "timeout")

    result = store.transition(
        "1001", Stage.DISCOVERED, Stage.CONTENT_FETCHED, content_ref="c/1/x.txt", add_attempts=3
    )
    lost = store.transition("1001", Stage.DISCOVERED, Stage.CONTENT_FETCHED, add_attempts=2)

    item = store.get("1001")
    assert result is TransitionResult.SUCCESS
    assert lost is TransitionResult.CONFLICT
    assert item.stage is Stage.CONTENT_FETCHED
    assert item.attempts_for(Work.EXTRACTION) == 4
    assert item.attempts_for(Work.SUMMARIZATION) == 0


def test_record_failure_accumulates_and_checks_stage(store):
    store.upsert_discovered(make_discovered(1))

    assert store.record_failure("1001", Stage.DISCOVERED, "e1") == 1
    assert store.record_failure("1001", Stage.DISCOVERED, "e2", count=3) == 4
    assert store.record_failure("1001", Stage.CONTENT_FETCHED, "wrong stage") is None

    item = store.get("1001")
    assert item.attempts_for(Work.EXTRACTION) == 4
    assert item.attempts_for(Work.SUMMARIZATION) == 0
    assert item.last_error == "e2"


def test_claim_digest_takes_oldest_up_to_max(store, blobs):
    ids = seed_summarized(store, blobs, 12)

    digest = store.claim_digest(5, 10, "topic", "markdown", ["file", "telegram"])

    assert digest is not None
    assert digest.item_ids == ids[:10]
    assert digest.status is DigestStatus.PENDING
    assert sorted(digest.deliveries) == ["file", "telegram"]
    assert digest.open_channels == ["file", "telegram"]
    assert store.count_unattached_summarized() == 2
    assert store.get(ids[0]).digest_id == digest.id
    assert store.get(ids[11]).digest_id is None
    # Two left over is below the minimum.
    assert store.claim_digest(5, 10, "topic", "markdown", ["file"]) is None


def test_claim_digest_below_minimum_changes_nothing(store, blobs):
    seed_summarized(store, blobs, 4)

    assert store.claim_digest(5, 10, "topic", "markdown", ["file"]) is None
    assert store.list_digests() == []
    assert store.count_unattached_summarized() == 4


def test_digest_id_is_deterministic():
    clock = StepClock()
    created = clock()

    assert make_digest_id(["b", "a"], created) == make_digest_id(["a", "b"], created)
    assert make_digest_id(["a", "b"], created).startswith("20240501-")
    assert make_digest_id(["a"], created) != make_digest_id(["a", "b"], created)


def test_set_digest_body_is_write_once(store, blobs):
    seed_summarized(store, blobs, 5)
    digest = store.claim_digest(5, 10, "topic", "markdown", ["file"])

    assert store.set_digest_body(digest.id, "digest/x/first.md") is TransitionResult.SUCCESS
    assert store.set_digest_body(digest.id, "digest/x/second.md") is TransitionResult.CONFLICT
    assert store.get_digest(digest.id).body_ref == "digest/x/first.md"


def test_delivery_failures_exhaust_channel(store, blobs):
    seed_summarized(store, blobs, 5)
    digest = store.claim_digest(5, 10, "topic", "markdown", ["discord", "file"])

    assert store.record_delivery_failure(digest.id, "discord", "503", count=3) is DeliveryStatus.PENDING
    assert store.record_delivery_failure(digest.id, "discord", "503", count=2) is DeliveryStatus.FAILED
    assert store.record_delivery_failure(digest.id, "discord", "late") is None
    assert store.mark_delivered(digest.id, "file") is TransitionResult.SUCCESS
    assert store.mark_delivered(digest.id, "file") is TransitionResult.CONFLICT

    current = store.get_digest(digest.id)
    assert current.deliveries["discord"].attempts == 5
    assert current.deliveries["discord"].last_error == "503"
    assert current.is_settled
    assert current.settled_status() is DigestStatus.PARTIALLY_DELIVERED


def test_permanent_delivery_failure_fails_channel_at_once(store, blobs):
    seed_summarized(store, blobs, 5)
    digest = store.claim_digest(5, 10, "topic", "markdown", ["telegram"])

    status = store.record_delivery_failure(digest.id, "telegram", "400", permanent=True)

    assert status is DeliveryStatus.FAILED
    assert store.get_digest(digest.id).settled_status() is DigestStatus.FAILED


def test_delivery_lease_excludes_second_holder_until_expiry(store, blobs, clock):
    seed_summarized(store, blobs, 5)
    digest = store.claim_digest(5, 10, "topic", "markdown", ["file"])

    assert store.lease_delivery(digest.id, "file", 60) is True
    assert store.lease_delivery(digest.id, "file", 60) is False
    clock.advance(120)
    assert store.lease_delivery(digest.id, "file", 60) is True
    store.record_delivery_failure(digest.id, "file", "disk full")
    assert store.lease_delivery(digest.id, "file", 60) is True
    store.mark_delivered(digest.id, "file")
    assert store.lease_delivery(digest.id, "file", 60) is False


def test_list_open_digests_tracks_unsettled_work(store, blobs):
    ids = seed_summarized(store, blobs, 5)
    digest = store.claim_digest(5, 10, "topic", "markdown", ["file"])

    assert [d.id for d in store.list_open_digests(10)] == [digest.id]

    store.mark_delivered(digest.id, "file")
    store.set_digest_status(digest.id, DigestStatus.DELIVERED)
    # Items still in SUMMARIZED keep the digest open until they are moved on.
    assert [d.id for d in store.list_open_digests(10)] == [digest.id]

    for item_id in ids:
        store.transition(item_id, Stage.SUMMARIZED, Stage.NOTIFIED)
    assert store.list_open_digests(10) == []
    assert store.count_digests_by_status()[DigestStatus.DELIVERED] == 1


def test_count_by_stage_and_list_items(store):
    for i in range(3):
        store.upsert_discovered(make_discovered(i))
    store.transition("1000", Stage.DISCOVERED, Stage.CONTENT_FAILED, error="404")

    counts = store.count_by_stage()

    assert counts[Stage.DISCOVERED] == 2
    assert counts[Stage.CONTENT_FAILED] == 1
    assert counts[Stage.NOTIFIED] == 0
    assert [item.id for item in store.list_items(Stage.CONTENT_FAILED)] == ["1000"]
    assert [item.id for item in store.list_items(limit=2)] == ["1000", "1002"]


def test_unopenable_path_raises_store_unavailable(tmp_path):
    directory = tmp_path / "a-directory"
    directory.mkdir()

    with pytest.raises(StoreUnavailable):
        ItemStore(directory)
