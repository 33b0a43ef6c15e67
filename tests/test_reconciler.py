"""Tests for gtdash.reconciler: dedup, threading, ordering."""

import threading

from gtdash.models import MailMessage
from gtdash.reconciler import (
    MessageReconciler,
    classify_direction,
    filter_by_sender,
    group_threads,
    merge_unique,
    normalize_address,
    sender_scope_pattern,
    sort_latest_first,
    thread_info_from_labels,
)


def _msg(id, sender="gastown/crew/max", recipient="overseer", ts="2026-01-01T00:00:00Z", **kw):
    return MailMessage(
        id=id, sender=sender, recipient=recipient, subject=kw.pop("subject", f"s-{id}"),
        body="", timestamp=ts, **kw,
    )


class TestReconcile:
    """Seen-set semantics."""

    def test_idempotent(self, reconciler):
        batch = [_msg("a"), _msg("b"), _msg("c")]
        assert reconciler.reconcile("inbox", batch) == batch
        assert reconciler.reconcile("inbox", batch) == []

    def test_only_new_in_input_order(self, reconciler):
        reconciler.reconcile("inbox", [_msg("b")])
        fresh = reconciler.reconcile("inbox", [_msg("c"), _msg("b"), _msg("a")])
        assert [m.id for m in fresh] == ["c", "a"]

    def test_duplicates_within_batch(self, reconciler):
        fresh = reconciler.reconcile("inbox", [_msg("a"), _msg("a")])
        assert [m.id for m in fresh] == ["a"]

    def test_scopes_are_independent(self, reconciler):
        batch = [_msg("a")]
        assert reconciler.reconcile("crew-chat:gastown/crew/", batch) == batch
        assert reconciler.reconcile("crew-chat:*", batch) == batch
        assert reconciler.seen_count() == 2
        assert reconciler.seen_count("crew-chat:*") == 1

    def test_forget(self, reconciler):
        batch = [_msg("a")]
        reconciler.reconcile("x", batch)
        reconciler.reconcile("y", batch)
        reconciler.forget("x")
        assert reconciler.reconcile("x", batch) == batch
        assert reconciler.reconcile("y", batch) == []
        reconciler.forget()
        assert reconciler.seen_count() == 0

    def test_instances_do_not_share_state(self):
        batch = [_msg("a")]
        MessageReconciler().reconcile("inbox", batch)
        assert MessageReconciler().reconcile("inbox", batch) == batch

    def test_concurrent_polls_never_double_deliver(self, reconciler):
        batch = [_msg(str(i)) for i in range(200)]
        delivered: list[list] = []
        barrier = threading.Barrier(8)

        def poll():
            barrier.wait()
            delivered.append(reconciler.reconcile("inbox", batch))

        threads = [threading.Thread(target=poll) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        ids = [m.id for chunk in delivered for m in chunk]
        assert len(ids) == 200
        assert len(set(ids)) == 200

    def test_custom_id_function(self, reconciler):
        items = [{"key": "a"}, {"key": "a"}, {"key": ""}]
        assert reconciler.reconcile("dicts", items, id_of=lambda d: d["key"]) == [{"key": "a"}]


class TestLabels:
    def test_thread_and_reply_recovered(self):
        assert thread_info_from_labels(["thread:abc", "reply-to:xyz", "other:1"]) == ("abc", "xyz")

    def test_first_label_per_prefix_wins(self):
        labels = ["thread:one", "thread:two", "reply-to:r1", "reply-to:r2"]
        assert thread_info_from_labels(labels) == ("one", "r1")

    def test_missing(self):
        assert thread_info_from_labels([]) == (None, None)
        assert thread_info_from_labels(None) == (None, None)
        assert thread_info_from_labels(["thread:"]) == (None, None)


class TestScopeAndDirection:
    def test_scope_patterns(self):
        assert sender_scope_pattern("gastown", "max") == "gastown/crew/max"
        assert sender_scope_pattern("gastown", None) == "gastown/crew/"
        assert sender_scope_pattern(None, "max") == "/crew/max"
        assert sender_scope_pattern(None, None) is None

    def test_filter_by_sender(self):
        batch = [_msg("a", sender="gastown/crew/max"), _msg("b", sender="beads/crew/max"),
                 _msg("c", sender="gastown/crew/joe")]
        assert [m.id for m in filter_by_sender(batch, "gastown/crew/")] == ["a", "c"]
        assert [m.id for m in filter_by_sender(batch, "/crew/max")] == ["a", "b"]
        assert len(filter_by_sender(batch, None)) == 3

    def test_direction(self):
        assert classify_direction("gastown/crew/max") == "received"
        assert classify_direction("mayor/", default="sent") == "sent"
        assert classify_direction("mayor/") is None


class TestOrdering:
    def test_latest_first(self):
        msgs = [_msg("old", ts="2026-01-01T00:00:00Z"), _msg("new", ts="2026-01-03T00:00:00Z"),
                _msg("mid", ts="2026-01-02T00:00:00+00:00")]
        assert [m.id for m in sort_latest_first(msgs)] == ["new", "mid", "old"]

    def test_ties_keep_arrival_order(self):
        msgs = [_msg("a"), _msg("b"), _msg("c")]
        assert [m.id for m in sort_latest_first(msgs)] == ["a", "b", "c"]

    def test_unparseable_sorts_last(self):
        msgs = [_msg("bad", ts="yesterday"), _msg("good", ts="2026-01-01T00:00:00Z")]
        assert [m.id for m in sort_latest_first(msgs)] == ["good", "bad"]

    def test_merge_unique(self):
        merged = merge_unique([_msg("a"), _msg("b")], [_msg("b"), _msg("c")])
        assert [m.id for m in merged] == ["a", "b", "c"]


class TestThreads:
    def test_normalize_address(self):
        assert normalize_address("Mayor") == "mayor/"
        assert normalize_address("overseer/") == "overseer/"
        assert normalize_address("gastown/crew/max") == "gastown/crew/max"

    def test_groups_by_thread_id(self):
        msgs = [
            _msg("1", ts="2026-01-01T00:00:00Z", thread_id="t1", subject="Plan"),
            _msg("2", sender="overseer", recipient="gastown/crew/max", ts="2026-01-02T00:00:00Z",
                 thread_id="t1", subject="Re: Plan", read=True),
            _msg("3", sender="mayor/", ts="2026-01-03T00:00:00Z", thread_id="t2"),
        ]
        threads = group_threads(msgs)
        assert [t.id for t in threads] == ["t2", "t1"]
        t1 = threads[1]
        assert [m.id for m in t1.messages] == ["2", "1"]
        assert t1.subject == "Plan"
        assert t1.unread_count == 1
        assert t1.latest_timestamp == "2026-01-02T00:00:00Z"
        assert t1.participants == ["gastown/crew/max", "overseer/"]

    def test_groups_by_participant_without_thread_id(self):
        msgs = [
            _msg("1", sender="Mayor", ts="2026-01-01T00:00:00Z"),
            _msg("2", sender="overseer", recipient="mayor/", ts="2026-01-02T00:00:00Z", read=True),
        ]
        threads = group_threads(msgs)
        assert len(threads) == 1
        assert threads[0].id == "mayor/"
        assert threads[0].subject == "mayor/"
        assert len(threads[0].messages) == 2
