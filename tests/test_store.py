"""Tests for the paywall store.

Covers:
- Commit on success, rollback on failure
- Unique-constraint violations surface as ConflictError
- Scope locks serialize writers in the same scope only
"""

import threading
import time

import pytest

from soulcross.errors import ConflictError, NotFoundError
from soulcross.extensions import db, store
from soulcross.models.audit import AuditEvent
from soulcross.models.order import Order
from soulcross.models.reading import ReadingRequest
from soulcross.services.paywall_store import ScopeLocks


def _reading():
    return ReadingRequest(
        mode="preview",
        person_a={"name": "Alice"},
        person_b={"name": "Bob"},
    )


class TestTransaction:

    def test_commits_on_success(self):
        with store.transaction("reading:new") as session:
            session.add(_reading())

        db.session.expunge_all()
        assert ReadingRequest.query.count() == 1

    def test_rolls_back_on_error(self):
        with pytest.raises(NotFoundError):
            with store.transaction() as session:
                session.add(_reading())
                session.flush()
                raise NotFoundError("nope")

        assert ReadingRequest.query.count() == 0

    def test_rolls_back_whole_unit(self):
        """Nothing from a failed unit is visible, even rows flushed earlier."""
        with pytest.raises(RuntimeError):
            with store.transaction() as session:
                session.add(_reading())
                session.add(AuditEvent(event_type="test.event", payload={}))
                session.flush()
                raise RuntimeError("boom")

        assert ReadingRequest.query.count() == 0
        assert AuditEvent.query.count() == 0

    def test_unique_violation_is_conflict(self):
        with store.transaction() as session:
            reading = _reading()
            session.add(reading)
            session.flush()
            session.add(Order(
                reading_request_id=reading.id,
                idempotency_key="k" * 64,
                amount_cents=999,
                currency="usd",
            ))
        reading_id = ReadingRequest.query.first().id

        with pytest.raises(ConflictError):
            with store.transaction() as session:
                session.add(Order(
                    reading_request_id=reading_id,
                    idempotency_key="k" * 64,
                    amount_cents=999,
                    currency="usd",
                ))

        assert Order.query.count() == 1


class TestScopeLocks:

    def _run_pair(self, locks, first_keys, second_keys):
        """Run two critical sections concurrently, return the trace."""
        trace = []

        def worker(name, keys):
            with locks.hold(*keys):
                trace.append(f"{name}:start")
                time.sleep(0.05)
                trace.append(f"{name}:end")

        t1 = threading.Thread(target=worker, args=("a", first_keys))
        t2 = threading.Thread(target=worker, args=("b", second_keys))
        t1.start()
        time.sleep(0.01)
        t2.start()
        t1.join()
        t2.join()
        return trace

    def test_same_scope_is_serialized(self):
        trace = self._run_pair(ScopeLocks(), ["order:1"], ["order:1"])
        assert trace == ["a:start", "a:end", "b:start", "b:end"]

    def test_overlapping_scopes_are_serialized(self):
        trace = self._run_pair(ScopeLocks(), ["reading:1", "order-key:x"], ["order-key:x"])
        assert trace == ["a:start", "a:end", "b:start", "b:end"]

    def test_unrelated_scopes_interleave(self):
        trace = self._run_pair(ScopeLocks(), ["order:1"], ["order:2"])
        assert trace.index("b:start") < trace.index("a:end")

    def test_reentrant_in_same_thread(self):
        locks = ScopeLocks()
        with locks.hold("reading:1"):
            with locks.hold("reading:1"):
                pass
