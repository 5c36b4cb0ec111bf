# Tests for connections/resolver.py
# Created: 2026-02-08

from datetime import UTC, datetime, timedelta

from calendarlink.broker.deletion import ConnectedAccountDelete
from calendarlink.connections.models import ConnectionCandidate
from calendarlink.connections.resolver import DuplicateResolver, select
from calendarlink.errors import BrokerUnavailableError

T0 = datetime(2026, 2, 1, 12, 0, tzinfo=UTC)


def cand(id, status, minutes=None):
    created = T0 + timedelta(minutes=minutes) if minutes is not None else None
    return ConnectionCandidate(id=id, app_name="googlecalendar", status=status, created_at=created)


class TestSelect:
    def test_empty(self):
        result = select([])
        assert result.keep is None
        assert result.to_delete == []

    def test_single_is_kept_whatever_its_status(self):
        only = cand("c1", "FAILED", 0)
        result = select([only])
        assert result.keep is only
        assert result.to_delete == []

    def test_active_beats_newer_pending(self):
        older_active = cand("a", "active", 0)
        newer_pending = cand("p", "pending", 10)
        result = select([newer_pending, older_active])
        assert result.keep.id == "a"
        assert [c.id for c in result.to_delete] == ["p"]

    def test_newest_active_wins(self):
        result = select(
            [cand("a1", "ACTIVE", 0), cand("a2", "CONNECTED", 5), cand("i", "INITIATED", 9)]
        )
        assert result.keep.id == "a2"
        assert {c.id for c in result.to_delete} == {"a1", "i"}

    def test_valid_state_bucket_when_nothing_active(self):
        result = select(
            [cand("f", "FAILED", 20), cand("i1", "INITIATED", 1), cand("i2", "enabled", 2)]
        )
        assert result.keep.id == "i2"

    def test_valid_state_excludes_failures(self):
        result = select([cand("x", "initiated_failed", 30), cand("i", "INITIATED", 1)])
        assert result.keep.id == "i"

    def test_fallback_to_most_recent(self):
        result = select([cand("f1", "FAILED", 1), cand("f2", "ERROR", 3), cand("u", "weird", 2)])
        assert result.keep.id == "f2"

    def test_missing_created_at_sorts_oldest(self):
        result = select([cand("none", "ACTIVE"), cand("dated", "ACTIVE", 0)])
        assert result.keep.id == "dated"

    def test_ties_broken_by_id(self):
        a = select([cand("b", "ACTIVE", 0), cand("a", "ACTIVE", 0)])
        b = select([cand("a", "ACTIVE", 0), cand("b", "ACTIVE", 0)])
        assert a.keep.id == b.keep.id == "b"

    def test_resolution_is_idempotent(self):
        candidates = [
            cand("a", "INITIATED", 3),
            cand("b", "FAILED", 9),
            cand("c", "ACTIVE", 1),
            cand("d", "ACTIVE", 1),
            cand("e", None, None),
        ]
        first = select(candidates)
        survivors = [first.keep] + [c for c in first.to_delete if c.id == "b"]
        second = select(survivors)
        assert second.keep.id == first.keep.id


class OnlyAccountDelete:
    def __init__(self, fail_ids=()):
        self.fail_ids = set(fail_ids)
        self.deleted = []

    async def delete_connected_account(self, connection_id):
        if connection_id in self.fail_ids:
            raise BrokerUnavailableError("nope", status_code=500)
        self.deleted.append(connection_id)


class TestDuplicateResolver:
    async def test_deletes_everything_but_keep(self):
        client = OnlyAccountDelete()
        resolver = DuplicateResolver(client)
        result = await resolver.resolve(
            "user_example_com", [cand("c1", "ACTIVE", 5), cand("c2", "INITIATED", 1)]
        )
        assert result.keep.id == "c1"
        assert client.deleted == ["c2"]
        assert result.deleted == ["c2"]
        assert result.undeletable == []

    async def test_undeletable_does_not_block_keep(self):
        client = OnlyAccountDelete(fail_ids={"c2"})
        resolver = DuplicateResolver(client, strategies=[ConnectedAccountDelete()])
        result = await resolver.resolve(
            "e", [cand("c1", "ACTIVE", 5), cand("c2", "INITIATED", 1), cand("c3", "FAILED", 0)]
        )
        assert result.keep.id == "c1"
        assert result.undeletable == ["c2"]
        assert result.deleted == ["c3"]

    async def test_client_without_delete_capability(self):
        resolver = DuplicateResolver(object())
        result = await resolver.resolve("e", [cand("c1", "ACTIVE", 5), cand("c2", "ACTIVE", 1)])
        assert result.keep.id == "c1"
        assert result.undeletable == ["c2"]

    async def test_single_candidate_makes_no_calls(self):
        client = OnlyAccountDelete()
        result = await DuplicateResolver(client).resolve("e", [cand("c1", "PENDING", 0)])
        assert result.keep.id == "c1"
        assert client.deleted == []
