"""Tests for jobrunner.registry.store.

Covers the JobStore lifecycle, unit uniqueness, token resolution,
ordering, name-prefix filtering, state caching and pruning.
"""

from __future__ import annotations

from datetime import timedelta
from pathlib import Path

import pytest

from jobrunner.core.errors import JobConflictError, JobNotFoundError
from jobrunner.registry.store import JobStore

from tests.helpers import FakeClock


async def _add(store: JobStore, name: str = "job", unit: str | None = None, **kw) -> int:
    unit = unit or f"jr-{name}-{await store.count()}.service"
    return await store.create(name, unit, "/tmp", [name, "--flag"], **kw)


# ─── Connection Lifecycle ──────────────────────────────────────────────


class TestLifecycle:
    """Tests for JobStore open/close lifecycle."""

    @pytest.mark.asyncio
    async def test_open_creates_parent_directories(self, tmp_path: Path):
        """Opening creates the database file and missing parents."""
        db_path = tmp_path / "nested" / "dir" / "jr.db"
        store = JobStore(db_path)
        await store.open()
        assert db_path.exists()
        await store.close()

    @pytest.mark.asyncio
    async def test_close_idempotent(self, tmp_path: Path):
        store = JobStore(tmp_path / "jr.db")
        await store.open()
        await store.close()
        await store.close()  # Should not raise

    @pytest.mark.asyncio
    async def test_use_before_open_raises(self, tmp_path: Path):
        store = JobStore(tmp_path / "jr.db")
        with pytest.raises(RuntimeError, match="not opened"):
            await store.list()

    @pytest.mark.asyncio
    async def test_async_context_manager(self, tmp_path: Path):
        async with JobStore(tmp_path / "jr.db") as store:
            job_id = await _add(store)
            assert await store.get_by_id(job_id) is not None
        assert store._conn is None

    @pytest.mark.asyncio
    async def test_data_survives_reopen(self, tmp_path: Path):
        db_path = tmp_path / "jr.db"
        async with JobStore(db_path) as store:
            job_id = await _add(store, "persist")
        async with JobStore(db_path) as store:
            job = await store.get_by_id(job_id)
            assert job is not None
            assert job.name == "persist"


# ─── Create & Get ──────────────────────────────────────────────────────


class TestCreateAndGet:
    @pytest.mark.asyncio
    async def test_round_trip_fields(self, store: JobStore, clock: FakeClock):
        """All recorded fields come back as they were given."""
        job_id = await store.create(
            "train",
            "jr-train-1.service",
            "/work",
            ["python", "train.py", "--lr", "0.1"],
            env={"CUDA_VISIBLE_DEVICES": "0"},
            properties={"MemoryMax": "4G"},
            host="box",
            user="alice",
        )
        job = await store.get_by_id(job_id)
        assert job is not None
        assert job.id == job_id
        assert job.name == "train"
        assert job.unit == "jr-train-1.service"
        assert job.cwd == "/work"
        assert job.argv == ["python", "train.py", "--lr", "0.1"]
        assert job.env == {"CUDA_VISIBLE_DEVICES": "0"}
        assert job.properties == {"MemoryMax": "4G"}
        assert job.host == "box"
        assert job.user == "alice"
        assert job.created_at == clock.now
        assert job.notes is None
        assert job.last_known_state is None
        assert job.last_state_at is None

    @pytest.mark.asyncio
    async def test_optional_fields_absent(self, store: JobStore):
        """Empty host/user and missing env/properties are stored as NULL."""
        job_id = await store.create("j", "jr-j.service", "/", ["true"], host="", user="")
        job = await store.get_by_id(job_id)
        assert job is not None
        assert job.env is None
        assert job.properties is None
        assert job.host is None
        assert job.user is None

    @pytest.mark.asyncio
    async def test_get_missing_returns_none(self, store: JobStore):
        assert await store.get_by_id(999) is None
        assert await store.get_by_unit("jr-nope.service") is None

    @pytest.mark.asyncio
    async def test_get_by_unit(self, store: JobStore):
        job_id = await _add(store, unit="jr-by-unit.service")
        job = await store.get_by_unit("jr-by-unit.service")
        assert job is not None
        assert job.id == job_id


class TestUnitUniqueness:
    @pytest.mark.asyncio
    async def test_duplicate_unit_conflicts(self, store: JobStore):
        await _add(store, "first", unit="jr-dup.service")
        with pytest.raises(JobConflictError) as exc_info:
            await _add(store, "second", unit="jr-dup.service")
        assert exc_info.value.unit == "jr-dup.service"

    @pytest.mark.asyncio
    async def test_conflict_leaves_store_unchanged(self, store: JobStore):
        first_id = await _add(store, "first", unit="jr-dup.service")
        with pytest.raises(JobConflictError):
            await _add(store, "second", unit="jr-dup.service")

        assert await store.count() == 1
        job = await store.get_by_unit("jr-dup.service")
        assert job is not None
        assert job.id == first_id
        assert job.name == "first"

    @pytest.mark.asyncio
    async def test_store_usable_after_conflict(self, store: JobStore):
        await _add(store, unit="jr-dup.service")
        with pytest.raises(JobConflictError):
            await _add(store, unit="jr-dup.service")
        await _add(store, unit="jr-other.service")
        assert await store.count() == 2


# ─── Resolution ────────────────────────────────────────────────────────


class TestResolve:
    @pytest.mark.asyncio
    async def test_integer_token_is_id(self, store: JobStore):
        job_id = await _add(store, unit="jr-a.service")
        job = await store.resolve(str(job_id))
        assert job is not None
        assert job.unit == "jr-a.service"

    @pytest.mark.asyncio
    async def test_other_token_is_unit(self, store: JobStore):
        job_id = await _add(store, unit="jr-a.service")
        job = await store.resolve("jr-a.service")
        assert job is not None
        assert job.id == job_id

    @pytest.mark.asyncio
    async def test_numeric_unit_not_reachable_by_unit(self, store: JobStore):
        """An integer-looking token never falls back to a unit lookup."""
        await _add(store, unit="12345")
        assert await store.resolve("12345") is None

    @pytest.mark.asyncio
    async def test_negative_integer_is_id_lookup(self, store: JobStore):
        await _add(store, unit="-1")
        assert await store.resolve("-1") is None

    @pytest.mark.asyncio
    async def test_partial_unit_does_not_match(self, store: JobStore):
        await _add(store, unit="jr-abc.service")
        assert await store.resolve("jr-abc") is None

    @pytest.mark.asyncio
    async def test_missing(self, store: JobStore):
        assert await store.resolve("42") is None
        assert await store.resolve("jr-missing.service") is None

    @pytest.mark.asyncio
    async def test_integer_beyond_sqlite_range_is_missing(self, store: JobStore):
        await _add(store, unit="jr-a.service")
        assert await store.resolve("99999999999999999999") is None
        assert await store.resolve("-99999999999999999999") is None
        assert await store.resolve(str(2**63)) is None


# ─── Listing ───────────────────────────────────────────────────────────


class TestList:
    @pytest.mark.asyncio
    async def test_newest_first(self, store: JobStore, clock: FakeClock):
        ids = []
        for i in range(3):
            ids.append(await _add(store, f"j{i}"))
            clock.advance(seconds=1)
        jobs = await store.list()
        assert [j.id for j in jobs] == list(reversed(ids))

    @pytest.mark.asyncio
    async def test_ties_broken_by_id(self, store: JobStore):
        """Jobs created in the same instant list higher id first."""
        ids = [await _add(store, f"same{i}") for i in range(4)]
        jobs = await store.list()
        assert [j.id for j in jobs] == sorted(ids, reverse=True)

    @pytest.mark.asyncio
    async def test_sub_second_ordering(self, store: JobStore, clock: FakeClock):
        first = await _add(store, "a")
        clock.advance(microseconds=1)
        second = await _add(store, "b")
        jobs = await store.list()
        assert [j.id for j in jobs] == [second, first]

    @pytest.mark.asyncio
    async def test_limit_applied_after_ordering(self, store: JobStore, clock: FakeClock):
        ids = []
        for i in range(5):
            ids.append(await _add(store, f"j{i}"))
            clock.advance(seconds=1)
        jobs = await store.list(limit=2)
        assert [j.id for j in jobs] == [ids[4], ids[3]]

    @pytest.mark.asyncio
    async def test_all_ignores_limit(self, store: JobStore):
        for i in range(5):
            await _add(store, f"j{i}")
        assert len(await store.list(limit=2, all=True)) == 5

    @pytest.mark.asyncio
    async def test_empty(self, store: JobStore):
        assert await store.list() == []


class TestListByNamePrefix:
    @pytest.mark.asyncio
    async def test_prefix_match(self, store: JobStore):
        await _add(store, "train-a")
        await _add(store, "train-b")
        await _add(store, "eval")
        names = sorted(j.name for j in await store.list_by_name_prefix("train"))
        assert names == ["train-a", "train-b"]

    @pytest.mark.asyncio
    async def test_case_sensitive(self, store: JobStore):
        await _add(store, "Train")
        await _add(store, "train")
        jobs = await store.list_by_name_prefix("train")
        assert [j.name for j in jobs] == ["train"]

    @pytest.mark.asyncio
    async def test_wildcards_are_literal(self, store: JobStore):
        await _add(store, "a_b")
        await _add(store, "axb")
        await _add(store, "50%off")
        await _add(store, "500")
        assert [j.name for j in await store.list_by_name_prefix("a_")] == ["a_b"]
        assert [j.name for j in await store.list_by_name_prefix("50%")] == ["50%off"]

    @pytest.mark.asyncio
    async def test_limit_and_unbounded(self, store: JobStore, clock: FakeClock):
        ids = []
        for _ in range(4):
            ids.append(await _add(store, "sweep"))
            clock.advance(seconds=1)
        limited = await store.list_by_name_prefix("sweep", 2)
        assert [j.id for j in limited] == [ids[3], ids[2]]
        assert len(await store.list_by_name_prefix("sweep", None)) == 4


# ─── Mutations ─────────────────────────────────────────────────────────


class TestUpdates:
    @pytest.mark.asyncio
    async def test_update_state(self, store: JobStore, clock: FakeClock):
        job_id = await _add(store)
        clock.advance(minutes=5)
        await store.update_state(job_id, "failed")
        job = await store.get_by_id(job_id)
        assert job is not None
        assert job.last_known_state == "failed"
        assert job.last_state_at == clock.now

    @pytest.mark.asyncio
    async def test_update_state_overwrites(self, store: JobStore):
        job_id = await _add(store)
        await store.update_state(job_id, "active")
        await store.update_state(job_id, "stopped")
        job = await store.get_by_id(job_id)
        assert job is not None
        assert job.last_known_state == "stopped"

    @pytest.mark.asyncio
    async def test_update_state_missing(self, store: JobStore):
        with pytest.raises(JobNotFoundError) as exc_info:
            await store.update_state(77, "failed")
        assert exc_info.value.job_id == 77

    @pytest.mark.asyncio
    async def test_set_notes(self, store: JobStore):
        job_id = await _add(store)
        await store.set_notes(job_id, "baseline run")
        job = await store.get_by_id(job_id)
        assert job is not None
        assert job.notes == "baseline run"

    @pytest.mark.asyncio
    async def test_set_notes_missing(self, store: JobStore):
        with pytest.raises(JobNotFoundError):
            await store.set_notes(5, "x")

    @pytest.mark.asyncio
    async def test_delete(self, store: JobStore):
        job_id = await _add(store)
        assert await store.delete(job_id) is True
        assert await store.get_by_id(job_id) is None

    @pytest.mark.asyncio
    async def test_delete_missing_is_not_error(self, store: JobStore):
        assert await store.delete(12345) is False

    @pytest.mark.asyncio
    async def test_unit_not_reused_after_delete(self, store: JobStore):
        """Deleting frees the row, and a new insert gets a fresh id."""
        first = await _add(store, unit="jr-x.service")
        await store.delete(first)
        second = await _add(store, unit="jr-y.service")
        assert second != first


# ─── Prune ─────────────────────────────────────────────────────────────


class TestPrune:
    """prune() deletes rows matching the conjunction of active filters."""

    async def _seed(self, store: JobStore, clock: FakeClock) -> list[int]:
        """Six jobs, one per day; ids[0] oldest. Jobs 0, 2 and 5 failed."""
        ids = []
        for i in range(6):
            ids.append(await _add(store, f"j{i}"))
            clock.advance(days=1)
        for idx in (0, 2, 5):
            await store.update_state(ids[idx], "failed")
        return ids

    async def _remaining(self, store: JobStore) -> set[int]:
        return {j.id for j in await store.list(all=True)}

    @pytest.mark.asyncio
    async def test_no_filter_is_noop(self, store: JobStore, clock: FakeClock):
        ids = await self._seed(store, clock)
        assert await store.prune() == 0
        assert await store.prune(keep=0, older_than=timedelta(0)) == 0
        assert await self._remaining(store) == set(ids)

    @pytest.mark.asyncio
    async def test_keep_only(self, store: JobStore, clock: FakeClock):
        ids = await self._seed(store, clock)
        assert await store.prune(keep=2) == 4
        assert await self._remaining(store) == {ids[4], ids[5]}

    @pytest.mark.asyncio
    async def test_keep_larger_than_table(self, store: JobStore, clock: FakeClock):
        ids = await self._seed(store, clock)
        assert await store.prune(keep=100) == 0
        assert await self._remaining(store) == set(ids)

    @pytest.mark.asyncio
    async def test_older_than_only(self, store: JobStore, clock: FakeClock):
        # now = 6 days after the first job; ages are 6,5,4,3,2,1 days
        ids = await self._seed(store, clock)
        assert await store.prune(older_than=timedelta(days=3, hours=12)) == 3
        assert await self._remaining(store) == set(ids[3:])

    @pytest.mark.asyncio
    async def test_older_than_before_earliest_date(self, store: JobStore, clock: FakeClock):
        """A cutoff earlier than any representable date deletes nothing."""
        ids = await self._seed(store, clock)
        assert await store.prune(older_than=timedelta(days=1_000_000)) == 0
        assert await store.prune(keep=1, older_than=timedelta.max) == 0
        assert await self._remaining(store) == set(ids)

    @pytest.mark.asyncio
    async def test_failed_only(self, store: JobStore, clock: FakeClock):
        ids = await self._seed(store, clock)
        assert await store.prune(failed_only=True) == 3
        assert await self._remaining(store) == {ids[1], ids[3], ids[4]}

    @pytest.mark.asyncio
    async def test_keep_and_failed(self, store: JobStore, clock: FakeClock):
        """Only failed jobs outside the newest 3 go."""
        ids = await self._seed(store, clock)
        assert await store.prune(keep=3, failed_only=True) == 2
        assert await self._remaining(store) == {ids[1], ids[3], ids[4], ids[5]}

    @pytest.mark.asyncio
    async def test_all_three_filters(self, store: JobStore, clock: FakeClock):
        ids = await self._seed(store, clock)
        # keep newest 2 -> candidates 0..3; older than 4.5 days -> 0, 1;
        # failed -> 0
        deleted = await store.prune(
            keep=2, older_than=timedelta(days=4, hours=12), failed_only=True
        )
        assert deleted == 1
        assert await self._remaining(store) == set(ids[1:])
