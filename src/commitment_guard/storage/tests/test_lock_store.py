"""
Tests for lock record persistence.
"""
import json
from unittest.mock import AsyncMock

import pytest

from commitment_guard.execution import ExecutionGuard, LockState
from commitment_guard.storage import (
    LOCK_TABLE,
    ExecutionLockRecord,
    FileLockStore,
    PostgresLockStore,
    episode_id_for,
)

REF = "0x" + "ab" * 32


class TestEpisodeId:
    def test_stable_and_case_insensitive_in_governor(self):
        a = episode_id_for("sell WETH above 1800", "0xAbC0000000000000000000000000000000000001")
        b = episode_id_for("sell WETH above 1800", "0xabc0000000000000000000000000000000000001")
        assert a == b
        assert len(a) == 32

    def test_depends_on_commitment_text(self):
        governor = "0x3333333333333333333333333333333333333333"
        assert episode_id_for("a", governor) != episode_id_for("b", governor)


class TestFileLockStore:
    @pytest.mark.asyncio
    async def test_missing_file_loads_none(self, tmp_path):
        assert await FileLockStore(tmp_path / "lock.json").load() is None

    @pytest.mark.asyncio
    async def test_save_then_load(self, tmp_path):
        store = FileLockStore(tmp_path / "state" / "lock.json")
        record = ExecutionLockRecord(
            submitted=True, proposal_ref=REF, submitted_at_ms=5, fired_trigger_ids=["t1"]
        )

        await store.save(record)

        assert await store.load() == record
        assert json.loads(store.path.read_text())["proposal_ref"] == REF

    @pytest.mark.asyncio
    async def test_save_leaves_no_temp_files(self, tmp_path):
        store = FileLockStore(tmp_path / "lock.json")
        await store.save(ExecutionLockRecord())
        await store.save(ExecutionLockRecord(closed=True))

        assert [p.name for p in tmp_path.iterdir()] == ["lock.json"]
        assert (await store.load()).closed is True

    @pytest.mark.asyncio
    async def test_corrupt_file_loads_none(self, tmp_path):
        path = tmp_path / "lock.json"
        path.write_text("{not json")
        assert await FileLockStore(path).load() is None

    @pytest.mark.asyncio
    async def test_undecodable_file_loads_none(self, tmp_path):
        path = tmp_path / "lock.json"
        path.write_bytes(b"\xff\xfe\x00garbage")
        assert await FileLockStore(path).load() is None

    @pytest.mark.asyncio
    async def test_undecodable_file_hydrates_unlocked(self, tmp_path):
        path = tmp_path / "lock.json"
        path.write_bytes(b"\xff\xfe\x00garbage")
        guard = ExecutionGuard(FileLockStore(path))
        assert await guard.hydrate() is LockState.UNLOCKED

    @pytest.mark.asyncio
    async def test_wrong_version_loads_none(self, tmp_path):
        path = tmp_path / "lock.json"
        path.write_text(json.dumps({"version": 99, "submitted": True}))
        assert await FileLockStore(path).load() is None

    @pytest.mark.asyncio
    async def test_unknown_fields_are_ignored(self, tmp_path):
        path = tmp_path / "lock.json"
        path.write_text(json.dumps({"version": 1, "closed": True, "note": "manual"}))
        assert (await FileLockStore(path).load()).closed is True

    @pytest.mark.asyncio
    async def test_delete(self, tmp_path):
        store = FileLockStore(tmp_path / "lock.json")
        await store.save(ExecutionLockRecord())

        await store.delete()
        await store.delete()

        assert await store.load() is None


class TestPostgresLockStore:
    @pytest.fixture
    def db(self):
        db = AsyncMock()
        db.fetchrow.return_value = None
        return db

    @pytest.mark.asyncio
    async def test_ensure_schema(self, db):
        await PostgresLockStore(db, "ep1").ensure_schema()

        sql = db.execute.await_args.args[0]
        assert f"CREATE TABLE IF NOT EXISTS {LOCK_TABLE}" in sql

    @pytest.mark.asyncio
    async def test_load_missing_row(self, db):
        assert await PostgresLockStore(db, "ep1").load() is None
        assert db.fetchrow.await_args.args[1] == "ep1"

    @pytest.mark.asyncio
    async def test_load_row(self, db):
        db.fetchrow.return_value = {
            "record": ExecutionLockRecord(submitted=True, proposal_ref=REF).model_dump_json()
        }

        record = await PostgresLockStore(db, "ep1").load()

        assert record.submitted is True
        assert record.proposal_ref == REF

    @pytest.mark.asyncio
    async def test_load_wrong_version(self, db):
        db.fetchrow.return_value = {"record": json.dumps({"version": 2})}
        assert await PostgresLockStore(db, "ep1").load() is None

    @pytest.mark.asyncio
    async def test_save_upserts(self, db):
        record = ExecutionLockRecord(closed=True, closed_ref=REF)

        await PostgresLockStore(db, "ep1").save(record)

        sql, episode_id, payload = db.execute.await_args.args
        assert "ON CONFLICT (episode_id)" in sql
        assert episode_id == "ep1"
        assert ExecutionLockRecord.model_validate_json(payload) == record

    @pytest.mark.asyncio
    async def test_delete(self, db):
        await PostgresLockStore(db, "ep1").delete()

        sql, episode_id = db.execute.await_args.args
        assert sql.startswith(f"DELETE FROM {LOCK_TABLE}")
        assert episode_id == "ep1"
