"""
Durable stores for the execution lock record.

Two backends with the same three-call surface (load / save / delete):

    FileLockStore      JSON file, atomic replace on every write
    PostgresLockStore  one row per episode in commitment_execution_locks

An absent, corrupt, or wrong-version record loads as None, which the guard
treats as UNLOCKED until the ledger says otherwise.
"""
from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Optional, Protocol, Union

import pydantic

from .database import Database
from .models import ExecutionLockRecord

logger = logging.getLogger(__name__)

LOCK_TABLE = "commitment_execution_locks"


class LockStore(Protocol):
    """Persistence interface used by the execution guard."""

    async def load(self) -> Optional[ExecutionLockRecord]:
        ...

    async def save(self, record: ExecutionLockRecord) -> None:
        ...

    async def delete(self) -> None:
        ...


def _parse_record(raw: Union[str, bytes], source: str) -> Optional[ExecutionLockRecord]:
    try:
        record = ExecutionLockRecord.model_validate_json(raw)
    except pydantic.ValidationError as e:
        logger.warning(f"Ignoring unreadable lock record at {source}: {e}")
        return None
    if not record.is_current_version:
        logger.warning(
            f"Ignoring lock record at {source} with unsupported version {record.version}"
        )
        return None
    return record


class FileLockStore:
    """
    Lock record stored as a JSON file.

    Writes go to a temp file in the same directory and are moved into place
    with os.replace, so a crash mid-write leaves the previous record intact.
    """

    def __init__(self, path: Union[str, Path]) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    async def load(self) -> Optional[ExecutionLockRecord]:
        try:
            raw = self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except (OSError, UnicodeDecodeError) as e:
            logger.warning(f"Cannot read lock record {self._path}: {e}")
            return None
        return _parse_record(raw, str(self._path))

    async def save(self, record: ExecutionLockRecord) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        payload = json.dumps(record.model_dump(mode="json"), indent=2, sort_keys=True)

        fd, tmp_path = tempfile.mkstemp(
            prefix=f".{self._path.name}.", suffix=".tmp", dir=str(self._path.parent)
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(payload)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_path, self._path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    async def delete(self) -> None:
        try:
            self._path.unlink()
        except FileNotFoundError:
            pass


class PostgresLockStore:
    """
    Lock record shared between processes through PostgreSQL.

    Usage:
        store = PostgresLockStore(db, episode_id_for(commitment_text, governor))
        await store.ensure_schema()
        record = await store.load()
    """

    def __init__(self, db: Database, episode_id: str) -> None:
        self._db = db
        self._episode_id = episode_id

    @property
    def episode_id(self) -> str:
        return self._episode_id

    async def ensure_schema(self) -> None:
        await self._db.execute(
            f"""
            CREATE TABLE IF NOT EXISTS {LOCK_TABLE} (
                episode_id TEXT PRIMARY KEY,
                record JSONB NOT NULL,
                updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
            )
            """
        )

    async def load(self) -> Optional[ExecutionLockRecord]:
        row = await self._db.fetchrow(
            f"SELECT record FROM {LOCK_TABLE} WHERE episode_id = $1",
            self._episode_id,
        )
        if row is None:
            return None
        return _parse_record(row["record"], f"{LOCK_TABLE}/{self._episode_id}")

    async def save(self, record: ExecutionLockRecord) -> None:
        await self._db.execute(
            f"""
            INSERT INTO {LOCK_TABLE} (episode_id, record, updated_at)
            VALUES ($1, $2::jsonb, now())
            ON CONFLICT (episode_id)
            DO UPDATE SET record = EXCLUDED.record, updated_at = now()
            """,
            self._episode_id,
            record.model_dump_json(),
        )

    async def delete(self) -> None:
        await self._db.execute(
            f"DELETE FROM {LOCK_TABLE} WHERE episode_id = $1",
            self._episode_id,
        )
