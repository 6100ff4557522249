"""
Key-value persistence behind a small async protocol.

Records are namespaced by key prefix, e.g. ``patient:{doctorId}:{patientId}``,
so listing a doctor's patients or a patient's analyses is a prefix scan.

Implementations:
- InMemoryKeyValueStore: process-local dict, for tests and development
- SQLAlchemyKeyValueStore: one ``kv_store`` table in any SQLAlchemy database
"""

import asyncio
import copy
import json
import threading
from contextlib import nullcontext
from typing import Any, Protocol

import structlog
from sqlalchemy import Column, MetaData, String, Table, Text, create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.pool import StaticPool
from sqlalchemy.sql import delete, insert, select, update

from core.domain.errors import StorageError

logger = structlog.get_logger(__name__)

JSONRecord = dict[str, Any]


class KeyValueStore(Protocol):
    """
    Protocol for the persistence collaborator.

    Why Protocol over ABC: any engine with these four coroutines plugs in.
    """

    async def get(self, key: str) -> JSONRecord | None: ...

    async def set(self, key: str, value: JSONRecord) -> None: ...

    async def delete(self, key: str) -> bool: ...

    async def scan_prefix(self, prefix: str) -> list[JSONRecord]: ...


class InMemoryKeyValueStore:
    """Dict-backed store. Values are deep-copied in and out so callers can't alias them."""

    def __init__(self) -> None:
        self._data: dict[str, JSONRecord] = {}
        self._lock = asyncio.Lock()
        self.logger = logger.bind(component="in_memory_kv_store")

    async def get(self, key: str) -> JSONRecord | None:
        async with self._lock:
            value = self._data.get(key)
            return copy.deepcopy(value) if value is not None else None

    async def set(self, key: str, value: JSONRecord) -> None:
        async with self._lock:
            self._data[key] = copy.deepcopy(value)

    async def delete(self, key: str) -> bool:
        async with self._lock:
            return self._data.pop(key, None) is not None

    async def scan_prefix(self, prefix: str) -> list[JSONRecord]:
        async with self._lock:
            return [
                copy.deepcopy(value)
                for key, value in sorted(self._data.items())
                if key.startswith(prefix)
            ]

    def __len__(self) -> int:
        return len(self._data)


metadata = MetaData()

kv_table = Table(
    "kv_store",
    metadata,
    Column("key", String(255), primary_key=True),
    Column("value", Text, nullable=False),
)


def _escape_like(prefix: str) -> str:
    return prefix.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class SQLAlchemyKeyValueStore:
    """
    Relational store holding JSON text per key.

    Blocking driver calls run in a worker thread so handlers stay responsive.
    Driver failures surface as StorageError.
    """

    def __init__(self, url: str, engine: Engine | None = None) -> None:
        self.url = url
        self.engine = engine or self._create_engine(url)
        self.logger = logger.bind(
            component="sqlalchemy_kv_store", dialect=self.engine.dialect.name
        )
        # a StaticPool hands the same connection to every thread
        self._connection_lock = (
            threading.Lock() if isinstance(self.engine.pool, StaticPool) else nullcontext()
        )
        metadata.create_all(self.engine)

    @staticmethod
    def _create_engine(url: str) -> Engine:
        if url.startswith("sqlite"):
            kwargs: dict[str, Any] = {"connect_args": {"check_same_thread": False}}
            if url in {"sqlite://", "sqlite:///:memory:"}:
                # a single shared connection, otherwise each thread sees its own empty database
                kwargs["poolclass"] = StaticPool
            return create_engine(url, **kwargs)
        return create_engine(url, pool_pre_ping=True)

    async def _run(self, operation: str, fn, *args):  # type: ignore[no-untyped-def]
        try:
            return await asyncio.to_thread(self._locked, fn, *args)
        except SQLAlchemyError as e:
            self.logger.error("kv_operation_failed", operation=operation, error=str(e))
            raise StorageError(f"{operation} failed", details={"operation": operation}) from e

    def _locked(self, fn, *args):  # type: ignore[no-untyped-def]
        with self._connection_lock:
            return fn(*args)

    def _get_sync(self, key: str) -> JSONRecord | None:
        with self.engine.begin() as conn:
            row = conn.execute(select(kv_table.c.value).where(kv_table.c.key == key)).fetchone()
        return json.loads(row[0]) if row else None

    def _set_sync(self, key: str, value: JSONRecord) -> None:
        payload = json.dumps(value)
        replace = update(kv_table).where(kv_table.c.key == key).values(value=payload)
        with self.engine.begin() as conn:
            if conn.execute(replace).rowcount:
                return
        try:
            with self.engine.begin() as conn:
                conn.execute(insert(kv_table).values(key=key, value=payload))
        except IntegrityError:
            # a concurrent writer created the key between our update and insert
            with self.engine.begin() as conn:
                conn.execute(replace)

    def _delete_sync(self, key: str) -> bool:
        with self.engine.begin() as conn:
            result = conn.execute(delete(kv_table).where(kv_table.c.key == key))
        return result.rowcount > 0

    def _scan_sync(self, prefix: str) -> list[JSONRecord]:
        with self.engine.begin() as conn:
            rows = conn.execute(
                select(kv_table.c.key, kv_table.c.value)
                .where(kv_table.c.key.like(f"{_escape_like(prefix)}%", escape="\\"))
                .order_by(kv_table.c.key)
            ).fetchall()
        # LIKE is case-insensitive on some backends
        return [json.loads(value) for key, value in rows if key.startswith(prefix)]

    async def get(self, key: str) -> JSONRecord | None:
        return await self._run("get", self._get_sync, key)

    async def set(self, key: str, value: JSONRecord) -> None:
        await self._run("set", self._set_sync, key, value)

    async def delete(self, key: str) -> bool:
        return await self._run("delete", self._delete_sync, key)

    async def scan_prefix(self, prefix: str) -> list[JSONRecord]:
        return await self._run("scan_prefix", self._scan_sync, prefix)

    def dispose(self) -> None:
        self.engine.dispose()


def create_store(backend: str, url: str) -> KeyValueStore:
    """Build the configured store. ``backend`` is ``memory`` or ``sql``."""
    if backend == "memory":
        return InMemoryKeyValueStore()
    if backend == "sql":
        return SQLAlchemyKeyValueStore(url)
    raise ValueError(f"Unknown storage backend: {backend}")
