from __future__ import annotations

import os
import time
from collections.abc import Iterator
from contextlib import contextmanager
from decimal import Decimal
from pathlib import Path
from typing import Any

import psycopg2
from psycopg2.extras import Json
from psycopg2.pool import PoolError, ThreadedConnectionPool

from ..errors import PersistenceError
from ..mapping.apartment_type import UnitType
from ..models.config_models import DatabaseConfig
from ..models.records import LayoutRecord, ProjectRecord, UpsertAction
from .repository import layout_content_equal, project_content_equal

"""PostgreSQL backed repository (psycopg2).

- 接続はスレッドセーフなプール (ThreadedConnectionPool) から行単位で借りる。
- 1 upsert = 1 トランザクション。`with conn:` で正常終了時 COMMIT / 例外時 ROLLBACK。
- 既存行は SELECT ... FOR UPDATE でロックしてから INSERT / UPDATE を判断する。
- psycopg2.Error はすべて PersistenceError に包んで行スコープのエラーとして返す。
"""

__all__ = [
    "resolve_dsn",
    "create_pool",
    "ensure_schema",
    "pooled_cursor",
    "acquire_connection",
    "PostgresRepository",
]

SCHEMA_PATH = Path(__file__).with_name("schema.sql")
GETCONN_TIMEOUT_SECONDS = 30.0
GETCONN_RETRY_SECONDS = 0.05


def resolve_dsn(db_cfg: DatabaseConfig) -> str:
    """Build the connection DSN.

    優先順位:
        1. DATABASE_URL / PGDSN (DSN 全体)
        2. config の database.dsn
        3. 個別 PGHOST / PGPORT / PGUSER / PGPASSWORD / PGDATABASE
           (不足分は config の database セクションでフォールバック)
    """
    dsn = os.getenv("DATABASE_URL") or os.getenv("PGDSN") or db_cfg.dsn
    if dsn:
        return dsn
    host = os.getenv("PGHOST", db_cfg.host or "localhost")
    port = os.getenv("PGPORT", str(db_cfg.port) if db_cfg.port else "5432")
    user = os.getenv("PGUSER", db_cfg.user or "postgres")
    password = os.getenv("PGPASSWORD", db_cfg.password or "")
    database = os.getenv("PGDATABASE", db_cfg.database or "postgres")
    dsn = f"host={host} port={port} user={user} dbname={database}"
    if password:
        dsn += f" password={password}"
    return dsn


def create_pool(dsn: str, *, maxconn: int = 4) -> ThreadedConnectionPool:
    # タイムアウトした行のワーカーが接続を握ったままになる分 + ログ書き込み用の 1 本
    return ThreadedConnectionPool(1, maxconn * 2 + 1, dsn)


def acquire_connection(pool: ThreadedConnectionPool, timeout: float | None = None) -> Any:
    """Borrow a connection, waiting while the pool is exhausted.

    ThreadedConnectionPool raises PoolError instead of blocking; retry until
    `timeout` seconds have passed, then let the PoolError propagate.
    """
    if timeout is None:
        timeout = GETCONN_TIMEOUT_SECONDS
    deadline = time.monotonic() + timeout
    while True:
        try:
            return pool.getconn()
        except PoolError:
            if time.monotonic() >= deadline:
                raise
            time.sleep(GETCONN_RETRY_SECONDS)


@contextmanager
def pooled_cursor(pool: ThreadedConnectionPool) -> Iterator[Any]:
    conn = acquire_connection(pool)
    try:
        with conn:
            with conn.cursor() as cur:
                yield cur
    finally:
        pool.putconn(conn)


def ensure_schema(pool: ThreadedConnectionPool) -> None:
    """Create the interior_* tables if they do not exist yet."""
    ddl = SCHEMA_PATH.read_text(encoding="utf-8")
    try:
        with pooled_cursor(pool) as cur:
            cur.execute(ddl)
    except psycopg2.Error as e:
        raise PersistenceError(f"schema setup failed: {e}") from e


def _project_from_row(row: tuple) -> ProjectRecord:
    name, slug, developer, address, is_active, extra, synced_hash = row
    return ProjectRecord(
        name=name,
        slug=slug,
        developer=developer,
        address=address,
        is_active=bool(is_active),
        extra=dict(extra or {}),
        synced_hash=synced_hash,
    )


def _layout_from_row(row: tuple) -> LayoutRecord:
    project_name, layout_code, unit_type, area, price, image_ids, synced_hash = row
    return LayoutRecord(
        project_name=project_name,
        layout_code=layout_code,
        unit_type=UnitType(unit_type),
        area=Decimal(area),
        price=Decimal(price),
        image_ids=tuple(image_ids or ()),
        synced_hash=synced_hash,
    )


_PROJECT_COLUMNS = "name, slug, developer, address, is_active, extra, synced_hash"
_LAYOUT_SELECT = (
    "SELECT p.name, l.layout_code, l.unit_type, l.area, l.price, l.image_ids, l.synced_hash "
    "FROM interior_layouts l JOIN interior_projects p ON p.id = l.project_id"
)


class PostgresRepository:
    """Repository over interior_projects / interior_layouts."""

    def __init__(self, pool: ThreadedConnectionPool) -> None:
        self._pool = pool

    @contextmanager
    def _cursor(self) -> Iterator[Any]:
        try:
            with pooled_cursor(self._pool) as cur:
                yield cur
        except psycopg2.Error as e:
            raise PersistenceError(f"database error: {e}") from e

    def get_project(self, name: str) -> ProjectRecord | None:
        with self._cursor() as cur:
            cur.execute(f"SELECT {_PROJECT_COLUMNS} FROM interior_projects WHERE name = %s", (name,))
            row = cur.fetchone()
        return _project_from_row(row) if row else None

    def slug_exists(self, slug: str) -> bool:
        with self._cursor() as cur:
            cur.execute("SELECT 1 FROM interior_projects WHERE slug = %s", (slug,))
            return cur.fetchone() is not None

    def upsert_project(self, record: ProjectRecord) -> UpsertAction:
        with self._cursor() as cur:
            cur.execute(
                f"SELECT {_PROJECT_COLUMNS} FROM interior_projects WHERE name = %s FOR UPDATE",
                (record.name,),
            )
            row = cur.fetchone()
            if row is None:
                cur.execute(
                    "INSERT INTO interior_projects "
                    "(name, slug, developer, address, is_active, extra, synced_hash) "
                    "VALUES (%s, %s, %s, %s, %s, %s, %s)",
                    (
                        record.name,
                        record.slug,
                        record.developer,
                        record.address,
                        record.is_active,
                        Json(dict(record.extra)),
                        record.synced_hash,
                    ),
                )
                return UpsertAction.CREATED
            existing = _project_from_row(row)
            # slug は作成時の値を維持
            cur.execute(
                "UPDATE interior_projects SET developer = %s, address = %s, is_active = %s, "
                "extra = %s, synced_hash = COALESCE(%s, synced_hash), updated_at = now() "
                "WHERE name = %s",
                (
                    record.developer,
                    record.address,
                    record.is_active,
                    Json(dict(record.extra)),
                    record.synced_hash,
                    record.name,
                ),
            )
        if project_content_equal(existing, record):
            return UpsertAction.UNCHANGED
        return UpsertAction.UPDATED

    def list_projects(self) -> list[ProjectRecord]:
        with self._cursor() as cur:
            cur.execute(f"SELECT {_PROJECT_COLUMNS} FROM interior_projects ORDER BY name")
            rows = cur.fetchall()
        return [_project_from_row(r) for r in rows]

    def get_layout(self, project_name: str, layout_code: str) -> LayoutRecord | None:
        with self._cursor() as cur:
            cur.execute(
                f"{_LAYOUT_SELECT} WHERE p.name = %s AND l.layout_code = %s",
                (project_name, layout_code),
            )
            row = cur.fetchone()
        return _layout_from_row(row) if row else None

    def upsert_layout(self, record: LayoutRecord) -> UpsertAction:
        with self._cursor() as cur:
            cur.execute("SELECT id FROM interior_projects WHERE name = %s", (record.project_name,))
            parent = cur.fetchone()
            if parent is None:
                raise PersistenceError(f"project not found: {record.project_name}")
            project_id = parent[0]
            cur.execute(
                f"{_LAYOUT_SELECT} WHERE l.project_id = %s AND l.layout_code = %s FOR UPDATE OF l",
                (project_id, record.layout_code),
            )
            row = cur.fetchone()
            if row is None:
                cur.execute(
                    "INSERT INTO interior_layouts "
                    "(project_id, layout_code, unit_type, area, price, image_ids, synced_hash) "
                    "VALUES (%s, %s, %s, %s, %s, %s, %s)",
                    (
                        project_id,
                        record.layout_code,
                        record.unit_type.value,
                        record.area,
                        record.price,
                        Json(list(record.image_ids)),
                        record.synced_hash,
                    ),
                )
                return UpsertAction.CREATED
            existing = _layout_from_row(row)
            cur.execute(
                "UPDATE interior_layouts SET unit_type = %s, area = %s, price = %s, image_ids = %s, "
                "synced_hash = COALESCE(%s, synced_hash), updated_at = now() "
                "WHERE project_id = %s AND layout_code = %s",
                (
                    record.unit_type.value,
                    record.area,
                    record.price,
                    Json(list(record.image_ids)),
                    record.synced_hash,
                    project_id,
                    record.layout_code,
                ),
            )
        if layout_content_equal(existing, record):
            return UpsertAction.UNCHANGED
        return UpsertAction.UPDATED

    def list_layouts(self) -> list[LayoutRecord]:
        with self._cursor() as cur:
            cur.execute(f"{_LAYOUT_SELECT} ORDER BY p.name, l.layout_code")
            rows = cur.fetchall()
        return [_layout_from_row(r) for r in rows]

    def mark_project_synced(self, name: str, synced_hash: str) -> None:
        with self._cursor() as cur:
            cur.execute(
                "UPDATE interior_projects SET synced_hash = %s WHERE name = %s", (synced_hash, name)
            )
            if cur.rowcount == 0:
                raise PersistenceError(f"project not found: {name}")

    def mark_layout_synced(self, project_name: str, layout_code: str, synced_hash: str) -> None:
        with self._cursor() as cur:
            cur.execute(
                "UPDATE interior_layouts l SET synced_hash = %s FROM interior_projects p "
                "WHERE p.id = l.project_id AND p.name = %s AND l.layout_code = %s",
                (synced_hash, project_name, layout_code),
            )
            if cur.rowcount == 0:
                raise PersistenceError(f"layout not found: {project_name}/{layout_code}")
