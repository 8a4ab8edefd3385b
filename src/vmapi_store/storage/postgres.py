"""
PostgreSQL bucket storage.

Each bucket is a table holding a JSONB value per key plus one typed column
per indexed field. Bucket configurations (indexes + version) are recorded in
a ``vmapi_buckets_config`` table so that updates can be versioned and newly
added indexes can be backfilled by ``reindex_buckets``.
"""

from __future__ import annotations

import json
from typing import Any, Mapping, Sequence

import psycopg
from loguru import logger
from psycopg import sql as psql
from psycopg.rows import dict_row
from psycopg.types.json import Jsonb
from psycopg_pool import AsyncConnectionPool

from ..buckets.types import BucketConfig, BucketsConfig, Record
from ..errors import (
    BucketNotFoundError,
    InvalidIndexesRemovalError,
    NotIndexedError,
    StorageError,
    TransientStorageError,
    map_pg_error,
)
from .memory import validate_bucket_config

CONFIG_TABLE = "vmapi_buckets_config"

PG_TYPES = {
    "string": "text",
    "number": "numeric",
    "boolean": "boolean",
    "ip": "inet",
    "subnet": "cidr",
}


def pg_type(index_type: str) -> str:
    if index_type.startswith("[") and index_type.endswith("]"):
        return PG_TYPES[index_type[1:-1]] + "[]"
    return PG_TYPES[index_type]


def create_config_table_statement() -> psql.Composed:
    return psql.SQL(
        "CREATE TABLE IF NOT EXISTS {} ("
        "name text PRIMARY KEY, "
        "index jsonb NOT NULL, "
        "options jsonb NOT NULL, "
        "reindex_fields jsonb NOT NULL DEFAULT '[]'::jsonb, "
        "mtime timestamptz NOT NULL DEFAULT now())"
    ).format(psql.Identifier(CONFIG_TABLE))


def create_bucket_statements(bucket: BucketConfig) -> list[psql.Composed]:
    """CREATE TABLE + one index per indexed field."""
    cols = [
        psql.SQL("{} {}").format(psql.Identifier(f), psql.SQL(pg_type(spec["type"])))
        for f, spec in bucket.index.items()
    ]
    stmts = [
        psql.SQL(
            "CREATE TABLE IF NOT EXISTS {} (_key text PRIMARY KEY, _value jsonb NOT NULL{})"
        ).format(
            psql.Identifier(bucket.name),
            psql.SQL("").join(psql.SQL(", ") + c for c in cols),
        )
    ]
    for f, spec in bucket.index.items():
        stmts.append(index_statement(bucket.name, f, spec))
    return stmts


def index_statement(table: str, field: str, spec: Mapping[str, Any]) -> psql.Composed:
    using = "gin" if spec["type"].startswith("[") else "btree"
    return psql.SQL("CREATE {unique}INDEX IF NOT EXISTS {idx} ON {t} USING {using} ({col})").format(
        unique=psql.SQL("UNIQUE " if spec.get("unique") else ""),
        idx=psql.Identifier(f"{table}_{field}_idx"),
        t=psql.Identifier(table),
        using=psql.SQL(using),
        col=psql.Identifier(field),
    )


def backfill_statement(table: str, field: str, index_type: str) -> psql.Composed:
    """Populate an index column from the JSON value for rows missing it."""
    col_type = psql.SQL(pg_type(index_type))
    if index_type.startswith("["):
        expr = psql.SQL("ARRAY(SELECT jsonb_array_elements_text(_value->{f}))::{t}").format(
            f=psql.Literal(field), t=col_type
        )
    else:
        expr = psql.SQL("(_value->>{f})::{t}").format(f=psql.Literal(field), t=col_type)
    return psql.SQL(
        "UPDATE {t} SET {col} = {expr} WHERE {col} IS NULL AND _value ? {f}"
    ).format(
        t=psql.Identifier(table),
        col=psql.Identifier(field),
        expr=expr,
        f=psql.Literal(field),
    )


def upsert_record_statement(bucket: BucketConfig) -> psql.Composed:
    """INSERT ... ON CONFLICT (_key) DO UPDATE with named parameters."""
    fields = list(bucket.index)
    cols = ["_key", "_value", *fields]
    ins_cols = psql.SQL(", ").join(psql.Identifier(c) for c in cols)
    ins_vals = psql.SQL(", ").join(
        [psql.Placeholder("_key"), psql.Placeholder("_value")]
        + [
            psql.SQL("{}::{}").format(
                psql.Placeholder(f), psql.SQL(pg_type(bucket.index[f]["type"]))
            )
            for f in fields
        ]
    )
    setlist = psql.SQL(", ").join(
        psql.SQL("{} = EXCLUDED.{}").format(psql.Identifier(c), psql.Identifier(c))
        for c in cols[1:]
    )
    return psql.SQL("INSERT INTO {} ({}) VALUES ({}) ON CONFLICT (_key) DO UPDATE SET {}").format(
        psql.Identifier(bucket.name), ins_cols, ins_vals, setlist
    )


def record_params(bucket: BucketConfig, record: Record) -> dict[str, Any]:
    params: dict[str, Any] = {"_key": record.key, "_value": Jsonb(record.value)}
    for f, spec in bucket.index.items():
        v = record.value.get(f)
        if v is not None and spec["type"] in ("ip", "subnet"):
            v = str(v)
        params[f] = v
    return params


class PostgresBucketStorage:
    """psycopg-backed storage adapter.

    Example:
        async with PostgresBucketStorage("postgresql://...") as storage:
            await storage.apply_schema(DEFAULT_BUCKETS_CONFIG)
    """

    def __init__(self, dsn: str, *, pool_max: int = 5, app_name: str | None = "vmapi"):
        if not dsn:
            raise ValueError("dsn required")
        self.pool = AsyncConnectionPool(
            conninfo=dsn,
            max_size=pool_max,
            kwargs={"autocommit": False},
            open=False,
        )
        self.app_name = app_name
        self._opened = False
        self._buckets: dict[str, BucketConfig] = {}

    async def open(self) -> None:
        if not self._opened:
            await self.pool.open()
            self._opened = True

    async def aclose(self) -> None:
        if self._opened:
            await self.pool.close()
            self._opened = False

    async def __aenter__(self) -> "PostgresBucketStorage":
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    # ---------- buckets setup ----------

    async def apply_schema(self, buckets_config: BucketsConfig) -> None:
        for bucket in buckets_config.values():
            validate_bucket_config(bucket)

        await self.open()
        try:
            async with self.pool.connection() as conn:
                if self.app_name:
                    await conn.execute(
                        psql.SQL("SET application_name = {}").format(psql.Literal(self.app_name))
                    )
                await conn.execute(create_config_table_statement())
                await conn.commit()
                for model, bucket in buckets_config.items():
                    async with conn.transaction():
                        await self._setup_bucket(conn, bucket)
                    self._buckets[model] = bucket
        except psycopg.Error as e:
            raise map_pg_error(e) from e

    async def _setup_bucket(self, conn: psycopg.AsyncConnection, bucket: BucketConfig) -> None:
        cur = await conn.execute(
            psql.SQL("SELECT index, options FROM {} WHERE name = %s FOR UPDATE").format(
                psql.Identifier(CONFIG_TABLE)
            ),
            (bucket.name,),
        )
        row = await cur.fetchone()
        schema = bucket.to_dict()["schema"]
        index = schema.get("index", {})
        options = schema.get("options", {})

        if row is None:
            logger.info(f"Creating bucket {bucket.name} (version {bucket.version})")
            for stmt in create_bucket_statements(bucket):
                await conn.execute(stmt)
            await conn.execute(
                psql.SQL("INSERT INTO {} (name, index, options) VALUES (%s, %s, %s)").format(
                    psql.Identifier(CONFIG_TABLE)
                ),
                (bucket.name, Jsonb(index), Jsonb(options)),
            )
            return

        old_index, old_options = row[0], row[1]
        old_version = int(old_options.get("version", 0))
        if bucket.version <= old_version:
            logger.debug(
                f"Bucket {bucket.name} at version {old_version}, not updating to {bucket.version}"
            )
            return

        removed = sorted(set(old_index) - set(index))
        if removed:
            raise InvalidIndexesRemovalError(removed)

        added = [f for f in index if f not in old_index]
        logger.info(
            f"Updating bucket {bucket.name} from version {old_version} to {bucket.version} "
            f"(new indexes: {added})"
        )
        for f in added:
            spec = index[f]
            await conn.execute(
                psql.SQL("ALTER TABLE {} ADD COLUMN IF NOT EXISTS {} {}").format(
                    psql.Identifier(bucket.name),
                    psql.Identifier(f),
                    psql.SQL(pg_type(spec["type"])),
                )
            )
            await conn.execute(index_statement(bucket.name, f, spec))
        await conn.execute(
            psql.SQL(
                "UPDATE {} SET index = %s, options = %s, "
                "reindex_fields = reindex_fields || %s, mtime = now() WHERE name = %s"
            ).format(psql.Identifier(CONFIG_TABLE)),
            (Jsonb(index), Jsonb(options), Jsonb(added), bucket.name),
        )

    def is_transient_error(self, error: BaseException) -> bool:
        if isinstance(error, StorageError):
            return isinstance(error, TransientStorageError)
        if isinstance(error, Exception):
            return isinstance(map_pg_error(error), TransientStorageError)
        return False

    async def reindex_buckets(self, buckets_config: BucketsConfig) -> None:
        await self.open()
        try:
            async with self.pool.connection() as conn:
                for bucket in buckets_config.values():
                    async with conn.transaction():
                        cur = await conn.execute(
                            psql.SQL(
                                "SELECT reindex_fields FROM {} WHERE name = %s FOR UPDATE"
                            ).format(psql.Identifier(CONFIG_TABLE)),
                            (bucket.name,),
                        )
                        row = await cur.fetchone()
                        fields = list(row[0]) if row else []
                        for f in fields:
                            logger.info(f"Reindexing {bucket.name}.{f}")
                            await conn.execute(
                                backfill_statement(bucket.name, f, bucket.index[f]["type"])
                            )
                        await conn.execute(
                            psql.SQL(
                                "UPDATE {} SET reindex_fields = '[]'::jsonb WHERE name = %s"
                            ).format(psql.Identifier(CONFIG_TABLE)),
                            (bucket.name,),
                        )
        except psycopg.Error as e:
            raise map_pg_error(e) from e

    # ---------- data migrations ----------

    def _bucket_for(self, model: str) -> BucketConfig:
        bucket = self._buckets.get(model)
        if bucket is None:
            raise BucketNotFoundError(f"no bucket for model {model}")
        return bucket

    async def find_records_to_migrate(
        self, model: str, version: int, limit: int = 1000
    ) -> list[Record]:
        bucket = self._bucket_for(model)
        if "data_version" not in bucket.index:
            raise NotIndexedError(f"data_version is not indexed in bucket {bucket.name}")
        try:
            async with self.pool.connection() as conn:
                async with conn.cursor(row_factory=dict_row) as cur:
                    await cur.execute(
                        psql.SQL(
                            "SELECT _key, _value FROM {} "
                            "WHERE data_version IS NULL OR data_version < %s "
                            "ORDER BY _key LIMIT %s"
                        ).format(psql.Identifier(bucket.name)),
                        (version, limit),
                    )
                    rows = await cur.fetchall()
        except psycopg.Error as e:
            raise map_pg_error(e) from e

        return [
            Record(
                key=r["_key"],
                value=r["_value"] if isinstance(r["_value"], dict) else json.loads(r["_value"]),
            )
            for r in rows
        ]

    async def put_batch(self, model: str, records: Sequence[Record]) -> None:
        if not records:
            return
        bucket = self._bucket_for(model)
        stmt = upsert_record_statement(bucket)
        try:
            async with self.pool.connection() as conn:
                async with conn.cursor() as cur:
                    await cur.executemany(stmt, [record_params(bucket, r) for r in records])
                await conn.commit()
        except psycopg.Error as e:
            raise map_pg_error(e) from e
