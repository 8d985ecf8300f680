"""
PostgreSQL driver built on psycopg 3.

Rows come back as dicts (dict_row). Column metadata is derived from the
cursor description so the row converter sees the same type names it would
get from a MySQL-family driver.
"""
import re
from typing import Any, Dict, Mapping, Optional

import psycopg
from psycopg.rows import dict_row

from txpool.driver.base import ColumnMeta, Driver, QueryInfo, QueryResult
from txpool.logger import setup_logger

logger = setup_logger(__name__, include_location=True)

# PostgreSQL type name -> converter type name
PG_TYPE_NAMES = {
    "int2": "SMALLINT",
    "int4": "INTEGER",
    "int8": "BIGINT",
    "oid": "INTEGER",
    "numeric": "DECIMAL",
    "float4": "FLOAT",
    "float8": "DOUBLE",
    "money": "DECIMAL",
    "date": "DATE",
    "timestamp": "DATETIME",
    "timestamptz": "TIMESTAMP",
}

_AUTOCOMMIT_RE = re.compile(r"^\s*SET\s+autocommit\s*=\s*([01])\s*;?\s*$", re.IGNORECASE)
_FINAL_RE = re.compile(r"^\s*(COMMIT|ROLLBACK)\s*;?\s*$", re.IGNORECASE)

# connect() keywords that are spelled differently in libpq
_PARAM_ALIASES = {
    "charset": "client_encoding",
    "database": "dbname",
    "db": "dbname",
}


def conninfo_kwargs(config: Mapping[str, Any]) -> Dict[str, Any]:
    """Translate pass-through connection settings into psycopg connect() kwargs."""
    kwargs: Dict[str, Any] = {}
    for key, value in config.items():
        if value is None:
            continue
        kwargs[_PARAM_ALIASES.get(key, key)] = value
    return kwargs


class PsycopgDriver(Driver):

    def __init__(self):
        super().__init__()
        self._conn: Optional[psycopg.AsyncConnection] = None

    @property
    def connected(self) -> bool:
        return self._conn is not None and not self._conn.closed

    async def connect(self, config: Mapping[str, Any]) -> None:
        try:
            self._conn = await psycopg.AsyncConnection.connect(
                autocommit=True,
                row_factory=dict_row,
                **conninfo_kwargs(config),
            )
        except psycopg.Error as e:
            logger.error(f"PostgreSQL connect failed: {e}")
            self.emit("error", e)
            raise
        self.emit("ready")

    async def query(self, sql: str, params: Optional[Mapping[str, Any]] = None) -> QueryResult:
        if self._conn is None or self._conn.closed:
            raise psycopg.OperationalError("the connection is closed")
        try:
            session_result = await self._session_command(sql)
            if session_result is not None:
                return session_result
            async with self._conn.cursor() as cur:
                await cur.execute(sql, params or None)
                rows = []
                metadata = None
                if cur.description:
                    rows = await cur.fetchall()
                    metadata = self._describe(cur)
                info = QueryInfo(
                    num_rows=len(rows) if cur.description else cur.rowcount,
                    affected_rows=cur.rowcount,
                    insert_id=None,
                    metadata=metadata,
                )
                return QueryResult(rows=list(rows), info=info)
        except psycopg.OperationalError:
            if self._conn.closed or self._conn.broken:
                logger.warning("PostgreSQL session lost while running a statement")
                self.emit("close")
            raise

    async def close(self) -> None:
        if self._conn is None:
            return
        conn, self._conn = self._conn, None
        try:
            await conn.close()
        finally:
            self.emit("close")

    async def _session_command(self, sql: str) -> Optional[QueryResult]:
        # psycopg tracks transaction state client side, so session level
        # statements go through its API instead of being sent as text
        match = _AUTOCOMMIT_RE.match(sql)
        if match:
            await self._conn.set_autocommit(match.group(1) == "1")
            return QueryResult(info=QueryInfo(num_rows=0, affected_rows=0))
        match = _FINAL_RE.match(sql)
        if match:
            if match.group(1).upper() == "COMMIT":
                await self._conn.commit()
            else:
                await self._conn.rollback()
            return QueryResult(info=QueryInfo(num_rows=0, affected_rows=0))
        return None

    def _describe(self, cur) -> Dict[str, ColumnMeta]:
        metadata = {}
        for column in cur.description:
            info = self._conn.adapters.types.get(column.type_code)
            type_name = info.name if info is not None else ""
            metadata[column.name] = ColumnMeta(type=PG_TYPE_NAMES.get(type_name, type_name.upper()))
        return metadata
