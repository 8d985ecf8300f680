"""
Error classification for txpool.

Every exception raised by the pool carries an ErrorInfo so callers can
decide on retries without matching on message strings:

    try:
        await manager.commit(conn)
    except QueryError as e:
        if e.info.retryable:
            ...
"""

from enum import Enum
from typing import Any, Optional
from pydantic import BaseModel, Field


class ErrorKind(str, Enum):
    """Standardized error categories."""

    # Pool lifecycle
    NOT_CONNECTED = "not_connected"   # basic() before init
    POOL_CLOSED = "pool_closed"       # manager already closed
    INVALID_HANDLE = "invalid_handle" # release of a connection not borrowed

    # Database errors
    DB_CONNECTION = "db_connection"   # connect/auth/network failure
    DB_CONSTRAINT = "db_constraint"   # unique constraint, foreign key
    DB_DEADLOCK = "db_deadlock"       # transaction deadlock
    DB_TIMEOUT = "db_timeout"         # statement timeout
    DB_QUERY = "db_query"             # any other failed statement

    # Caller input
    EMPTY_INSERT = "empty_insert"

    UNKNOWN = "unknown"


class ErrorInfo(BaseModel):
    """Structured description of a failure."""

    kind: ErrorKind = Field(
        default=ErrorKind.UNKNOWN,
        description="Error category"
    )
    retryable: bool = Field(
        default=False,
        description="Whether repeating the operation may succeed"
    )
    code: str = Field(
        default="UNKNOWN",
        description="Error code (SQLSTATE based for database errors)"
    )
    message: str = Field(
        default="Unknown error",
        description="Human-readable error message"
    )
    sqlstate: Optional[str] = Field(
        None, description="SQLSTATE reported by the driver, if any"
    )
    exception_type: Optional[str] = Field(
        None, description="Class name of the underlying exception"
    )
    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Optional extra context"
    )

    def to_dict(self) -> dict[str, Any]:
        d = {
            "kind": self.kind.value,
            "retryable": self.retryable,
            "code": self.code,
            "message": self.message,
        }
        if self.sqlstate is not None:
            d["sqlstate"] = self.sqlstate
        if self.exception_type is not None:
            d["exception_type"] = self.exception_type
        if self.details:
            d["details"] = self.details
        return d


class TxPoolError(Exception):
    """Base class of all txpool errors."""

    default_kind = ErrorKind.UNKNOWN

    def __init__(self, message: str, info: Optional[ErrorInfo] = None, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.message = message
        self.cause = cause
        if info is None:
            info = ErrorInfo(kind=self.default_kind, code=self.default_kind.value.upper(), message=message)
        self.info = info


class DBConnectionError(TxPoolError):
    """The driver failed to connect, authenticate or reach the server."""

    default_kind = ErrorKind.DB_CONNECTION


class NotConnectedError(TxPoolError):
    default_kind = ErrorKind.NOT_CONNECTED


class EmptyInsertError(TxPoolError):
    default_kind = ErrorKind.EMPTY_INSERT


class QueryError(TxPoolError):
    """A command, fetch, commit or rollback failed."""

    default_kind = ErrorKind.DB_QUERY


class PoolClosedError(TxPoolError):
    default_kind = ErrorKind.POOL_CLOSED


class InvalidHandleError(TxPoolError):
    default_kind = ErrorKind.INVALID_HANDLE


def _sqlstate(error: BaseException) -> Optional[str]:
    # psycopg exposes .sqlstate, psycopg2 and several MySQL drivers .pgcode / .sqlstate
    for attr in ("sqlstate", "pgcode"):
        value = getattr(error, attr, None)
        if isinstance(value, str) and value:
            return value
    return None


def classify_db_error(error: BaseException) -> ErrorInfo:
    """Classify a driver exception."""
    error_str = str(error).lower()
    sqlstate = _sqlstate(error)
    code = f"SQL_{sqlstate}" if sqlstate else "SQL_UNKNOWN"
    error_type = type(error).__name__

    if "deadlock" in error_str or sqlstate in ("40001", "40P01"):
        kind, retryable = ErrorKind.DB_DEADLOCK, True
    elif "duplicate" in error_str or "unique" in error_str or (sqlstate and sqlstate.startswith("23")):
        kind, retryable = ErrorKind.DB_CONSTRAINT, False
    elif "connection" in error_str or (sqlstate and sqlstate.startswith("08")):
        kind, retryable = ErrorKind.DB_CONNECTION, True
    elif "timeout" in error_str or "timed out" in error_str or sqlstate == "57014":
        kind, retryable = ErrorKind.DB_TIMEOUT, True
    else:
        kind, retryable = ErrorKind.DB_QUERY, False

    return ErrorInfo(
        kind=kind,
        retryable=retryable,
        code=code,
        message=str(error),
        sqlstate=sqlstate,
        exception_type=error_type,
    )


def query_error(error: BaseException, sql: Optional[str] = None) -> QueryError:
    """Wrap a driver exception raised while running a statement."""
    if isinstance(error, QueryError):
        return error
    info = classify_db_error(error)
    if sql is not None:
        info.details["sql"] = sql
    return QueryError(str(error) or type(error).__name__, info=info, cause=error)


def connection_error(error: BaseException) -> DBConnectionError:
    """Wrap a driver exception raised while connecting."""
    if isinstance(error, DBConnectionError):
        return error
    info = classify_db_error(error)
    info.kind = ErrorKind.DB_CONNECTION
    info.retryable = True
    return DBConnectionError(str(error) or type(error).__name__, info=info, cause=error)
