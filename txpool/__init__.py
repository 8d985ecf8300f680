from .config import Settings
from .connection import Connection, ConnectionState
from .convert import convert_row
from .driver import ColumnMeta, Driver, QueryInfo, QueryResult
from .errors import (
    DBConnectionError,
    EmptyInsertError,
    ErrorInfo,
    ErrorKind,
    InvalidHandleError,
    NotConnectedError,
    PoolClosedError,
    QueryError,
    TxPoolError,
)
from .logger import LoggingContext, setup_logger
from .manager import TransactionManager
from .pool import ConnectionPool, Lease

__all__ = [
    "Settings",
    "Connection",
    "ConnectionState",
    "ConnectionPool",
    "Lease",
    "TransactionManager",
    "convert_row",
    "ColumnMeta",
    "Driver",
    "QueryInfo",
    "QueryResult",
    "TxPoolError",
    "DBConnectionError",
    "NotConnectedError",
    "EmptyInsertError",
    "QueryError",
    "PoolClosedError",
    "InvalidHandleError",
    "ErrorInfo",
    "ErrorKind",
    "LoggingContext",
    "setup_logger",
]
