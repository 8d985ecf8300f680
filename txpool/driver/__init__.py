from txpool.driver.base import ColumnMeta, Driver, QueryInfo, QueryResult

__all__ = [
    "ColumnMeta",
    "Driver",
    "QueryInfo",
    "QueryResult",
]
