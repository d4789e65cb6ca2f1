"""SQL construction for partitioned warehouse reads.

Queries are returned as SQLAlchemy ``text()`` clauses with bound parameters. Only
identifiers (table and column names from validated config) are interpolated.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Optional, Sequence, Tuple

from sqlalchemy import TextClause, text

from warehouse_sync.core.errors import UnsupportedDialectError
from warehouse_sync.core.logging import get_logger

log = get_logger("query_builder")

SUPPORTED_DIALECTS = ("bigquery", "postgresql")


def _check_dialect(dialect: str) -> None:
    if dialect not in SUPPORTED_DIALECTS:
        raise UnsupportedDialectError(
            f"Unsupported warehouse dialect '{dialect}' (supported: {', '.join(SUPPORTED_DIALECTS)})"
        )


def quote_identifier(dialect: str, name: str) -> str:
    _check_dialect(dialect)
    if dialect == "bigquery":
        return f"`{name.replace('`', '')}`"
    return '"' + name.replace('"', '""') + '"'


def format_column_list(columns: Sequence[str], dialect: str = "postgresql") -> str:
    """Render a SELECT list; ``["*"]`` selects everything."""
    if not columns:
        raise ValueError("columns must not be empty")
    if list(columns) == ["*"]:
        return "*"
    return ", ".join(quote_identifier(dialect, col) for col in columns)


def qualified_table(dialect: str, table: str, dataset: Optional[str] = None, project_id: Optional[str] = None) -> str:
    _check_dialect(dialect)
    if dialect == "bigquery":
        # `project.dataset.table` in a single backtick pair
        parts = [p for p in (project_id, dataset, table) if p]
        return f"`{'.'.join(parts)}`"
    parts = [p for p in (dataset, table) if p]
    return ".".join(quote_identifier(dialect, p) for p in parts)


def partition_expression(dialect: str, column: str) -> str:
    """Integer epoch-microseconds of ``column`` modulo the ``:cluster_size`` parameter."""
    _check_dialect(dialect)
    col = quote_identifier(dialect, column)
    if dialect == "bigquery":
        return f"MOD(UNIX_MICROS({col}), :cluster_size)"
    return f"MOD(CAST(FLOOR(EXTRACT(EPOCH FROM {col}) * 1000000) AS BIGINT), :cluster_size)"


class QueryBuilder:
    """Builds the pull / verify / sample queries for one configured table."""

    def __init__(
        self,
        dialect: str,
        table: str,
        timestamp_column: str,
        columns: Sequence[str] = ("*",),
        dataset: Optional[str] = None,
        project_id: Optional[str] = None,
        natural_key: Sequence[str] = (),
    ):
        _check_dialect(dialect)
        if not table or not timestamp_column:
            raise ValueError("table and timestamp_column are required")
        self.dialect = dialect
        self.table = table
        self.dataset = dataset
        self.project_id = project_id
        self.timestamp_column = timestamp_column
        self.columns = list(columns) or ["*"]
        self.natural_key = list(natural_key)

        log.info(
            f"QueryBuilder for {self.table_ref} on '{timestamp_column}' "
            f"({'all columns' if self.columns == ['*'] else f'{len(self.columns)} columns'})"
        )

    @property
    def table_ref(self) -> str:
        return qualified_table(self.dialect, self.table, self.dataset, self.project_id)

    @property
    def column_list(self) -> str:
        return format_column_list(self.columns, self.dialect)

    def _ts(self) -> str:
        return quote_identifier(self.dialect, self.timestamp_column)

    def pull_partition(
        self,
        node_ordinal: int,
        cluster_size: int,
        last_timestamp: datetime,
        batch_size: int,
    ) -> Tuple[TextClause, Dict[str, Any]]:
        """Rows owned by this node strictly newer than the checkpoint, oldest first."""
        sql = (
            f"SELECT {self.column_list} FROM {self.table_ref} "
            f"WHERE {partition_expression(self.dialect, self.timestamp_column)} = :node_ordinal "
            f"AND {self._ts()} > :last_timestamp "
            f"ORDER BY {self._ts()} ASC "
            f"LIMIT :batch_size"
        )
        params = {
            "cluster_size": cluster_size,
            "node_ordinal": node_ordinal,
            "last_timestamp": last_timestamp,
            "batch_size": batch_size,
        }
        return text(sql), params

    def verify_record(
        self,
        timestamp: datetime,
        natural_key_values: Optional[Dict[str, Any]] = None,
    ) -> Tuple[TextClause, Dict[str, Any]]:
        """Existence check for one row by timestamp plus its natural key."""
        clauses = [f"{self._ts()} = :record_timestamp"]
        params: Dict[str, Any] = {"record_timestamp": timestamp}
        for index, (column, value) in enumerate((natural_key_values or {}).items()):
            col = quote_identifier(self.dialect, column)
            if value is None:
                clauses.append(f"{col} IS NULL")
            else:
                name = f"key_{index}"
                clauses.append(f"{col} = :{name}")
                params[name] = value
        sql = f"SELECT 1 FROM {self.table_ref} WHERE {' AND '.join(clauses)} LIMIT 1"
        return text(sql), params

    def sample_partition(
        self,
        node_ordinal: int,
        cluster_size: int,
        limit: int,
        upper_bound: Optional[datetime] = None,
    ) -> Tuple[TextClause, Dict[str, Any]]:
        """Most recent rows of this node's partition, optionally capped at ``upper_bound``."""
        clauses = [f"{partition_expression(self.dialect, self.timestamp_column)} = :node_ordinal"]
        params: Dict[str, Any] = {"cluster_size": cluster_size, "node_ordinal": node_ordinal, "limit": limit}
        if upper_bound is not None:
            clauses.append(f"{self._ts()} <= :upper_bound")
            params["upper_bound"] = upper_bound
        order = [f"{self._ts()} DESC"] + [f"{quote_identifier(self.dialect, c)} DESC" for c in self.natural_key]
        sql = (
            f"SELECT {self.column_list} FROM {self.table_ref} "
            f"WHERE {' AND '.join(clauses)} "
            f"ORDER BY {', '.join(order)} "
            f"LIMIT :limit"
        )
        return text(sql), params
