"""Table configuration (YAML) for the sync engines.

Keys may be written in snake_case or camelCase. Per-table ``sync`` blocks override the
global ``sync`` block field by field.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Literal, Optional, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator
from pydantic.alias_generators import to_camel

from warehouse_sync.core.checkpoints import DEFAULT_START_TIMESTAMP
from warehouse_sync.core.errors import ConfigurationError
from warehouse_sync.core.logging import get_logger
from warehouse_sync.ingestion.normalizer import parse_timestamp

log = get_logger("sync_config")

DEFAULT_TABLE_ID = "default"

ALL_COLUMNS = ["*"]

_POSITIVE_FIELDS = (
    "poll_interval",
    "initial_batch_size",
    "catchup_batch_size",
    "steady_batch_size",
    "initial_interval",
    "catchup_interval",
    "catchup_threshold",
    "steady_threshold",
)


class _ConfigModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class SyncSettings(_ConfigModel):
    """Phase batch sizes, intervals (seconds) and lag thresholds (seconds)."""

    poll_interval: float = 30
    initial_batch_size: int = 10000
    catchup_batch_size: int = 1000
    steady_batch_size: int = 500
    initial_interval: float = 1
    catchup_interval: float = 5
    catchup_threshold: float = 3600
    steady_threshold: float = 300
    start_timestamp: str = DEFAULT_START_TIMESTAMP

    @model_validator(mode="after")
    def _check_values(self) -> "SyncSettings":
        for name in _POSITIVE_FIELDS:
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive")
        if parse_timestamp(self.start_timestamp) is None:
            raise ValueError(f"start_timestamp is not a valid timestamp: {self.start_timestamp!r}")
        return self


class TableConfig(_ConfigModel):
    id: str
    dataset: Optional[str] = None
    table: str
    timestamp_column: str
    columns: List[str] = Field(default_factory=lambda: list(ALL_COLUMNS))
    natural_key: List[str] = Field(default_factory=list)
    target_table: str
    sync: SyncSettings = Field(default_factory=SyncSettings)

    @field_validator("columns", mode="before")
    @classmethod
    def _normalize_columns(cls, value: Any) -> List[str]:
        if value is None or value == "*":
            return list(ALL_COLUMNS)
        if isinstance(value, str):
            value = [value]
        if not isinstance(value, list):
            raise ValueError("columns must be '*' or a list of column names")
        if not value:
            raise ValueError("columns must not be empty")
        columns = [str(col).strip() for col in value]
        if any(not col for col in columns):
            raise ValueError("column names must not be blank")
        if "*" in columns:
            return list(ALL_COLUMNS)
        return columns

    @field_validator("natural_key", mode="before")
    @classmethod
    def _normalize_natural_key(cls, value: Any) -> List[str]:
        if value is None:
            return []
        if isinstance(value, str):
            value = [value]
        return [str(col).strip() for col in value]

    @model_validator(mode="after")
    def _check_projection(self) -> "TableConfig":
        self.timestamp_column = self.timestamp_column.strip()
        if not self.timestamp_column:
            raise ValueError("timestamp_column must not be blank")
        if self.columns != ALL_COLUMNS:
            if self.timestamp_column not in self.columns:
                raise ValueError(f"columns must include the timestamp column '{self.timestamp_column}'")
            missing = [col for col in self.natural_key if col not in self.columns]
            if missing:
                raise ValueError(f"natural_key columns not in projection: {', '.join(missing)}")
        return self

    @property
    def source_table(self) -> str:
        return f"{self.dataset}.{self.table}" if self.dataset else self.table


class WarehouseConfig(_ConfigModel):
    project_id: Optional[str] = None
    location: Optional[str] = None
    dialect: Literal["bigquery", "postgresql"] = "bigquery"
    tables: List[TableConfig]


class SyncConfig(_ConfigModel):
    warehouse: WarehouseConfig
    sync: SyncSettings = Field(default_factory=SyncSettings)

    @model_validator(mode="after")
    def _check_unique(self) -> "SyncConfig":
        if not self.warehouse.tables:
            raise ValueError("at least one table must be configured")
        for attr in ("id", "target_table"):
            seen: set = set()
            for table in self.warehouse.tables:
                value = getattr(table, attr)
                if value in seen:
                    raise ValueError(f"duplicate {attr}: {value}")
                seen.add(value)
        return self

    def get_table_config(self, table_id: str) -> TableConfig:
        for table in self.warehouse.tables:
            if table.id == table_id:
                return table
        raise ConfigurationError(f"Unknown table id: {table_id}")


def _get(mapping: Dict[str, Any], snake: str) -> Any:
    if snake in mapping:
        return mapping[snake]
    return mapping.get(to_camel(snake))


def _normalize_raw(raw: Dict[str, Any]) -> Dict[str, Any]:
    """Turn the legacy single-table layout into the multi-table one and merge sync blocks."""
    warehouse = dict(raw.get("warehouse") or {})
    global_sync = dict(raw.get("sync") or {})

    tables = warehouse.get("tables")
    if tables is None:
        table_name = warehouse.get("table")
        if not table_name:
            raise ConfigurationError("warehouse.tables (or legacy warehouse.table) is required")
        log.info("Legacy single-table config detected; using table id 'default'")
        tables = [
            {
                "id": DEFAULT_TABLE_ID,
                "dataset": warehouse.get("dataset"),
                "table": table_name,
                "timestamp_column": _get(warehouse, "timestamp_column"),
                "columns": warehouse.get("columns"),
                "natural_key": _get(warehouse, "natural_key"),
                "target_table": _get(warehouse, "target_table") or table_name,
            }
        ]
    if not isinstance(tables, list):
        raise ConfigurationError("warehouse.tables must be a list")

    merged_tables = []
    for table in tables:
        if not isinstance(table, dict):
            raise ConfigurationError("each entry in warehouse.tables must be a mapping")
        table = dict(table)
        table["sync"] = {**global_sync, **(table.get("sync") or {})}
        merged_tables.append(table)

    warehouse = {key: value for key, value in warehouse.items() if key not in ("dataset", "table", "columns")}
    warehouse["tables"] = merged_tables
    return {"warehouse": warehouse, "sync": global_sync}


def load_sync_config(source: Union[str, Path, Dict[str, Any]]) -> SyncConfig:
    """Load and validate table config from a YAML path or an already-parsed mapping."""
    if isinstance(source, dict):
        raw = source
    else:
        path = Path(source)
        if not path.exists():
            raise ConfigurationError(f"Sync config not found: {path}")
        with open(path, "r") as f:
            try:
                raw = yaml.safe_load(f) or {}
            except yaml.YAMLError as exc:
                raise ConfigurationError(f"Invalid YAML in {path}: {exc}") from exc

    if not isinstance(raw, dict):
        raise ConfigurationError("Sync config must be a mapping")

    try:
        config = SyncConfig.model_validate(_normalize_raw(raw))
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid sync config: {exc}") from exc

    log.info(f"Loaded sync config with {len(config.warehouse.tables)} table(s)")
    return config
