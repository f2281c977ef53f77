"""A processor that runs a SQL query over tabular batches."""

from __future__ import annotations

import asyncio
import sqlite3
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any, Mapping, Optional

from arkflow.core import (
    ConfigError,
    Field,
    MessageBatch,
    ProcessError,
    Processor,
    Table,
    register_processor_builder,
)

DEFAULT_TABLE_NAME = "flow"

_INTEGER_TYPES = frozenset(
    {"int8", "int16", "int32", "int64", "uint8", "uint16", "uint32", "uint64"}
)
_FLOAT_TYPES = frozenset({"float16", "float32", "float64"})

# Only reading is allowed: no DDL, no DML, no other statements.
_ALLOWED_ACTIONS = frozenset(
    action
    for action in (
        getattr(sqlite3, "SQLITE_SELECT", None),
        getattr(sqlite3, "SQLITE_READ", None),
        getattr(sqlite3, "SQLITE_FUNCTION", None),
        getattr(sqlite3, "SQLITE_RECURSIVE", None),
    )
    if action is not None
)


@dataclass
class SqlProcessorConfig:
    """The query to run and the name the input table goes by in it."""

    query: str
    table_name: Optional[str] = None


def _quote(identifier: str) -> str:
    return '"' + identifier.replace('"', '""') + '"'


def _authorize(action: int, *_: Any) -> int:
    return sqlite3.SQLITE_OK if action in _ALLOWED_ACTIONS else sqlite3.SQLITE_DENY


def _conforms(data_type: str, values: Sequence[Any]) -> bool:
    present = [value for value in values if value is not None]
    if data_type == "boolean":
        return all(not isinstance(value, float) and value in (0, 1) for value in present)
    if data_type in _INTEGER_TYPES:
        return all(isinstance(value, int) for value in present)
    if data_type in _FLOAT_TYPES:
        return all(isinstance(value, (int, float)) for value in present)
    if data_type == "utf8":
        return all(isinstance(value, str) for value in present)
    if data_type == "binary":
        return all(isinstance(value, bytes) for value in present)
    if data_type == "null":
        return not present
    return False


def _convert(data_type: str, values: Sequence[Any]) -> list[Any]:
    if data_type == "boolean":
        return [None if value is None else bool(value) for value in values]
    if data_type in _FLOAT_TYPES:
        return [None if value is None else float(value) for value in values]
    return list(values)


def _infer_type(values: Sequence[Any]) -> str:
    present = [value for value in values if value is not None]
    if not present:
        return "null"
    if all(isinstance(value, int) for value in present):
        return "int64"
    if all(isinstance(value, (int, float)) for value in present):
        return "float64"
    if all(isinstance(value, bytes) for value in present):
        return "binary"
    return "utf8"


def _result_column(
    name: str, values: Sequence[Any], source: Mapping[str, Field]
) -> tuple[Field, list[Any]]:
    has_null = any(value is None for value in values)
    original = source.get(name)
    if original is not None and _conforms(original.data_type, values):
        data_type = original.data_type
        nullable = original.nullable or has_null
    else:
        data_type = _infer_type(values)
        nullable = has_null
        if data_type == "utf8":
            values = [None if value is None else str(value) for value in values]
    return Field(name, data_type, nullable), _convert(data_type, values)


def _run_query(table: Table, table_name: str, query: str) -> Table:
    connection = sqlite3.connect(":memory:")
    try:
        try:
            columns = ", ".join(_quote(field.name) for field in table.fields)
            placeholders = ", ".join("?" for _ in table.fields)
            connection.execute(f"CREATE TABLE {_quote(table_name)} ({columns})")
            connection.executemany(
                f"INSERT INTO {_quote(table_name)} VALUES ({placeholders})",
                zip(*table.columns),
            )
        except (sqlite3.Error, OverflowError) as exc:
            raise ProcessError(f"Registration failed: {exc}") from exc

        connection.set_authorizer(_authorize)
        try:
            cursor = connection.execute(query)
        except (sqlite3.Error, sqlite3.Warning) as exc:
            raise ProcessError(f"SQL query error: {exc}") from exc
        try:
            rows = cursor.fetchall()
        except sqlite3.Error as exc:
            raise ProcessError(f"Collection query results error: {exc}") from exc
        description = cursor.description or ()
    finally:
        connection.close()

    if not rows:
        return Table()

    source = {field.name: field for field in table.fields}
    fields = []
    result_columns = []
    for index, column in enumerate(description):
        result_field, values = _result_column(
            column[0], [row[index] for row in rows], source
        )
        fields.append(result_field)
        result_columns.append(tuple(values))
    return Table(tuple(fields), tuple(result_columns))


class SqlProcessor(Processor):
    """Runs a read-only SQL query against each tabular batch."""

    def __init__(self, config: SqlProcessorConfig) -> None:
        self.config = config

    @property
    def table_name(self) -> str:
        """The name the input table is known by in the query."""
        return self.config.table_name or DEFAULT_TABLE_NAME

    async def process(self, batch: MessageBatch) -> list[MessageBatch]:
        if batch.is_empty():
            return []
        if not isinstance(batch.content, Table):
            raise ProcessError("Unsupported input format")
        result = await asyncio.to_thread(
            _run_query, batch.content, self.table_name, self.config.query
        )
        return [MessageBatch.new_arrow(result)]

    async def close(self) -> None:
        return None


def _parse_config(config: Optional[Mapping[str, Any]]) -> SqlProcessorConfig:
    if config is None:
        raise ConfigError("SQL processor configuration is missing")
    if not isinstance(config, Mapping):
        raise ConfigError("SQL processor configuration must be a mapping")
    query = config.get("query")
    if not isinstance(query, str):
        raise ConfigError("SQL processor configuration needs a string `query`")
    table_name = config.get("table_name")
    if table_name is not None and not isinstance(table_name, str):
        raise ConfigError("`table_name` must be a string")
    return SqlProcessorConfig(query=query, table_name=table_name)


def build_sql_processor(config: Optional[Mapping[str, Any]]) -> SqlProcessor:
    """Create a SQL processor from its configuration mapping."""
    return SqlProcessor(_parse_config(config))


def init() -> None:
    """Register the SQL processor under the name ``sql``."""
    register_processor_builder("sql", build_sql_processor)