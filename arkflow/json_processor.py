"""Processors that convert between JSON payloads and tables."""

from __future__ import annotations

import json
from typing import Any, Mapping, Optional

from arkflow.core import (
    Field,
    MessageBatch,
    ProcessError,
    Processor,
    Table,
    register_processor_builder,
)

_INT64_MIN = -(2**63)
_INT64_MAX = 2**63 - 1
_UINT64_MAX = 2**64 - 1


def _compact_json(value: Any) -> str:
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False)


def _column_for(key: str, value: Any) -> tuple[Field, Any]:
    if value is None:
        return Field(key, "null", nullable=True), None
    if isinstance(value, bool):
        return Field(key, "boolean"), value
    if isinstance(value, int):
        if _INT64_MIN <= value <= _INT64_MAX:
            return Field(key, "int64"), value
        if 0 <= value <= _UINT64_MAX:
            return Field(key, "uint64"), value
        return Field(key, "float64"), float(value)
    if isinstance(value, float):
        return Field(key, "float64"), value
    if isinstance(value, str):
        return Field(key, "utf8"), value
    # Arrays and nested objects are kept as their JSON text.
    return Field(key, "utf8"), _compact_json(value)


def json_to_table(content: bytes) -> Table:
    """Turn one JSON object into a single-row table."""
    try:
        value = json.loads(content)
    except ValueError as exc:
        raise ProcessError(f"JSON parse error: {exc}") from exc
    if not isinstance(value, dict):
        raise ProcessError("The input must be a JSON object")
    fields = []
    columns = []
    for key, item in value.items():
        table_field, cell = _column_for(key, item)
        fields.append(table_field)
        columns.append((cell,))
    return Table(tuple(fields), tuple(columns))


def _json_cell(value: Any) -> Any:
    if isinstance(value, (bytes, bytearray)):
        return bytes(value).hex()
    return value


def table_to_json(table: Table) -> bytes:
    """Serialise a table as a JSON array of row objects, leaving out nulls."""
    rows = [
        {key: _json_cell(value) for key, value in record.items() if value is not None}
        for record in table.to_records()
    ]
    return _compact_json(rows).encode("utf-8")


class JsonToArrowProcessor(Processor):
    """Parses each binary payload as a JSON object and joins them into one table."""

    async def process(self, batch: MessageBatch) -> list[MessageBatch]:
        if isinstance(batch.content, Table):
            raise ProcessError("The input must be binary data")
        tables = [json_to_table(item) for item in batch.content]
        if not tables:
            return []
        return [MessageBatch.new_arrow(Table.concat(tables))]

    async def close(self) -> None:
        return None


class ArrowToJsonProcessor(Processor):
    """Serialises a table into a single JSON payload."""

    async def process(self, batch: MessageBatch) -> list[MessageBatch]:
        if not isinstance(batch.content, Table):
            raise ProcessError("The input must be in Arrow format")
        return [MessageBatch.new_binary([table_to_json(batch.content)])]

    async def close(self) -> None:
        return None


def _build_json_to_arrow(config: Optional[Mapping[str, Any]] = None) -> JsonToArrowProcessor:
    return JsonToArrowProcessor()


def _build_arrow_to_json(config: Optional[Mapping[str, Any]] = None) -> ArrowToJsonProcessor:
    return ArrowToJsonProcessor()


def init() -> None:
    """Register both conversion processors."""
    register_processor_builder("arrow_to_json", _build_arrow_to_json)
    register_processor_builder("json_to_arrow", _build_json_to_arrow)