import json

import pytest

from arkflow.core import Field, MessageBatch, ProcessError, Table, build_processor
from arkflow.json_processor import (
    ArrowToJsonProcessor,
    JsonToArrowProcessor,
    init,
    json_to_table,
    table_to_json,
)

FIELD_NAMES = {
    "null_field",
    "bool_field",
    "int_field",
    "uint_field",
    "float_field",
    "string_field",
    "array_field",
    "object_field",
}


def create_test_json() -> bytes:
    return json.dumps(
        {
            "null_field": None,
            "bool_field": True,
            "int_field": 42,
            "uint_field": 100,
            "float_field": 3.14,
            "string_field": "test",
            "array_field": [1],
            "object_field": {"key": "value"},
        }
    ).encode("utf-8")


@pytest.mark.asyncio
async def test_json_to_arrow_processor_success():
    result = await JsonToArrowProcessor().process(
        MessageBatch.new_binary([create_test_json()])
    )
    assert len(result) == 1
    table = result[0].content
    assert isinstance(table, Table)
    assert table.num_rows() == 1
    assert table.num_columns() == 8
    assert {f.name for f in table.fields} == FIELD_NAMES


@pytest.mark.asyncio
async def test_json_to_arrow_processor_empty_input():
    result = await JsonToArrowProcessor().process(MessageBatch.new_binary([]))
    assert result == []


@pytest.mark.asyncio
async def test_json_to_arrow_processor_invalid_input():
    with pytest.raises(ProcessError):
        await JsonToArrowProcessor().process(MessageBatch.new_binary([b"{invalid json"]))


@pytest.mark.asyncio
async def test_json_to_arrow_processor_non_object_input():
    with pytest.raises(ProcessError):
        await JsonToArrowProcessor().process(
            MessageBatch.new_binary([json.dumps([1, 2, 3]).encode()])
        )


@pytest.mark.asyncio
async def test_json_to_arrow_processor_wrong_content_type():
    table = Table((Field("test", "utf8"),), (("test",),))
    with pytest.raises(ProcessError):
        await JsonToArrowProcessor().process(MessageBatch.new_arrow(table))


@pytest.mark.asyncio
async def test_json_to_arrow_concatenates_rows():
    payloads = [b'{"id": 1, "name": "a"}', b'{"id": 2, "name": "b"}']
    result = await JsonToArrowProcessor().process(MessageBatch.new_binary(payloads))
    table = result[0].content
    assert table.num_rows() == 2
    assert table.column("id") == [1, 2]
    assert table.column("name") == ["a", "b"]


@pytest.mark.asyncio
async def test_json_to_arrow_rejects_mixed_schemas():
    payloads = [b'{"id": 1}', b'{"id": "one"}']
    with pytest.raises(ProcessError):
        await JsonToArrowProcessor().process(MessageBatch.new_binary(payloads))


@pytest.mark.asyncio
async def test_arrow_to_json_processor_success():
    table = Table(
        (
            Field("string_field", "utf8"),
            Field("int_field", "int64"),
            Field("bool_field", "boolean"),
        ),
        (("test",), (42,), (True,)),
    )
    result = await ArrowToJsonProcessor().process(MessageBatch.new_arrow(table))
    assert len(result) == 1
    content = result[0].content
    assert isinstance(content, list)
    assert len(content) == 1
    value = json.loads(content[0])
    assert isinstance(value, list)
    assert len(value) == 1
    assert value[0]["string_field"] == "test"
    assert value[0]["int_field"] == 42
    assert value[0]["bool_field"] is True


@pytest.mark.asyncio
async def test_arrow_to_json_processor_wrong_content_type():
    with pytest.raises(ProcessError):
        await ArrowToJsonProcessor().process(MessageBatch.new_binary([bytes([1, 2, 3])]))


def test_json_to_table_function():
    table = json_to_table(create_test_json())
    assert table.num_rows() == 1
    assert table.num_columns() == 8
    assert table.column("bool_field") == [True]
    assert table.column("int_field") == [42]
    assert table.column("string_field") == ["test"]


def test_json_to_table_types_and_nested_values():
    table = json_to_table(create_test_json())
    types = {f.name: f.data_type for f in table.fields}
    assert types["null_field"] == "null"
    assert types["bool_field"] == "boolean"
    assert types["int_field"] == "int64"
    assert types["uint_field"] == "int64"
    assert types["float_field"] == "float64"
    assert types["array_field"] == "utf8"
    assert table.column("null_field") == [None]
    assert table.column("float_field") == [3.14]
    assert table.column("array_field") == ["[1]"]
    assert table.column("object_field") == ['{"key":"value"}']


def test_json_to_table_large_integers():
    table = json_to_table(json.dumps({"big": 2**63, "huge": 2**64}).encode())
    types = {f.name: f.data_type for f in table.fields}
    assert types["big"] == "uint64"
    assert table.column("big") == [2**63]
    assert types["huge"] == "float64"
    assert table.column("huge") == [float(2**64)]


def test_arrow_to_json_function():
    table = Table((Field("test_field", "utf8"),), (("test_value",),))
    value = json.loads(table_to_json(table))
    assert value == [{"test_field": "test_value"}]


def test_table_to_json_leaves_out_nulls():
    table = Table(
        (Field("a", "int64"), Field("b", "null", nullable=True)),
        ((1, 2), (None, None)),
    )
    assert table_to_json(table) == b'[{"a":1},{"a":2}]'


def test_round_trip_preserves_values():
    payload = b'{"id": 7, "name": "x", "ok": false}'
    value = json.loads(table_to_json(json_to_table(payload)))
    assert value == [{"id": 7, "name": "x", "ok": False}]


@pytest.mark.asyncio
async def test_init_registers_processors():
    init()
    to_table = build_processor("json_to_arrow")
    to_json = build_processor("arrow_to_json")
    tables = await to_table.process(MessageBatch.new_binary([b'{"id": 5}']))
    assert tables[0].content.column("id") == [5]
    encoded = await to_json.process(tables[0])
    assert json.loads(encoded[0].content[0]) == [{"id": 5}]