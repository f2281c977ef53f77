# arkflow

Building blocks for stream-processing pipelines. Data moves through a
pipeline as `MessageBatch` objects. A batch carries either a list of binary
payloads or a columnar `Table`. Processors transform batches. Outputs
deliver them to a destination. All component methods are coroutines.

## Core types (`arkflow.core`)

- `MessageBatch`: build one with `MessageBatch.new_binary(items)`,
  `MessageBatch.new_arrow(table)` or `MessageBatch.from_string(text)`.
  Inspect it with `is_binary()`, `is_empty()` and `as_strings()`. Binary
  payloads are decoded as UTF-8, and invalid bytes are replaced.
- `Table` and `Field`: an immutable table with one column per field. It has
  `num_rows()`, `num_columns()`, `column(name)` and `to_records()`, and
  `Table.concat(tables)` joins tables that share a schema.
- `Output` has `connect()`, `write(batch)` and `close()`. `Processor` has
  `process(batch)`, which returns a list of batches, and `close()`.
- Registries: `register_output_builder(name, builder)`,
  `build_output(name, config)`, `register_processor_builder(name, builder)`
  and `build_processor(name, config)`. A builder is a callable that takes a
  configuration mapping, or `None`.

## Components

Every component module has an `init()` function. It registers the module's
component or components under the names below. Each module also has a
`build_*` function, so a component can be created without the registry.

Outputs:

| Module          | Name     | Configuration keys | What it does |
|-----------------|----------|--------------------|--------------|
| `drop_output`   | `drop`   | none | Discards every batch. |
| `file_output`   | `file`   | `path`, `append` (default true), `append_newline` (default true) | Writes each message to a file and flushes after each batch. Missing parent directories are created. |
| `stdout_output` | `stdout` | `append_newline` (default true) | Prints each message. A table is printed as a compact JSON array of rows: nulls are left out and bytes are shown as hex. |
| `mqtt_output`   | `mqtt`   | `host`, `port`, `client_id`, `topic`, optional `username`, `password`, `qos`, `clean_session`, `keep_alive` (default 60), `retain` | Publishes each message to one topic. The paho network loop runs on a background thread. An unknown `qos` level is treated as `QoS.AT_LEAST_ONCE`. |

`MqttOutput` accepts an optional `client_factory`. It is called with the
`MqttOutputConfig` and must return an object with `start()`, `publish(...)`,
`disconnect()` and `stop()`. Use it to plug in another client.

Processors:

| Module            | Name            | Configuration keys | What it does |
|-------------------|-----------------|--------------------|--------------|
| `batch_processor` | `batch`         | `count`, `timeout_ms`, `data_type` (`"binary"` or `"arrow"`) | Gathers batches and emits them as one batch. It emits when `count` batches are held, or when a batch arrives after `timeout_ms` have passed since the last flush. There is no background timer. |
| `json_processor`  | `json_to_arrow` | none | Parses each payload as a JSON object into one row, then joins the rows into a table. Arrays and nested objects are kept as JSON text. |
| `json_processor`  | `arrow_to_json` | none | Serialises a table to one JSON payload, an array of row objects. |
| `sql_processor`   | `sql`           | `query`, `table_name` (default `flow`) | Runs a read-only SQL query over the incoming table in an in-memory SQLite database. Statements that write or change the schema are refused. |

`json_processor` also exposes `json_to_table(content)` and
`table_to_json(table)`.

## Usage

```python
import asyncio

from arkflow import batch_processor, file_output
from arkflow.core import MessageBatch, build_output, build_processor


async def main():
    batch_processor.init()
    file_output.init()

    batcher = build_processor(
        "batch", {"count": 2, "timeout_ms": 1000, "data_type": "binary"}
    )
    output = build_output(
        "file", {"path": "out/messages.txt", "append": False, "append_newline": True}
    )

    await output.connect()
    for text in ["first", "second"]:
        for batch in await batcher.process(MessageBatch.from_string(text)):
            await output.write(batch)
    await output.close()
    await batcher.close()


asyncio.run(main())
```

## Errors

Every failure raises a subclass of `arkflow.core.ArkflowError`:

- `ConfigError`: the configuration is missing or invalid, or the component
  name is not registered.
- `ConnectError`: an output was written to before `connect()`, or after
  `close()`, or its client could not be created.
- `ProcessError`: the data could not be handled. Examples are a mismatched
  data type, malformed JSON, a failed SQL query or a failed MQTT publish.

A component that needs a configuration raises `ConfigError` when it is built
with `None`. The `stdout` output is one of these, so pass `{}` for its
defaults.

## What this package does not do

- It has no HTTP output.
- It has no input components.
- It has no pipeline runner or command-line program. You connect processors
  and outputs yourself, as in the example above.
- It has no single call that registers every component. Call `init()` in
  each component module you use.