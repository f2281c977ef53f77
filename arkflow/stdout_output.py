"""An output that prints message payloads to standard output."""

from __future__ import annotations

import asyncio
import json
import sys
from dataclasses import dataclass
from typing import Any, Mapping, Optional, TextIO

from arkflow.core import (
    ConfigError,
    MessageBatch,
    Output,
    Table,
    register_output_builder,
)


@dataclass
class StdoutOutputConfig:
    """Whether a line break follows each message."""

    append_newline: Optional[bool] = None


def _json_value(value: Any) -> Any:
    if isinstance(value, (bytes, bytearray)):
        return bytes(value).hex()
    return value


def _table_json(table: Table) -> str:
    rows = [
        {key: _json_value(value) for key, value in record.items() if value is not None}
        for record in table.to_records()
    ]
    return json.dumps(rows, separators=(",", ":"), ensure_ascii=False)


class StdoutOutput(Output):
    """Writes binary payloads as text and tables as a JSON array of rows."""

    def __init__(self, config: StdoutOutputConfig, writer: Optional[TextIO] = None) -> None:
        self.config = config
        self._writer = writer
        self._lock = asyncio.Lock()

    @property
    def _stream(self) -> TextIO:
        return sys.stdout if self._writer is None else self._writer

    @property
    def _ending(self) -> str:
        return "\n" if self.config.append_newline is not False else ""

    async def connect(self) -> None:
        return None

    async def write(self, batch: MessageBatch) -> None:
        async with self._lock:
            stream = self._stream
            if isinstance(batch.content, Table):
                stream.write(_table_json(batch.content) + self._ending)
                stream.flush()
            else:
                for text in batch.as_strings():
                    stream.write(text + self._ending)

    async def close(self) -> None:
        return None


def _parse_config(config: Optional[Mapping[str, Any]]) -> StdoutOutputConfig:
    if config is None:
        raise ConfigError("Stdout output configuration is missing")
    if not isinstance(config, Mapping):
        raise ConfigError("Stdout output configuration must be a mapping")
    append_newline = config.get("append_newline")
    if append_newline is not None and not isinstance(append_newline, bool):
        raise ConfigError("`append_newline` must be a boolean")
    return StdoutOutputConfig(append_newline=append_newline)


def build_stdout_output(config: Optional[Mapping[str, Any]]) -> StdoutOutput:
    """Create a standard output writer from its configuration mapping."""
    return StdoutOutput(_parse_config(config))


def init() -> None:
    """Register the standard output under the name ``stdout``."""
    register_output_builder("stdout", build_stdout_output)