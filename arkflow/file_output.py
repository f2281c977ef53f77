"""An output that writes message payloads to a file."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping, Optional, TextIO

from arkflow.core import (
    ConfigError,
    ConnectError,
    MessageBatch,
    Output,
    register_output_builder,
)


@dataclass
class FileOutputConfig:
    """Where and how to write the file."""

    path: str
    append_newline: Optional[bool] = None
    append: Optional[bool] = None


class FileOutput(Output):
    """Writes each payload of a batch to a file, flushing after every batch."""

    def __init__(self, config: FileOutputConfig) -> None:
        self.config = config
        self._file: Optional[TextIO] = None
        self._lock = asyncio.Lock()

    @property
    def connected(self) -> bool:
        return self._file is not None

    async def connect(self) -> None:
        path = Path(self.config.path)
        if not path.parent.exists():
            path.parent.mkdir(parents=True, exist_ok=True)
        mode = "a" if self.config.append is not False else "w"
        handle = open(path, mode, encoding="utf-8", newline="")
        async with self._lock:
            if self._file is not None:
                self._file.close()
            self._file = handle

    async def write(self, batch: MessageBatch) -> None:
        async with self._lock:
            if self._file is None:
                raise ConnectError("The output is not connected")
            newline = self.config.append_newline is not False
            for text in batch.as_strings():
                self._file.write(text + "\n" if newline else text)
            self._file.flush()

    async def close(self) -> None:
        async with self._lock:
            if self._file is not None:
                self._file.close()
                self._file = None


def _optional_bool(config: Mapping[str, Any], key: str) -> Optional[bool]:
    value = config.get(key)
    if value is not None and not isinstance(value, bool):
        raise ConfigError(f"`{key}` must be a boolean")
    return value


def _parse_config(config: Optional[Mapping[str, Any]]) -> FileOutputConfig:
    if config is None:
        raise ConfigError("File output configuration is missing")
    if not isinstance(config, Mapping):
        raise ConfigError("File output configuration must be a mapping")
    path = config.get("path")
    if not isinstance(path, str):
        raise ConfigError("File output configuration needs a string `path`")
    return FileOutputConfig(
        path=path,
        append_newline=_optional_bool(config, "append_newline"),
        append=_optional_bool(config, "append"),
    )


def build_file_output(config: Optional[Mapping[str, Any]]) -> FileOutput:
    """Create a file output from its configuration mapping."""
    return FileOutput(_parse_config(config))


def init() -> None:
    """Register the file output under the name ``file``."""
    register_output_builder("file", build_file_output)