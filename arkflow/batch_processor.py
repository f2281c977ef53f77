"""A processor that gathers several batches into one."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Mapping, Optional

from arkflow.core import (
    ConfigError,
    MessageBatch,
    ProcessError,
    Processor,
    Table,
    register_processor_builder,
)

_DATA_TYPES = frozenset({"arrow", "binary"})


@dataclass
class BatchProcessorConfig:
    """How many batches to gather, how long to wait, and what kind of data."""

    count: int
    timeout_ms: int
    data_type: str


class BatchProcessor(Processor):
    """Collects batches until the count is reached or the timeout has passed."""

    def __init__(self, config: BatchProcessorConfig) -> None:
        self.config = config
        self._pending: list[MessageBatch] = []
        self._last_flush = time.monotonic()
        self._lock = asyncio.Lock()

    @property
    def pending(self) -> list[MessageBatch]:
        """Batches gathered but not yet emitted."""
        return list(self._pending)

    def _accepts(self, batch: MessageBatch) -> bool:
        expected = "binary" if batch.is_binary() else "arrow"
        return self.config.data_type == expected

    def _should_flush(self) -> bool:
        if len(self._pending) >= self.config.count:
            return True
        elapsed_ms = (time.monotonic() - self._last_flush) * 1000
        return bool(self._pending) and elapsed_ms >= self.config.timeout_ms

    def _combine(self) -> list[MessageBatch]:
        if self.config.data_type == "arrow":
            tables = [b.content for b in self._pending if isinstance(b.content, Table)]
            return [MessageBatch.new_arrow(Table.concat(tables))]
        if self.config.data_type == "binary":
            items = [
                item
                for b in self._pending
                if not isinstance(b.content, Table)
                for item in b.content
            ]
            return [MessageBatch.new_binary(items)]
        raise ProcessError("Invalid data type")

    def _flush(self) -> list[MessageBatch]:
        if not self._pending:
            return []
        try:
            return self._combine()
        finally:
            self._pending.clear()
            self._last_flush = time.monotonic()

    async def process(self, batch: MessageBatch) -> list[MessageBatch]:
        if not self._accepts(batch):
            raise ProcessError("Invalid data type")
        async with self._lock:
            self._pending.append(batch)
            if self._should_flush():
                return self._flush()
            return []

    async def close(self) -> None:
        async with self._lock:
            self._pending.clear()


def _non_negative_int(config: Mapping[str, Any], key: str) -> int:
    value = config.get(key)
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ConfigError(
            f"Batch processor configuration needs a non-negative integer `{key}`"
        )
    return value


def _parse_config(config: Optional[Mapping[str, Any]]) -> BatchProcessorConfig:
    if config is None:
        raise ConfigError("Batch processor configuration is missing")
    if not isinstance(config, Mapping):
        raise ConfigError("Batch processor configuration must be a mapping")
    data_type = config.get("data_type")
    if not isinstance(data_type, str):
        raise ConfigError("Batch processor configuration needs a string `data_type`")
    return BatchProcessorConfig(
        count=_non_negative_int(config, "count"),
        timeout_ms=_non_negative_int(config, "timeout_ms"),
        data_type=data_type,
    )


def build_batch_processor(config: Optional[Mapping[str, Any]]) -> BatchProcessor:
    """Create a batch processor from its configuration mapping."""
    return BatchProcessor(_parse_config(config))


def init() -> None:
    """Register the batch processor under the name ``batch``."""
    register_processor_builder("batch", build_batch_processor)