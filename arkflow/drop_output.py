"""An output that discards every message it is given."""

from __future__ import annotations

from typing import Any, Mapping, Optional

from arkflow.core import MessageBatch, Output, register_output_builder


class DropOutput(Output):
    """Discards all messages; useful for testing or intentional sinks."""

    async def connect(self) -> None:
        return None

    async def write(self, batch: MessageBatch) -> None:
        return None

    async def close(self) -> None:
        return None


def build_drop_output(config: Optional[Mapping[str, Any]] = None) -> DropOutput:
    """Create a drop output; any configuration is ignored."""
    return DropOutput()


def init() -> None:
    """Register the drop output under the name ``drop``."""
    register_output_builder("drop", build_drop_output)