"""Message batches, tabular data, component interfaces and registries."""

from __future__ import annotations

import abc
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from itertools import chain
from typing import Any, Optional, Union


class ArkflowError(Exception):
    """Base class of all errors raised by the flow components."""


class ConfigError(ArkflowError):
    """A component was configured wrongly or not at all."""


class ConnectError(ArkflowError):
    """A component is not connected or could not connect."""


class ProcessError(ArkflowError):
    """A message could not be processed."""


@dataclass(frozen=True)
class Field:
    """A named, typed column of a table."""

    name: str
    data_type: str
    nullable: bool = False


@dataclass(frozen=True)
class Table:
    """A column-oriented table: one field and one column of values per column."""

    fields: tuple[Field, ...] = ()
    columns: tuple[tuple[Any, ...], ...] = ()

    def __post_init__(self) -> None:
        fields = tuple(self.fields)
        columns = tuple(tuple(column) for column in self.columns)
        if len(fields) != len(columns):
            raise ValueError(
                f"table has {len(fields)} fields but {len(columns)} columns"
            )
        if len({len(column) for column in columns}) > 1:
            raise ValueError("all columns of a table must have the same length")
        object.__setattr__(self, "fields", fields)
        object.__setattr__(self, "columns", columns)

    def num_rows(self) -> int:
        """Number of rows in the table."""
        return len(self.columns[0]) if self.columns else 0

    def num_columns(self) -> int:
        """Number of columns in the table."""
        return len(self.columns)

    def column(self, name: str) -> list[Any]:
        """Values of the first column with the given name."""
        for table_field, values in zip(self.fields, self.columns):
            if table_field.name == name:
                return list(values)
        raise KeyError(name)

    def to_records(self) -> list[dict[str, Any]]:
        """Rows of the table as dictionaries keyed by field name."""
        names = [table_field.name for table_field in self.fields]
        return [dict(zip(names, row)) for row in zip(*self.columns)]

    @classmethod
    def concat(cls, tables: Iterable[Table]) -> Table:
        """Join tables that share one schema into a single table."""
        tables = list(tables)
        if not tables:
            raise ValueError("no tables to concatenate")
        first = tables[0]
        for table in tables[1:]:
            if table.fields != first.fields:
                raise ProcessError(
                    "Merge batches failed: tables with different schemas"
                )
        columns = tuple(
            tuple(chain.from_iterable(parts))
            for parts in zip(*(table.columns for table in tables))
        )
        return cls(first.fields, columns)


@dataclass
class MessageBatch:
    """A batch of messages: either raw binary payloads or a table."""

    content: Union[list[bytes], Table]

    @classmethod
    def new_binary(cls, items: Iterable[Any]) -> MessageBatch:
        """A batch of binary payloads."""
        return cls([bytes(item) for item in items])

    @classmethod
    def new_arrow(cls, table: Table) -> MessageBatch:
        """A batch holding tabular data."""
        return cls(table)

    @classmethod
    def from_string(cls, text: str) -> MessageBatch:
        """A batch holding one UTF-8 encoded payload."""
        return cls([text.encode("utf-8")])

    def is_binary(self) -> bool:
        """Whether the batch holds binary payloads rather than a table."""
        return not isinstance(self.content, Table)

    def is_empty(self) -> bool:
        """Whether the batch holds no payloads or no rows."""
        if isinstance(self.content, Table):
            return self.content.num_rows() == 0
        return not self.content

    def as_strings(self) -> list[str]:
        """Binary payloads decoded as UTF-8, invalid bytes replaced."""
        if isinstance(self.content, Table):
            raise ProcessError("Tabular content cannot be read as text")
        return [item.decode("utf-8", errors="replace") for item in self.content]


class Output(abc.ABC):
    """A destination that messages are written to."""

    @abc.abstractmethod
    async def connect(self) -> None:
        """Prepare the output for writing."""

    @abc.abstractmethod
    async def write(self, batch: MessageBatch) -> None:
        """Send one batch to the destination."""

    @abc.abstractmethod
    async def close(self) -> None:
        """Release whatever the output holds."""


class Processor(abc.ABC):
    """A step that transforms batches."""

    @abc.abstractmethod
    async def process(self, batch: MessageBatch) -> list[MessageBatch]:
        """Turn one batch into zero or more batches."""

    @abc.abstractmethod
    async def close(self) -> None:
        """Release whatever the processor holds."""


ComponentConfig = Optional[Mapping[str, Any]]
OutputBuilder = Callable[[ComponentConfig], Output]
ProcessorBuilder = Callable[[ComponentConfig], Processor]

_output_builders: dict[str, OutputBuilder] = {}
_processor_builders: dict[str, ProcessorBuilder] = {}


def register_output_builder(name: str, builder: OutputBuilder) -> None:
    """Make an output type available under a name."""
    _output_builders[name] = builder


def build_output(name: str, config: ComponentConfig = None) -> Output:
    """Create an output of a registered type from its configuration."""
    try:
        builder = _output_builders[name]
    except KeyError:
        raise ConfigError(f"Unknown output type: {name}") from None
    return builder(config)


def register_processor_builder(name: str, builder: ProcessorBuilder) -> None:
    """Make a processor type available under a name."""
    _processor_builders[name] = builder


def build_processor(name: str, config: ComponentConfig = None) -> Processor:
    """Create a processor of a registered type from its configuration."""
    try:
        builder = _processor_builders[name]
    except KeyError:
        raise ConfigError(f"Unknown processor type: {name}") from None
    return builder(config)