"""Message batches, tables, and pluggable outputs and processors for stream pipelines."""

__version__ = "0.1.0"