"""Bulk loader for newline-delimited JSON into Elasticsearch."""

from .config import Options
from .indexer import bulk_index, process_ldj, run_pipeline
from .lifecycle import IndexLifecycleManager
from .runner import main

__all__ = ["Options", "bulk_index", "process_ldj", "run_pipeline", "IndexLifecycleManager", "main"]
