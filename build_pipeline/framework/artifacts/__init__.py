"""Run artifacts: per-run JSON report and the append-only JSONL run index."""

from build_pipeline.framework.artifacts.report import (
    RUN_INDEX_SCHEMA_VERSION,
    append_run_index_entry,
    build_run_index_entry,
    build_run_report,
    generate_run_id,
    write_run_report,
)

__all__ = [
    "RUN_INDEX_SCHEMA_VERSION",
    "append_run_index_entry",
    "build_run_index_entry",
    "build_run_report",
    "generate_run_id",
    "write_run_report",
]
