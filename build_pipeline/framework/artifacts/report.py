from __future__ import annotations

import json
import os
import uuid
from collections.abc import Mapping
from datetime import datetime
from typing import Any

from trackkit import PipelineResult

RUN_INDEX_SCHEMA_VERSION = 1


def generate_run_id() -> str:
    return f"{datetime.now().strftime('%Y%m%d_%H%M%S')}_{uuid.uuid4().hex[:8]}"


def build_run_report(
    run_id: str,
    result: PipelineResult,
    *,
    config_meta: Mapping[str, Any] | None = None,
    effective_config: Mapping[str, Any] | None = None,
    log_file: str | None = None,
) -> dict[str, Any]:
    payload: dict[str, Any] = {"run_id": run_id, **result.to_dict()}
    if log_file:
        payload["log_file"] = os.path.basename(log_file)
    if config_meta:
        payload["config_meta"] = dict(config_meta)
    if effective_config:
        payload["config"] = dict(effective_config)
    return payload


def write_run_report(path: str, report: Mapping[str, Any]) -> None:
    os.makedirs(os.path.dirname(os.path.abspath(path)), exist_ok=True)
    with open(path, "w", encoding="utf-8") as file:
        json.dump(dict(report), file, ensure_ascii=False, indent=2)
        file.write("\n")


def build_run_index_entry(run_id: str, result: PipelineResult, *, report_path: str | None) -> dict[str, Any]:
    return {
        "schema_version": RUN_INDEX_SCHEMA_VERSION,
        "run_id": run_id,
        "created_at": result.started_at,
        "status": result.status,
        "duration_s": result.duration_s,
        "interrupted": result.interrupted,
        "report_path": report_path,
        "tracks": [
            {
                "name": track.name,
                "status": track.status,
                "failed_stage": track.failed_stage,
                "worker": track.worker,
                "duration_s": track.duration_s,
            }
            for track in result.tracks
        ],
    }


def append_run_index_entry(path: str, entry: Mapping[str, Any]) -> None:
    """
    Append a single JSON object to a JSONL run index file.

    The caller is responsible for building a schema_versioned entry object.
    """

    os.makedirs(os.path.dirname(os.path.abspath(path)), exist_ok=True)
    with open(path, "a", encoding="utf-8") as handle:
        handle.write(json.dumps(dict(entry), ensure_ascii=False))
        handle.write("\n")
