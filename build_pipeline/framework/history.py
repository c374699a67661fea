"""Run history summaries built from the JSONL run index."""

from __future__ import annotations

import os

import pandas as pd

HISTORY_COLUMNS = ["run_id", "created_at", "run_status", "track", "status", "failed_stage", "duration_s"]
SUMMARY_COLUMNS = ["track", "runs", "succeeded", "success_rate", "last_status", "mean_duration_s"]


def load_run_history(index_path: str) -> pd.DataFrame:
    """Return one row per (run, track) from the run index; empty if there is no index yet."""

    if not os.path.exists(index_path) or os.path.getsize(index_path) == 0:
        return pd.DataFrame(columns=HISTORY_COLUMNS)

    try:
        runs = pd.read_json(index_path, lines=True, dtype=False, convert_dates=False)
    except ValueError as exc:
        raise ValueError(f"Invalid run index {index_path}: {exc}") from exc

    rows: list[dict[str, object]] = []
    for run in runs.to_dict(orient="records"):
        tracks = run.get("tracks")
        if not isinstance(tracks, list):
            raise ValueError(f"Invalid run index {index_path}: run {run.get('run_id')!r} has no tracks list")
        for track in tracks:
            rows.append(
                {
                    "run_id": run.get("run_id"),
                    "created_at": run.get("created_at"),
                    "run_status": run.get("status"),
                    "track": track.get("name"),
                    "status": track.get("status"),
                    "failed_stage": track.get("failed_stage"),
                    "duration_s": track.get("duration_s"),
                }
            )
    return pd.DataFrame(rows, columns=HISTORY_COLUMNS)


def summarize_history(history: pd.DataFrame) -> pd.DataFrame:
    if history.empty:
        return pd.DataFrame(columns=SUMMARY_COLUMNS)

    ordered = history.sort_values("created_at", kind="stable").assign(
        ok=lambda df: df["status"].eq("succeeded"),
        duration_s=lambda df: pd.to_numeric(df["duration_s"], errors="coerce"),
    )
    grouped = ordered.groupby("track", sort=True)
    summary = pd.DataFrame(
        {
            "runs": grouped.size(),
            "succeeded": grouped["ok"].sum().astype(int),
            "last_status": grouped["status"].last(),
            "mean_duration_s": grouped["duration_s"].mean().round(3),
        }
    )
    summary["success_rate"] = (summary["succeeded"] / summary["runs"]).round(3)
    return summary.reset_index()[SUMMARY_COLUMNS]
