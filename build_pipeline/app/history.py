from __future__ import annotations

from build_pipeline.foundation.config_io import load_config
from build_pipeline.framework.config import RunConfig
from build_pipeline.framework.history import load_run_history, summarize_history


def main(*, config_path: str | None = None) -> int:
    cfg_dict, _cfg_meta = load_config(config_path=config_path)
    cfg, _warnings = RunConfig.from_dict(cfg_dict)

    history = load_run_history(cfg.run.run_index_path)
    if history.empty:
        print(f"No runs recorded in {cfg.run.run_index_path}")
        return 0

    summary = summarize_history(history)
    print(f"Runs recorded: {history['run_id'].nunique()}")
    print(summary.to_string(index=False))
    return 0
