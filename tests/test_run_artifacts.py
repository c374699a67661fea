import json

from trackkit import PipelineResult, TrackResult

from build_pipeline.framework.artifacts import (
    append_run_index_entry,
    build_run_index_entry,
    build_run_report,
    write_run_report,
)


def _result():
    return PipelineResult(
        tracks=(
            TrackResult(name="linux", node_selector="linux", status="failed", worker="linux-1", failed_stage="test"),
            TrackResult(name="win64", node_selector="linux", status="succeeded", worker="linux-2"),
        ),
        started_at="2026-01-01T00:00:00Z",
        finished_at="2026-01-01T00:10:00Z",
        duration_s=600.0,
    )


def test_run_index_appends_one_line_per_run(tmp_path):
    index = tmp_path / "reports" / "runs_index.jsonl"

    append_run_index_entry(str(index), build_run_index_entry("r1", _result(), report_path="r1_report.json"))
    append_run_index_entry(str(index), build_run_index_entry("r2", _result(), report_path=None))

    lines = index.read_text(encoding="utf-8").splitlines()
    assert len(lines) == 2
    first = json.loads(lines[0])
    assert first["schema_version"] == 1
    assert first["run_id"] == "r1"
    assert first["status"] == "failed"
    assert first["tracks"][0] == {
        "name": "linux",
        "status": "failed",
        "failed_stage": "test",
        "worker": "linux-1",
        "duration_s": 0.0,
    }


def test_run_report_includes_config_and_log_file(tmp_path):
    report = build_run_report(
        "r1",
        _result(),
        config_meta={"mode": "base"},
        effective_config={"source": {"revision": "HEAD"}},
        log_file=str(tmp_path / "logs" / "r1_oplog.log"),
    )
    path = tmp_path / "reports" / "r1_report.json"

    write_run_report(str(path), report)

    payload = json.loads(path.read_text(encoding="utf-8"))
    assert payload["run_id"] == "r1"
    assert payload["failed_tracks"] == ["linux"]
    assert payload["log_file"] == "r1_oplog.log"
    assert payload["config"] == {"source": {"revision": "HEAD"}}
    assert payload["tracks"][0]["skipped_stages"] == []
