import json
from pathlib import Path

import pytest

from build_pipeline import cli
from build_pipeline.app import run as app_run


class _FakeExecutor:
    failing: tuple[tuple[str, ...], ...] = ()

    def __init__(self, **kwargs):
        self.kwargs = kwargs

    def execute(self, action, *, cwd, env, cancel_event, logger, label):
        logger.info("[%s] fake %s", label, action.command)
        return 101 if action.argv in self.failing else 0


def _write_config(tmp_path: Path, *, default_repository: bool = False) -> Path:
    repository = "null" if default_repository else f"'{(tmp_path / 'source').as_posix()}'"
    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        "\n".join(
            [
                "run:",
                f"  log_path: '{(tmp_path / 'logs').as_posix()}'",
                f"  report_path: '{(tmp_path / 'reports').as_posix()}'",
                f"  run_index_path: '{(tmp_path / 'reports' / 'runs_index.jsonl').as_posix()}'",
                "source:",
                f"  repository: {repository}",
                "  revision: HEAD",
                "workers:",
                f"  workspace_root: '{(tmp_path / 'workspace').as_posix()}'",
                "  nodes:",
                "    - name: linux-1",
                "      labels: [linux]",
                "    - name: linux-2",
                "      labels: [linux]",
                "tracks:",
                "  - name: linux",
                "    node: linux",
                "    stages:",
                "      - name: prepare",
                "        actions: [rustup update, rustup override add stable]",
                "      - name: test",
                "        actions: [cargo test]",
                "      - name: build",
                "        actions: [cargo build --release --target x86_64-unknown-linux-gnu]",
                "  - name: win64",
                "    node: linux",
                "    stages:",
                "      - name: prepare",
                "        actions: [rustup update, rustup override add beta, rustup target add x86_64-pc-windows-gnu]",
                "      - name: build",
                "        actions: [cargo build --release --target x86_64-pc-windows-gnu]",
                "",
            ]
        ),
        encoding="utf-8",
    )
    return config_path


def test_cli_list_tracks_smoke(tmp_path, capsys):
    config_path = _write_config(tmp_path)

    rc = cli.main(["--config", str(config_path), "list-tracks"])
    assert rc == 0

    out = capsys.readouterr().out
    assert "linux (node: linux)" in out
    assert "win64 (node: linux)" in out
    assert "    $ cargo test" in out


def test_cli_list_tracks_shows_checkout_from_launch_repository(tmp_path, monkeypatch, capsys):
    config_path = _write_config(tmp_path, default_repository=True)
    (tmp_path / ".git").mkdir()
    monkeypatch.chdir(tmp_path)

    rc = cli.main(["--config", str(config_path), "list-tracks"])
    assert rc == 0

    out = capsys.readouterr().out
    assert "    $ git fetch --force --quiet " in out
    assert "    $ git reset --hard --quiet FETCH_HEAD" in out


def test_cli_dry_run_respects_track_filter(tmp_path, capsys):
    config_path = _write_config(tmp_path)

    rc = cli.main(["--config", str(config_path), "run", "--dry-run", "--track", "win64"])
    assert rc == 0

    out = capsys.readouterr().out
    assert "win64 (node: linux)" in out
    assert "linux (node: linux)" not in out


def test_cli_run_writes_report_and_index(tmp_path, monkeypatch):
    config_path = _write_config(tmp_path)
    monkeypatch.setenv("BUILD_PIPELINE_CONFIG", str(config_path))
    monkeypatch.setattr(app_run, "SubprocessExecutor", _FakeExecutor)
    monkeypatch.setattr(app_run, "generate_run_id", lambda: "unit_test_cli_run")

    rc = cli.main(["run"])
    assert rc == 0

    report_path = tmp_path / "reports" / "unit_test_cli_run_report.json"
    report = json.loads(report_path.read_text(encoding="utf-8"))
    assert report["status"] == "succeeded"
    assert [track["name"] for track in report["tracks"]] == ["linux", "win64"]
    assert report["tracks"][0]["stages"][0]["name"] == "checkout"

    index_lines = (tmp_path / "reports" / "runs_index.jsonl").read_text(encoding="utf-8").splitlines()
    assert len(index_lines) == 1
    assert json.loads(index_lines[0])["run_id"] == "unit_test_cli_run"

    log_text = (tmp_path / "logs" / "unit_test_cli_run_oplog.log").read_text(encoding="utf-8")
    assert "fake cargo test" in log_text


def test_cli_run_returns_failure_when_a_track_fails(tmp_path, monkeypatch):
    config_path = _write_config(tmp_path)
    monkeypatch.setenv("BUILD_PIPELINE_CONFIG", str(config_path))
    monkeypatch.setattr(_FakeExecutor, "failing", (("cargo", "test"),))
    monkeypatch.setattr(app_run, "SubprocessExecutor", _FakeExecutor)
    monkeypatch.setattr(app_run, "generate_run_id", lambda: "unit_test_cli_fail")

    rc = cli.main(["run"])
    assert rc == 1

    report = json.loads(
        (tmp_path / "reports" / "unit_test_cli_fail_report.json").read_text(encoding="utf-8")
    )
    linux, win64 = report["tracks"]
    assert linux["status"] == "failed"
    assert linux["failed_stage"] == "test"
    assert linux["skipped_stages"] == ["build"]
    assert win64["status"] == "succeeded"


def test_cli_history_summarizes_recorded_runs(tmp_path, monkeypatch, capsys):
    config_path = _write_config(tmp_path)
    monkeypatch.setenv("BUILD_PIPELINE_CONFIG", str(config_path))

    assert cli.main(["history"]) == 0
    assert "No runs recorded" in capsys.readouterr().out

    monkeypatch.setattr(app_run, "SubprocessExecutor", _FakeExecutor)
    assert cli.main(["run"]) == 0
    capsys.readouterr()

    assert cli.main(["history"]) == 0
    out = capsys.readouterr().out
    assert "Runs recorded: 1" in out
    assert "linux" in out
    assert "win64" in out


def test_cli_requires_a_command():
    with pytest.raises(SystemExit):
        cli.main([])
