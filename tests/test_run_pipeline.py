import os
import threading

import pytest

from trackkit import LocalNodeProvider

from build_pipeline.app.run import EXIT_FAILED, EXIT_OK, exit_code_for, resolve_source, run_pipeline
from build_pipeline.framework.config import SourceConfig


class _EnvCapturingExecutor:
    def __init__(self, exit_codes=None):
        self.exit_codes = dict(exit_codes or {})
        self.calls = []
        self._lock = threading.Lock()

    def execute(self, action, *, cwd, env, cancel_event, logger, label):
        with self._lock:
            self.calls.append((label, action.argv, dict(env)))
        return self.exit_codes.get(action.argv, 0)


def _cfg(tmp_path):
    return {
        "run": {
            "log_path": str(tmp_path / "logs"),
            "report_path": str(tmp_path / "reports"),
            "run_index_path": str(tmp_path / "reports" / "runs_index.jsonl"),
        },
        "source": {"repository": str(tmp_path / "source"), "revision": "HEAD"},
        "toolchain": {"bin_dir": "$HOME/.cargo/bin"},
        "workers": {
            "workspace_root": str(tmp_path / "workspace"),
            "nodes": [{"name": "linux-1", "labels": ["linux"]}, {"name": "linux-2", "labels": ["linux"]}],
        },
        "tracks": [
            {
                "name": "linux",
                "node": "linux",
                "env": ["PATH+TOOLS=/opt/tools/bin"],
                "stages": [
                    {"name": "prepare", "actions": ["rustup update"]},
                    {"name": "test", "actions": ["cargo test"]},
                    {"name": "build", "actions": ["cargo build --release"]},
                ],
            },
            {
                "name": "win64",
                "node": "linux",
                "stages": [
                    {"name": "prepare", "actions": ["rustup target add x86_64-pc-windows-gnu"]},
                    {"name": "build", "actions": ["cargo build --release --target x86_64-pc-windows-gnu"]},
                ],
            },
        ],
    }


def test_toolchain_path_merges_with_track_path_for_every_tool_action(tmp_path):
    executor = _EnvCapturingExecutor()

    result = run_pipeline(
        _cfg(tmp_path),
        run_id="unit_env",
        executor=executor,
        ambient_env={"PATH": "/usr/bin", "HOME": "/home/ci"},
    )

    assert exit_code_for(result) == EXIT_OK
    envs = {(label, argv): env for label, argv, env in executor.calls}
    test_env = envs[("linux/test", ("cargo", "test"))]
    assert test_env["PATH"].split(os.pathsep)[:3] == [
        "/home/ci/.cargo/bin",
        "/opt/tools/bin",
        "/usr/bin",
    ]
    checkout_env = [env for label, _argv, env in executor.calls if label == "linux/checkout"][0]
    assert "/home/ci/.cargo/bin" not in checkout_env["PATH"]


def test_failed_test_stage_is_reported_and_build_never_runs(tmp_path):
    executor = _EnvCapturingExecutor(exit_codes={("cargo", "test"): 101})

    result = run_pipeline(_cfg(tmp_path), run_id="unit_fail", executor=executor, ambient_env={})

    assert exit_code_for(result) == EXIT_FAILED
    assert result.track("linux").failed_stage == "test"
    assert result.track("win64").succeeded
    labels = [label for label, _argv, _env in executor.calls]
    assert "linux/build" not in labels
    assert "win64/build" in labels


def test_explicit_provider_is_used(tmp_path):
    provider = LocalNodeProvider.from_specs(
        [("builder", ["linux"])], workspace_root=str(tmp_path / "other"), poll_interval=0.01
    )

    result = run_pipeline(
        _cfg(tmp_path), run_id="unit_provider", executor=_EnvCapturingExecutor(), provider=provider, ambient_env={}
    )

    assert {track.worker for track in result.tracks} == {"builder"}


def test_unknown_track_filter_raises(tmp_path):
    with pytest.raises(ValueError, match="Unknown track"):
        run_pipeline(_cfg(tmp_path), run_id="unit_only", only=["mac"], executor=_EnvCapturingExecutor())


def test_resolve_source_keeps_explicit_repository():
    source = SourceConfig(repository="/src/project", revision="main")

    assert resolve_source(source) is source
