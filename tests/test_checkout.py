import os
import shutil
import subprocess

import pytest

from trackkit import LocalNodeProvider, NullStepRecorder, SubprocessExecutor, Track, TrackRunner

from build_pipeline.framework.checkout import checkout_actions, checkout_stage
from build_pipeline.framework.config import SourceConfig


def _git(cwd, *args):
    subprocess.run(
        ["git", "-c", "user.name=ci", "-c", "user.email=ci@example.com", *args],
        cwd=str(cwd),
        check=True,
        capture_output=True,
    )


def _snapshot(root):
    files = {}
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames[:] = [name for name in dirnames if name != ".git"]
        for filename in filenames:
            path = os.path.join(dirpath, filename)
            with open(path, "rb") as handle:
                files[os.path.relpath(path, root)] = handle.read()
    return files


def test_checkout_actions_fetch_then_reset_to_fetched_revision():
    actions = checkout_actions(SourceConfig(repository="/src/project", revision="main"))

    assert [action.name for action in actions] == ["git_init", "git_fetch", "git_reset", "git_clean"]
    assert actions[1].argv == ("git", "fetch", "--force", "--quiet", "/src/project", "main")
    assert actions[2].argv == ("git", "reset", "--hard", "--quiet", "FETCH_HEAD")
    assert actions[3].argv == ("git", "clean", "-ffdx", "--quiet")


def test_checkout_without_repository_resets_in_place():
    actions = checkout_actions(SourceConfig(repository=None, revision="HEAD"))

    assert [action.name for action in actions] == ["git_init", "git_reset", "git_clean"]
    assert actions[1].argv[-1] == "HEAD"


@pytest.mark.skipif(shutil.which("git") is None, reason="git is not installed")
def test_running_checkout_twice_yields_the_same_clean_tree(tmp_path):
    source = tmp_path / "source"
    source.mkdir()
    _git(source, "init", "--quiet")
    (source / "Cargo.toml").write_text("[package]\nname = \"demo\"\n", encoding="utf-8")
    (source / ".gitignore").write_text("target/\n", encoding="utf-8")
    _git(source, "add", ".")
    _git(source, "commit", "--quiet", "-m", "initial")

    provider = LocalNodeProvider.from_specs([("linux-1", ["linux"])], workspace_root=str(tmp_path / "ws"))
    runner = TrackRunner(provider=provider, executor=SubprocessExecutor(), recorder=NullStepRecorder())
    track = Track(
        name="linux",
        node_selector="linux",
        stages=(checkout_stage(SourceConfig(repository=str(source), revision="HEAD")),),
    )
    workspace = tmp_path / "ws" / "linux-1"

    first = runner.run(track)
    assert first.succeeded, first.error
    clean_tree = _snapshot(workspace)
    assert set(clean_tree) == {"Cargo.toml", ".gitignore"}

    (workspace / "Cargo.toml").write_text("dirty\n", encoding="utf-8")
    (workspace / "untracked.txt").write_text("stray\n", encoding="utf-8")
    (workspace / "target").mkdir()
    (workspace / "target" / "demo").write_text("binary\n", encoding="utf-8")

    second = runner.run(track)

    assert second.succeeded, second.error
    assert _snapshot(workspace) == clean_tree
