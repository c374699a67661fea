import os

import pytest

from trackkit.overlay import EnvironmentOverlay, OverlayStack, expand_vars, parse_binding


def test_parse_binding_splits_on_first_equals():
    assert parse_binding("RUSTFLAGS=-C target-cpu=native") == ("RUSTFLAGS", "-C target-cpu=native")
    assert parse_binding("PATH+RUST=/opt/cargo/bin") == ("PATH+RUST", "/opt/cargo/bin")
    assert parse_binding("EMPTY=") == ("EMPTY", "")


@pytest.mark.parametrize("text", ["NO_EQUALS", "=value", "PATH+=x", "+RUST=x"])
def test_parse_binding_rejects_malformed_bindings(text):
    with pytest.raises(ValueError):
        parse_binding(text)


def test_overlay_bindings_are_reverted_after_scope_exits():
    stack = OverlayStack(path_separator=":")
    ambient = {"HOME": "/home/ci"}

    with stack.apply(["CARGO_TERM_COLOR=never"]):
        assert stack.resolve(ambient)["CARGO_TERM_COLOR"] == "never"

    assert "CARGO_TERM_COLOR" not in stack.resolve(ambient)
    assert len(stack) == 0


def test_overlay_is_reverted_when_the_block_raises():
    stack = OverlayStack(path_separator=":")
    ambient = {"MODE": "ambient"}

    with pytest.raises(RuntimeError, match="boom"):
        with stack.apply(["MODE=overlay"]):
            assert stack.resolve(ambient)["MODE"] == "overlay"
            raise RuntimeError("boom")

    assert stack.resolve(ambient) == {"MODE": "ambient"}


def test_run_executes_body_inside_the_overlay():
    stack = OverlayStack(path_separator=":")

    seen = stack.run(["TARGET=x86_64-pc-windows-gnu"], lambda: stack.resolve({})["TARGET"])

    assert seen == "x86_64-pc-windows-gnu"
    assert len(stack) == 0


def test_nearer_overlay_wins_for_plain_bindings():
    stack = OverlayStack(path_separator=":")

    with stack.apply(["CHANNEL=stable"]):
        with stack.apply(["CHANNEL=beta"]):
            assert stack.resolve({})["CHANNEL"] == "beta"
        assert stack.resolve({})["CHANNEL"] == "stable"


def test_additive_binding_merges_with_outer_path_contributions():
    stack = OverlayStack(path_separator=":")
    ambient = {"PATH": "/usr/bin:/bin", "HOME": "/home/ci"}

    with stack.apply(["PATH+TOOLS=/opt/tools/bin"]):
        with stack.apply(["PATH+RUST=$HOME/.cargo/bin"]):
            env = stack.resolve(ambient)
            assert env["PATH"] == "/home/ci/.cargo/bin:/opt/tools/bin:/usr/bin:/bin"
        assert stack.resolve(ambient)["PATH"] == "/opt/tools/bin:/usr/bin:/bin"

    assert stack.resolve(ambient)["PATH"] == "/usr/bin:/bin"


def test_additive_binding_extends_a_plain_outer_binding():
    stack = OverlayStack(path_separator=":")

    with stack.apply(["PATH=/sandbox/bin"]):
        with stack.apply(["PATH+RUST=/cargo/bin"]):
            assert stack.resolve({"PATH": "/usr/bin"})["PATH"] == "/cargo/bin:/sandbox/bin"


def test_additive_binding_sets_variable_when_absent():
    stack = OverlayStack(path_separator=":")

    with stack.apply(["LD_LIBRARY_PATH+RUST=/cargo/lib"]):
        assert stack.resolve({})["LD_LIBRARY_PATH"] == "/cargo/lib"


def test_resolve_never_touches_process_environment(monkeypatch):
    monkeypatch.delenv("TRACKKIT_OVERLAY_MARKER", raising=False)
    stack = OverlayStack()

    with stack.apply(["TRACKKIT_OVERLAY_MARKER=1"]):
        assert stack.resolve(os.environ)["TRACKKIT_OVERLAY_MARKER"] == "1"
        assert "TRACKKIT_OVERLAY_MARKER" not in os.environ


def test_expand_vars_leaves_unknown_references_untouched():
    env = {"HOME": "/home/ci"}

    assert expand_vars("${HOME}/bin:$HOME/.cargo/bin", env) == "/home/ci/bin:/home/ci/.cargo/bin"
    assert expand_vars("$UNSET/bin", env) == "$UNSET/bin"


def test_environment_overlay_round_trips_strings():
    overlay = EnvironmentOverlay.from_strings(["A=1", "PATH+X=/x"])

    assert overlay.bindings == (("A", "1"), ("PATH+X", "/x"))
    assert overlay.as_strings() == ("A=1", "PATH+X=/x")
