from __future__ import annotations

from collections.abc import Sequence

from trackkit import Action, Stage, Track

from build_pipeline.framework.checkout import checkout_stage
from build_pipeline.framework.config import (
    DEFAULT_TOOLCHAIN_BIN_DIR,
    RunConfig,
    SourceConfig,
    StageConfig,
    TrackConfig,
)


def toolchain_env(
    bin_dir: str = DEFAULT_TOOLCHAIN_BIN_DIR, extra_bindings: Sequence[str] = ()
) -> tuple[str, ...]:
    """Overlay putting the user's toolchain binaries first on ``PATH``.

    ``extra_bindings`` are appended after the ``PATH`` entry, so a plain binding for
    another variable can be layered on without repeating the path setup.
    """

    return (f"PATH+RUST={bin_dir}", *extra_bindings)


def _action_name(index: int, command: str) -> str:
    head = command.split()[:3]
    slug = "_".join(part.strip("-").replace("/", "_") for part in head if part.strip("-"))
    return f"{index:02d}_{slug or 'command'}"


def build_stage(stage_cfg: StageConfig, *, toolchain: tuple[str, ...]) -> Stage:
    actions = tuple(
        Action.from_command(command, name=_action_name(idx, command))
        for idx, command in enumerate(stage_cfg.actions, start=1)
    )
    env = (*toolchain, *stage_cfg.env) if stage_cfg.toolchain_env else stage_cfg.env
    return Stage(name=stage_cfg.name, actions=actions, env=tuple(env))


def build_track(track_cfg: TrackConfig, *, source: SourceConfig, toolchain: tuple[str, ...]) -> Track:
    stages: list[Stage] = []
    if track_cfg.checkout:
        stages.append(checkout_stage(source))
    stages.extend(build_stage(stage_cfg, toolchain=toolchain) for stage_cfg in track_cfg.stages)
    return Track(
        name=track_cfg.name,
        node_selector=track_cfg.node,
        stages=tuple(stages),
        env=track_cfg.env,
    )


def build_tracks(
    cfg: RunConfig,
    *,
    source: SourceConfig | None = None,
    only: Sequence[str] = (),
) -> tuple[Track, ...]:
    """Build the immutable track list for one pipeline run.

    ``only`` restricts the run to the named tracks (in config order); unknown names
    are an error.
    """

    selected = set(only)
    for name in selected:
        cfg.track(name)

    toolchain = toolchain_env(cfg.toolchain.bin_dir, cfg.toolchain.extra_env)
    return tuple(
        build_track(track_cfg, source=source or cfg.source, toolchain=toolchain)
        for track_cfg in cfg.tracks
        if not selected or track_cfg.name in selected
    )


def describe_tracks(tracks: Sequence[Track]) -> list[str]:
    lines: list[str] = []
    for track in tracks:
        lines.append(f"{track.name} (node: {track.node_selector})")
        for stage in track.stages:
            env = f"  [env: {', '.join(stage.env)}]" if stage.env else ""
            lines.append(f"  {stage.name}{env}")
            for action in stage.actions:
                lines.append(f"    $ {action.command}")
    return lines
