from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Any, Mapping

from trackkit import ConfigNamespace
from trackkit.overlay import parse_binding

CHECKOUT_STAGE_NAME = "checkout"
DEFAULT_TOOLCHAIN_BIN_DIR = "$HOME/.cargo/bin"


@dataclass(frozen=True)
class RunSettings:
    log_path: str
    report_path: str
    run_index_path: str
    kill_grace_seconds: float = 10.0


@dataclass(frozen=True)
class SourceConfig:
    repository: str | None
    revision: str


@dataclass(frozen=True)
class ToolchainConfig:
    bin_dir: str
    extra_env: tuple[str, ...] = ()


@dataclass(frozen=True)
class WorkerConfig:
    name: str
    labels: tuple[str, ...]


@dataclass(frozen=True)
class WorkersConfig:
    workspace_root: str
    nodes: tuple[WorkerConfig, ...]


@dataclass(frozen=True)
class StageConfig:
    name: str
    actions: tuple[str, ...]
    toolchain_env: bool = True
    env: tuple[str, ...] = ()


@dataclass(frozen=True)
class TrackConfig:
    name: str
    node: str
    stages: tuple[StageConfig, ...]
    checkout: bool = True
    env: tuple[str, ...] = ()


def _expand_path(value: str) -> str:
    return os.path.expandvars(os.path.expanduser(value))


def _parse_env(ns: ConfigNamespace, key: str) -> tuple[str, ...]:
    items = ns.get_list_str(key, default=[], allow_empty=True)
    for idx, item in enumerate(items):
        try:
            parse_binding(item)
        except ValueError as exc:
            raise ValueError(f"Invalid binding at {ns.path}.{key}[{idx}]: {exc}") from exc
    return tuple(items)


def _parse_stage(ns: ConfigNamespace) -> StageConfig:
    return StageConfig(
        name=str(ns.get_str("name")),
        actions=tuple(ns.get_list_str("actions")),
        toolchain_env=ns.get_bool("toolchain_env", default=True),
        env=_parse_env(ns, "env"),
    )


def _parse_track(ns: ConfigNamespace, *, warnings: list[str]) -> TrackConfig:
    name = str(ns.get_str("name"))
    checkout = ns.get_bool("checkout", default=True)
    stages = tuple(_parse_stage(item) for item in ns.namespaces("stages"))

    names = [stage.name for stage in stages]
    duplicates = sorted({stage for stage in names if names.count(stage) > 1})
    if duplicates:
        raise ValueError(f"Duplicate stage name(s) under {ns.path}.stages: {', '.join(duplicates)}")
    if checkout and CHECKOUT_STAGE_NAME in names:
        raise ValueError(
            f"{ns.path}.stages must not declare '{CHECKOUT_STAGE_NAME}' when checkout is enabled"
        )
    if not checkout:
        warnings.append(f"{ns.path}.checkout is false: stages will run on an uncleaned tree")

    return TrackConfig(
        name=name,
        node=str(ns.get_str("node")),
        stages=stages,
        checkout=checkout,
        env=_parse_env(ns, "env"),
    )


@dataclass(frozen=True)
class RunConfig:
    run: RunSettings
    source: SourceConfig
    toolchain: ToolchainConfig
    workers: WorkersConfig
    tracks: tuple[TrackConfig, ...]
    effective: Mapping[str, Any] = field(default_factory=dict, compare=False, repr=False)

    def track(self, name: str) -> TrackConfig:
        for track in self.tracks:
            if track.name == name:
                return track
        available = ", ".join(track.name for track in self.tracks) or "<none>"
        raise ValueError(f"Unknown track: {name} (available: {available})")

    @classmethod
    def from_dict(cls, cfg: Mapping[str, Any]) -> tuple["RunConfig", list[str]]:
        """Parse and validate a raw config mapping. Returns ``(config, warnings)``."""

        if not isinstance(cfg, Mapping):
            raise TypeError(f"Config must be a mapping (type={type(cfg).__name__})")

        warnings: list[str] = []
        root = ConfigNamespace(dict(cfg), path="")

        run_ns = root.namespace("run", default={})
        run = RunSettings(
            log_path=_expand_path(str(run_ns.get_str("log_path", default="logs"))),
            report_path=_expand_path(str(run_ns.get_str("report_path", default="reports"))),
            run_index_path=_expand_path(
                str(run_ns.get_str("run_index_path", default="reports/runs_index.jsonl"))
            ),
            kill_grace_seconds=run_ns.get_float("kill_grace_seconds", default=10.0, min_value=0.0),
        )

        source_ns = root.namespace("source", default={})
        source = SourceConfig(
            repository=source_ns.get_str("repository", default=None),
            revision=str(source_ns.get_str("revision", default="HEAD")),
        )

        toolchain_ns = root.namespace("toolchain", default={})
        toolchain = ToolchainConfig(
            bin_dir=str(toolchain_ns.get_str("bin_dir", default=DEFAULT_TOOLCHAIN_BIN_DIR)),
            extra_env=_parse_env(toolchain_ns, "extra_env"),
        )

        workers_ns = root.namespace("workers")
        nodes: list[WorkerConfig] = []
        for node_ns in workers_ns.namespaces("nodes"):
            nodes.append(
                WorkerConfig(
                    name=str(node_ns.get_str("name")),
                    labels=tuple(node_ns.get_list_str("labels")),
                )
            )
        node_names = [node.name for node in nodes]
        duplicate_nodes = sorted({name for name in node_names if node_names.count(name) > 1})
        if duplicate_nodes:
            raise ValueError(f"Duplicate worker name(s) under workers.nodes: {', '.join(duplicate_nodes)}")
        workers = WorkersConfig(
            workspace_root=_expand_path(str(workers_ns.get_str("workspace_root", default="workspace"))),
            nodes=tuple(nodes),
        )

        tracks = tuple(_parse_track(item, warnings=warnings) for item in root.namespaces("tracks"))
        track_names = [track.name for track in tracks]
        duplicate_tracks = sorted({name for name in track_names if track_names.count(name) > 1})
        if duplicate_tracks:
            raise ValueError(f"Duplicate track name(s) under tracks: {', '.join(duplicate_tracks)}")

        for idx, track in enumerate(tracks):
            if not any(track.node == node.name or track.node in node.labels for node in nodes):
                raise ValueError(
                    f"tracks[{idx}].node {track.node!r} matches no worker under workers.nodes"
                )

        root.assert_consumed()

        return (
            cls(
                run=run,
                source=source,
                toolchain=toolchain,
                workers=workers,
                tracks=tracks,
                effective=root.effective_values(),
            ),
            warnings,
        )
