"""Execution engine for Track/Stage/Action sequences.

This module is intentionally app-agnostic and must not import `build_pipeline.*`.
"""

from __future__ import annotations

import logging
import os
import shlex
import threading
import time
from collections.abc import Mapping, Sequence
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Literal, Protocol, TypeAlias

from trackkit.engine.executor import ActionExecutor, SubprocessExecutor
from trackkit.errors import (
    ActionFailure,
    NodeUnavailable,
    StageFailure,
    TrackCancelled,
    TrackFailure,
)
from trackkit.nodes import NodeProvider, WorkerHandle
from trackkit.overlay import OverlayStack, parse_binding

StageStatus: TypeAlias = Literal["succeeded", "failed", "skipped", "cancelled"]
TrackStatus: TypeAlias = Literal["pending", "running", "succeeded", "failed", "cancelled"]


def utc_now_iso8601() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


def _require_name(value: Any, label: str) -> str:
    if not isinstance(value, str):
        raise TypeError(f"{label} must be a string (type={type(value).__name__})")
    name = value.strip()
    if not name:
        raise ValueError(f"{label} cannot be empty")
    if "/" in name:
        raise ValueError(f"{label} cannot contain '/' (got {name!r})")
    return name


def _normalize_env(value: Any, label: str) -> tuple[str, ...]:
    if isinstance(value, str) or not isinstance(value, (list, tuple)):
        raise TypeError(f"{label} env must be a list of KEY=value strings")
    items = tuple(value)
    for item in items:
        parse_binding(item)
    return items


@dataclass(frozen=True)
class Action:
    """One opaque external command. Success is a zero exit status."""

    name: str
    argv: tuple[str, ...]

    def __post_init__(self) -> None:
        object.__setattr__(self, "name", _require_name(self.name, "Action name"))
        if isinstance(self.argv, str) or not isinstance(self.argv, (list, tuple)):
            raise TypeError(f"Action {self.name} argv must be a sequence of strings")
        argv = tuple(self.argv)
        if not argv:
            raise ValueError(f"Action {self.name} argv cannot be empty")
        for idx, arg in enumerate(argv):
            if not isinstance(arg, str):
                raise TypeError(
                    f"Action {self.name} argv[{idx}] must be a string (type={type(arg).__name__})"
                )
        object.__setattr__(self, "argv", argv)

    @classmethod
    def from_command(cls, command: str, *, name: str | None = None) -> "Action":
        argv = shlex.split(command)
        if not argv:
            raise ValueError(f"Command cannot be empty (got {command!r})")
        return cls(name=name or command.strip().replace("/", "_"), argv=tuple(argv))

    @property
    def command(self) -> str:
        return shlex.join(self.argv)


@dataclass(frozen=True)
class Stage:
    name: str
    actions: tuple[Action, ...]
    env: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "name", _require_name(self.name, "Stage name"))
        actions = tuple(self.actions)
        if not actions:
            raise ValueError(f"Stage {self.name} must declare at least one action")
        for action in actions:
            if not isinstance(action, Action):
                raise TypeError(
                    f"Stage {self.name} actions must be Action objects (type={type(action).__name__})"
                )
        names = [action.name for action in actions]
        duplicates = sorted({name for name in names if names.count(name) > 1})
        if duplicates:
            raise ValueError(f"Duplicate action name(s) in stage {self.name}: {', '.join(duplicates)}")
        object.__setattr__(self, "actions", actions)
        object.__setattr__(self, "env", _normalize_env(self.env, f"Stage {self.name}"))


@dataclass(frozen=True)
class Track:
    """One complete build variant: a node selector plus a fixed stage order."""

    name: str
    node_selector: str
    stages: tuple[Stage, ...]
    env: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "name", _require_name(self.name, "Track name"))
        if not isinstance(self.node_selector, str) or not self.node_selector.strip():
            raise ValueError(f"Track {self.name} node_selector must be a non-empty string")
        object.__setattr__(self, "node_selector", self.node_selector.strip())
        stages = tuple(self.stages)
        if not stages:
            raise ValueError(f"Track {self.name} must declare at least one stage")
        for stage in stages:
            if not isinstance(stage, Stage):
                raise TypeError(
                    f"Track {self.name} stages must be Stage objects (type={type(stage).__name__})"
                )
        names = [stage.name for stage in stages]
        duplicates = sorted({name for name in names if names.count(name) > 1})
        if duplicates:
            raise ValueError(f"Duplicate stage name(s) in track {self.name}: {', '.join(duplicates)}")
        object.__setattr__(self, "stages", stages)
        object.__setattr__(self, "env", _normalize_env(self.env, f"Track {self.name}"))

    @property
    def stage_names(self) -> tuple[str, ...]:
        return tuple(stage.name for stage in self.stages)


@dataclass(frozen=True)
class ActionResult:
    name: str
    command: str
    exit_code: int
    started_at: str
    duration_s: float


@dataclass(frozen=True)
class StageResult:
    name: str
    status: StageStatus
    actions: tuple[ActionResult, ...] = ()
    started_at: str | None = None
    duration_s: float = 0.0
    error: str | None = None


@dataclass(frozen=True)
class TrackResult:
    name: str
    node_selector: str
    status: TrackStatus
    stages: tuple[StageResult, ...] = ()
    worker: str | None = None
    failed_stage: str | None = None
    error: str | None = None
    started_at: str | None = None
    finished_at: str | None = None
    duration_s: float = 0.0

    @property
    def succeeded(self) -> bool:
        return self.status == "succeeded"

    @property
    def skipped_stages(self) -> tuple[str, ...]:
        return tuple(stage.name for stage in self.stages if stage.status == "skipped")

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["skipped_stages"] = list(self.skipped_stages)
        return payload


@dataclass
class ExecutionContext:
    """Per-run state of one track. Never shared between tracks."""

    track_name: str
    worker: WorkerHandle
    logger: logging.Logger
    cancel_event: threading.Event
    ambient_env: dict[str, str]
    overlays: OverlayStack
    status: TrackStatus = "running"
    current_stage: str | None = None
    steps: list[dict[str, Any]] = field(default_factory=list)

    def environment(self) -> dict[str, str]:
        return self.overlays.resolve(self.ambient_env)

    def check_cancelled(self) -> None:
        if self.cancel_event.is_set():
            raise TrackCancelled(f"Track {self.track_name} cancelled")


class StepRecorder(Protocol):
    def on_step_start(self, ctx: ExecutionContext, path: str, **metrics: Any) -> None:
        ...

    def on_step_end(self, ctx: ExecutionContext, record: dict[str, Any]) -> None:
        ...

    def on_step_error(
        self, ctx: ExecutionContext, path: str, step_name: str, exc: Exception
    ) -> None:
        ...


class DefaultStepRecorder:
    def on_step_start(self, ctx: ExecutionContext, path: str, **metrics: Any) -> None:
        tokens: list[str] = []
        node_type = metrics.get("node_type")
        if isinstance(node_type, str) and node_type.strip():
            tokens.append(f"type={node_type.strip()}")
        worker = metrics.get("worker")
        if isinstance(worker, str) and worker.strip():
            tokens.append(f"worker={worker.strip()}")
        command = metrics.get("command")
        if isinstance(command, str) and command.strip():
            tokens.append(f"command={command.strip()}")
        env_layers = metrics.get("env_layers")
        if isinstance(env_layers, int):
            tokens.append(f"env_layers={env_layers}")

        ctx.logger.info("Step: %s (%s)", path, ", ".join(tokens))

    def on_step_end(self, ctx: ExecutionContext, record: dict[str, Any]) -> None:
        ctx.steps.append(record)
        path = record.get("path", "<unknown>")
        record_type = record.get("type") or "action"
        duration = float(record.get("duration_s", 0.0) or 0.0)

        if record_type == "action":
            ctx.logger.info(
                "Completed action %s (exit=%s, %.1fs)", path, record.get("exit_code"), duration
            )
            return
        ctx.logger.info("Completed %s %s (status=%s, %.1fs)", record_type, path, record.get("status"), duration)

    def on_step_error(
        self, ctx: ExecutionContext, path: str, step_name: str, exc: Exception
    ) -> None:
        ctx.logger.error("Step failed: %s (%s)", path, exc)


class NullStepRecorder:
    def on_step_start(self, ctx: ExecutionContext, path: str, **metrics: Any) -> None:
        return

    def on_step_end(self, ctx: ExecutionContext, record: dict[str, Any]) -> None:
        return

    def on_step_error(
        self, ctx: ExecutionContext, path: str, step_name: str, exc: Exception
    ) -> None:
        return


class TrackRunner:
    """Runs one track at a time on a worker obtained from the node provider.

    A runner holds no per-track state, so one instance can serve several tracks
    concurrently.
    """

    def __init__(
        self,
        *,
        provider: NodeProvider,
        executor: ActionExecutor | None = None,
        recorder: StepRecorder | None = None,
        ambient_env: Mapping[str, str] | None = None,
        logger: logging.Logger | None = None,
        path_separator: str = os.pathsep,
    ) -> None:
        self._provider = provider
        self._executor = executor or SubprocessExecutor()
        self._recorder = recorder or DefaultStepRecorder()
        self._validate_recorder(self._recorder)
        self._ambient_env = dict(os.environ if ambient_env is None else ambient_env)
        self._logger = logger or logging.getLogger("trackkit")
        self._path_separator = path_separator

    def _validate_recorder(self, recorder: StepRecorder) -> None:
        required = ("on_step_start", "on_step_end", "on_step_error")
        for name in required:
            method = getattr(recorder, name, None)
            if method is None or not callable(method):
                raise TypeError(f"Step recorder missing required method: {name}")

    def _attach_pipeline_error(
        self,
        exc: Exception,
        *,
        pipeline_path: str,
        pipeline_node_type: str,
        pipeline_node_name: str,
    ) -> None:
        for attr, value in (
            ("pipeline_path", pipeline_path),
            ("pipeline_node_type", pipeline_node_type),
            ("pipeline_node_name", pipeline_node_name),
        ):
            if not hasattr(exc, attr):
                setattr(exc, attr, value)

    def run(self, track: Track, *, cancel_event: threading.Event | None = None) -> TrackResult:
        cancel_event = cancel_event or threading.Event()
        logger = self._logger.getChild(track.name)
        started_at = utc_now_iso8601()
        started = time.monotonic()

        def _finish(
            status: TrackStatus,
            stages: Sequence[StageResult],
            *,
            worker: str | None = None,
            failed_stage: str | None = None,
            error: str | None = None,
        ) -> TrackResult:
            return TrackResult(
                name=track.name,
                node_selector=track.node_selector,
                status=status,
                stages=tuple(stages),
                worker=worker,
                failed_stage=failed_stage,
                error=error,
                started_at=started_at,
                finished_at=utc_now_iso8601(),
                duration_s=round(time.monotonic() - started, 3),
            )

        not_started = [StageResult(name=stage.name, status="skipped") for stage in track.stages]

        logger.info("Track %s requesting worker (selector=%s)", track.name, track.node_selector)
        try:
            handle = self._provider.acquire(track.node_selector, cancel_event=cancel_event)
        except TrackCancelled as exc:
            logger.warning("Track %s cancelled before a worker was assigned", track.name)
            return _finish("cancelled", not_started, error=str(exc))
        except NodeUnavailable as exc:
            logger.error("Track %s cannot be scheduled: %s", track.name, exc)
            return _finish("failed", not_started, error=str(exc))

        ctx = ExecutionContext(
            track_name=track.name,
            worker=handle,
            logger=logger,
            cancel_event=cancel_event,
            ambient_env=dict(self._ambient_env),
            overlays=OverlayStack(path_separator=self._path_separator),
        )
        stage_results: list[StageResult] = []
        try:
            self._recorder.on_step_start(ctx, track.name, node_type="track", worker=handle.name)
            with ctx.overlays.apply(track.env):
                self._run_stages(ctx, track, stage_results)
            ctx.status = "succeeded"
            return _finish("succeeded", stage_results, worker=handle.name)
        except TrackFailure as exc:
            cancelled = isinstance(exc.cause, StageFailure) and isinstance(
                exc.cause.cause, TrackCancelled
            )
            ctx.status = "cancelled" if cancelled else "failed"
            return _finish(
                ctx.status,
                stage_results,
                worker=handle.name,
                failed_stage=exc.stage_name,
                error=str(exc.cause),
            )
        except TrackCancelled as exc:
            ctx.status = "cancelled"
            return _finish("cancelled", stage_results, worker=handle.name, error=str(exc))
        finally:
            self._recorder.on_step_end(
                ctx,
                {
                    "type": "track",
                    "name": track.name,
                    "path": track.name,
                    "status": ctx.status,
                    "worker": handle.name,
                    "duration_s": round(time.monotonic() - started, 3),
                    "created_at": utc_now_iso8601(),
                },
            )
            self._provider.release(handle)

    def _run_stages(
        self, ctx: ExecutionContext, track: Track, stage_results: list[StageResult]
    ) -> None:
        for index, stage in enumerate(track.stages):
            if ctx.cancel_event.is_set():
                stage_results.extend(
                    StageResult(name=pending.name, status="skipped") for pending in track.stages[index:]
                )
                raise TrackCancelled(f"Track {track.name} cancelled before stage {stage.name}")

            ctx.current_stage = stage.name
            result, failure = self._run_stage(ctx, track, stage)
            stage_results.append(result)
            if failure is None:
                continue

            stage_results.extend(
                StageResult(name=pending.name, status="skipped") for pending in track.stages[index + 1 :]
            )
            raise TrackFailure(track.name, stage.name, failure)

    def _run_stage(
        self, ctx: ExecutionContext, track: Track, stage: Stage
    ) -> tuple[StageResult, StageFailure | None]:
        path = f"{track.name}/{stage.name}"
        started_at = utc_now_iso8601()
        started = time.monotonic()
        action_results: list[ActionResult] = []
        self._recorder.on_step_start(
            ctx, path, node_type="stage", env_layers=len(ctx.overlays) + (1 if stage.env else 0)
        )
        try:
            with ctx.overlays.apply(stage.env):
                for action in stage.actions:
                    ctx.check_cancelled()
                    action_result = self._run_action(ctx, path, action)
                    action_results.append(action_result)
                    ctx.check_cancelled()
                    if action_result.exit_code != 0:
                        failure = ActionFailure(action.name, action_result.exit_code, action.argv)
                        self._attach_pipeline_error(
                            failure,
                            pipeline_path=f"{path}/{action.name}",
                            pipeline_node_type="action",
                            pipeline_node_name=action.name,
                        )
                        self._recorder.on_step_error(ctx, f"{path}/{action.name}", action.name, failure)
                        raise failure
        except Exception as exc:
            failure = StageFailure(stage.name, exc)
            self._attach_pipeline_error(
                failure, pipeline_path=path, pipeline_node_type="stage", pipeline_node_name=stage.name
            )
            # Action failures and executor errors were already reported at the action path.
            if isinstance(exc, TrackCancelled):
                self._recorder.on_step_error(ctx, path, stage.name, failure)
            result = StageResult(
                name=stage.name,
                status="cancelled" if isinstance(exc, TrackCancelled) else "failed",
                actions=tuple(action_results),
                started_at=started_at,
                duration_s=round(time.monotonic() - started, 3),
                error=str(exc),
            )
            self._record_stage_end(ctx, path, result)
            return result, failure

        result = StageResult(
            name=stage.name,
            status="succeeded",
            actions=tuple(action_results),
            started_at=started_at,
            duration_s=round(time.monotonic() - started, 3),
        )
        self._record_stage_end(ctx, path, result)
        return result, None

    def _record_stage_end(self, ctx: ExecutionContext, path: str, result: StageResult) -> None:
        self._recorder.on_step_end(
            ctx,
            {
                "type": "stage",
                "name": result.name,
                "path": path,
                "status": result.status,
                "duration_s": result.duration_s,
                "created_at": utc_now_iso8601(),
            },
        )

    def _run_action(self, ctx: ExecutionContext, stage_path: str, action: Action) -> ActionResult:
        path = f"{stage_path}/{action.name}"
        self._recorder.on_step_start(ctx, path, node_type="action", command=action.command)
        started_at = utc_now_iso8601()
        started = time.monotonic()
        try:
            exit_code = self._executor.execute(
                action,
                cwd=ctx.worker.workspace,
                env=ctx.environment(),
                cancel_event=ctx.cancel_event,
                logger=ctx.logger,
                label=stage_path,
            )
        except Exception as exc:
            self._attach_pipeline_error(
                exc, pipeline_path=path, pipeline_node_type="action", pipeline_node_name=action.name
            )
            self._recorder.on_step_error(ctx, path, action.name, exc)
            raise

        result = ActionResult(
            name=action.name,
            command=action.command,
            exit_code=int(exit_code),
            started_at=started_at,
            duration_s=round(time.monotonic() - started, 3),
        )
        if result.exit_code == 0:
            self._recorder.on_step_end(
                ctx,
                {
                    "type": "action",
                    "name": action.name,
                    "path": path,
                    "command": action.command,
                    "exit_code": result.exit_code,
                    "duration_s": result.duration_s,
                    "created_at": result.started_at,
                },
            )
        return result
