"""Reusable track execution kernel (overlays, stages, tracks, orchestration).

This package is intentionally independent of `build_pipeline.*`. Project-specific
conventions (which commands a track runs, config file layout, report schemas)
must live in the consuming application.
"""

from trackkit.config_namespace import ConfigNamespace
from trackkit.engine.executor import ActionExecutor, SubprocessExecutor
from trackkit.engine.pipeline import (
    Action,
    ActionResult,
    DefaultStepRecorder,
    ExecutionContext,
    NullStepRecorder,
    Stage,
    StageResult,
    StepRecorder,
    Track,
    TrackResult,
    TrackRunner,
    utc_now_iso8601,
)
from trackkit.errors import (
    ActionFailure,
    NodeUnavailable,
    OrchestratorFailure,
    PipelineError,
    StageFailure,
    TrackCancelled,
    TrackFailure,
)
from trackkit.nodes import LocalNodeProvider, NodeProvider, WorkerHandle
from trackkit.orchestrator import PipelineOrchestrator, PipelineResult
from trackkit.overlay import EnvironmentOverlay, OverlayStack, parse_binding

__all__ = [
    "Action",
    "ActionExecutor",
    "ActionFailure",
    "ActionResult",
    "ConfigNamespace",
    "DefaultStepRecorder",
    "EnvironmentOverlay",
    "ExecutionContext",
    "LocalNodeProvider",
    "NodeProvider",
    "NodeUnavailable",
    "NullStepRecorder",
    "OrchestratorFailure",
    "OverlayStack",
    "PipelineError",
    "PipelineOrchestrator",
    "PipelineResult",
    "StageFailure",
    "Stage",
    "StageResult",
    "StepRecorder",
    "SubprocessExecutor",
    "Track",
    "TrackCancelled",
    "TrackFailure",
    "TrackResult",
    "TrackRunner",
    "WorkerHandle",
    "parse_binding",
    "utc_now_iso8601",
]
