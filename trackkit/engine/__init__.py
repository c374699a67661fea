"""Engine primitives for defining and running Track/Stage/Action sequences."""

from trackkit.engine.executor import ActionExecutor, SubprocessExecutor
from trackkit.engine.pipeline import (
    Action,
    ActionResult,
    DefaultStepRecorder,
    ExecutionContext,
    NullStepRecorder,
    Stage,
    StageResult,
    StageStatus,
    StepRecorder,
    Track,
    TrackResult,
    TrackRunner,
    TrackStatus,
    utc_now_iso8601,
)

__all__ = [
    "Action",
    "ActionExecutor",
    "ActionResult",
    "DefaultStepRecorder",
    "ExecutionContext",
    "NullStepRecorder",
    "Stage",
    "StageResult",
    "StageStatus",
    "StepRecorder",
    "SubprocessExecutor",
    "Track",
    "TrackResult",
    "TrackRunner",
    "TrackStatus",
    "utc_now_iso8601",
]
