"""Failure taxonomy for track execution.

Failures propagate upward and are never retried:

- ``ActionFailure``: an external command exited non-zero. Aborts its stage.
- ``StageFailure``: a stage aborted by an action failure, an executor error or
  cancellation. Aborts its track.
- ``TrackFailure``: a track aborted by a stage failure. Siblings keep running.
- ``OrchestratorFailure``: at least one track failed; raised on request once
  every track has reached a terminal state.
"""

from __future__ import annotations

from collections.abc import Sequence


class PipelineError(Exception):
    """Base class for all track execution failures."""


class ActionFailure(PipelineError):
    def __init__(self, action_name: str, exit_code: int, argv: Sequence[str] = ()) -> None:
        self.action_name = action_name
        self.exit_code = int(exit_code)
        self.argv = tuple(argv)
        super().__init__(f"Action {action_name} failed (exit={self.exit_code})")


class StageFailure(PipelineError):
    def __init__(self, stage_name: str, cause: Exception) -> None:
        self.stage_name = stage_name
        self.cause = cause
        super().__init__(f"Stage {stage_name} failed: {cause}")


class TrackFailure(PipelineError):
    def __init__(self, track_name: str, stage_name: str | None, cause: Exception) -> None:
        self.track_name = track_name
        self.stage_name = stage_name
        self.cause = cause
        where = f" at stage {stage_name}" if stage_name else ""
        super().__init__(f"Track {track_name} failed{where}: {cause}")


class TrackCancelled(PipelineError):
    """Raised inside a track when its cancellation event is set."""


class NodeUnavailable(PipelineError):
    """No configured worker can ever satisfy a node selector."""


class OrchestratorFailure(PipelineError):
    def __init__(self, failed_tracks: Sequence[str]) -> None:
        self.failed_tracks = tuple(failed_tracks)
        super().__init__(f"Pipeline failed (tracks: {', '.join(self.failed_tracks) or '<none>'})")
