"""Fork/join execution of independent tracks."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Sequence
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import Any

from trackkit.engine.pipeline import Track, TrackResult, TrackRunner, utc_now_iso8601
from trackkit.errors import OrchestratorFailure


@dataclass(frozen=True)
class PipelineResult:
    tracks: tuple[TrackResult, ...]
    started_at: str
    finished_at: str
    duration_s: float
    interrupted: bool = False

    @property
    def succeeded(self) -> bool:
        return all(track.succeeded for track in self.tracks)

    @property
    def status(self) -> str:
        return "succeeded" if self.succeeded else "failed"

    @property
    def failed_tracks(self) -> tuple[str, ...]:
        return tuple(track.name for track in self.tracks if not track.succeeded)

    def track(self, name: str) -> TrackResult:
        for result in self.tracks:
            if result.name == name:
                return result
        raise KeyError(f"Unknown track: {name}")

    def raise_for_status(self) -> None:
        if not self.succeeded:
            raise OrchestratorFailure(self.failed_tracks)

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "succeeded": self.succeeded,
            "interrupted": self.interrupted,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "duration_s": self.duration_s,
            "failed_tracks": list(self.failed_tracks),
            "tracks": [track.to_dict() for track in self.tracks],
        }


class PipelineOrchestrator:
    """Runs every track concurrently and joins on all of them.

    Tracks share nothing but the final result: one track failing never cancels
    another. ``cancel()`` aborts every in-flight track, ``cancel_track()`` only the
    named one.
    """

    def __init__(self, runner: TrackRunner, *, logger: logging.Logger | None = None) -> None:
        self._runner = runner
        self._logger = logger or logging.getLogger("trackkit.orchestrator")
        self._lock = threading.Lock()
        self._events: dict[str, threading.Event] = {}

    def cancel(self) -> None:
        with self._lock:
            events = list(self._events.values())
        for event in events:
            event.set()

    def cancel_track(self, name: str) -> None:
        with self._lock:
            event = self._events.get(name)
        if event is None:
            raise KeyError(f"Unknown or finished track: {name}")
        event.set()

    def run_all(self, tracks: Sequence[Track]) -> PipelineResult:
        tracks = tuple(tracks)
        if not tracks:
            raise ValueError("run_all requires at least one track")
        names = [track.name for track in tracks]
        duplicates = sorted({name for name in names if names.count(name) > 1})
        if duplicates:
            raise ValueError(f"Duplicate track name(s): {', '.join(duplicates)}")

        events = {track.name: threading.Event() for track in tracks}
        with self._lock:
            self._events = events

        started_at = utc_now_iso8601()
        started = time.monotonic()
        interrupted = False
        self._logger.info("Starting %d track(s): %s", len(tracks), ", ".join(names))

        pool = ThreadPoolExecutor(max_workers=len(tracks), thread_name_prefix="track")
        try:
            futures: dict[Future[TrackResult], Track] = {
                pool.submit(self._run_track, track, events[track.name]): track for track in tracks
            }
            try:
                wait(futures)
            except KeyboardInterrupt:
                interrupted = True
                self._logger.warning("Interrupted; cancelling all tracks")
                self.cancel()
                wait(futures)
        finally:
            pool.shutdown(wait=True)
            with self._lock:
                self._events = {}

        by_name = {futures[future].name: future.result() for future in futures}
        results = tuple(by_name[name] for name in names)
        pipeline = PipelineResult(
            tracks=results,
            started_at=started_at,
            finished_at=utc_now_iso8601(),
            duration_s=round(time.monotonic() - started, 3),
            interrupted=interrupted,
        )
        for result in results:
            self._logger.info(
                "Track %s: %s%s",
                result.name,
                result.status,
                f" (failed stage: {result.failed_stage})" if result.failed_stage else "",
            )
        self._logger.info("Pipeline %s in %.1fs", pipeline.status, pipeline.duration_s)
        return pipeline

    def _run_track(self, track: Track, cancel_event: threading.Event) -> TrackResult:
        started_at = utc_now_iso8601()
        try:
            return self._runner.run(track, cancel_event=cancel_event)
        except Exception as exc:
            self._logger.exception("Track %s crashed", track.name)
            segments = str(getattr(exc, "pipeline_path", "") or "").split("/")
            failed_stage = segments[1] if len(segments) > 1 else None
            return TrackResult(
                name=track.name,
                node_selector=track.node_selector,
                status="failed",
                failed_stage=failed_stage,
                error=f"{type(exc).__name__}: {exc}",
                started_at=started_at,
                finished_at=utc_now_iso8601(),
            )
