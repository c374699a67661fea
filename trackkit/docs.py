"""`trackkit` invariants and boundaries.

This module exists to make repository-wide refactors and boundary tests explicit.

Generic invariants:

1) `trackkit` must not import `build_pipeline.*`.
2) `trackkit` provides the execution kernel (overlays, Action/Stage/Track,
   TrackRunner, PipelineOrchestrator, node providers) and a strict config helper
   (ConfigNamespace).
3) `trackkit` does not define project conventions like:
   - which commands a track runs, or on which node label
   - how the source tree is checked out
   - where run reports and indexes are written

Project code injects those through explicit Track definitions and collaborators
(executors, node providers, recorders) implemented outside this package.
"""
