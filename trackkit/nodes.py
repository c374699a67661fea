"""Worker allocation.

Tracks never choose a machine themselves: they ask a ``NodeProvider`` for a worker
matching their node selector and hold that single handle until they finish.
"""

from __future__ import annotations

import os
import threading
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from typing import Protocol

from trackkit.errors import NodeUnavailable, TrackCancelled


@dataclass(frozen=True)
class WorkerHandle:
    name: str
    workspace: str
    labels: frozenset[str] = field(default_factory=frozenset)

    def __post_init__(self) -> None:
        if not isinstance(self.name, str) or not self.name.strip():
            raise TypeError("WorkerHandle.name must be a non-empty string")
        object.__setattr__(self, "name", self.name.strip())
        if not isinstance(self.workspace, str) or not self.workspace.strip():
            raise TypeError("WorkerHandle.workspace must be a non-empty string")
        object.__setattr__(
            self, "labels", frozenset(str(label).strip() for label in self.labels if str(label).strip())
        )

    def matches(self, selector: str) -> bool:
        key = (selector or "").strip()
        return bool(key) and (key == self.name or key in self.labels)


class NodeProvider(Protocol):
    def acquire(
        self, selector: str, *, cancel_event: threading.Event | None = None
    ) -> WorkerHandle:
        ...

    def release(self, handle: WorkerHandle) -> None:
        ...


class LocalNodeProvider:
    """In-process provider over a fixed pool of workers.

    A worker is busy from ``acquire`` until ``release``. ``acquire`` blocks until a
    matching idle worker exists, and fails fast with ``NodeUnavailable`` when no
    configured worker could ever match.
    """

    def __init__(self, workers: Sequence[WorkerHandle], *, poll_interval: float = 0.1) -> None:
        names = [worker.name for worker in workers]
        duplicates = sorted({name for name in names if names.count(name) > 1})
        if duplicates:
            raise ValueError(f"Duplicate worker name(s): {', '.join(duplicates)}")
        self._workers = tuple(workers)
        self._busy: set[str] = set()
        self._cond = threading.Condition()
        self._poll_interval = poll_interval

    @classmethod
    def from_specs(
        cls,
        specs: Iterable[tuple[str, Iterable[str]]],
        *,
        workspace_root: str,
        poll_interval: float = 0.1,
    ) -> "LocalNodeProvider":
        root = os.path.abspath(os.path.expanduser(workspace_root))
        workers = [
            WorkerHandle(name=name, workspace=os.path.join(root, name), labels=frozenset(labels))
            for name, labels in specs
        ]
        return cls(workers, poll_interval=poll_interval)

    @property
    def workers(self) -> tuple[WorkerHandle, ...]:
        return self._workers

    def busy(self) -> tuple[str, ...]:
        with self._cond:
            return tuple(sorted(self._busy))

    def acquire(
        self, selector: str, *, cancel_event: threading.Event | None = None
    ) -> WorkerHandle:
        candidates = [worker for worker in self._workers if worker.matches(selector)]
        if not candidates:
            available = ", ".join(
                sorted({label for worker in self._workers for label in worker.labels})
            )
            raise NodeUnavailable(
                f"No worker matches node selector {selector!r} (labels: {available or '<none>'})"
            )

        with self._cond:
            worker = self._first_idle(candidates)
            while worker is None:
                if cancel_event is not None and cancel_event.is_set():
                    raise TrackCancelled(f"Cancelled while waiting for a {selector!r} worker")
                self._cond.wait(timeout=self._poll_interval)
                worker = self._first_idle(candidates)
            self._busy.add(worker.name)

        try:
            os.makedirs(worker.workspace, exist_ok=True)
        except OSError:
            self.release(worker)
            raise
        return worker

    def _first_idle(self, candidates: Sequence[WorkerHandle]) -> WorkerHandle | None:
        for worker in candidates:
            if worker.name not in self._busy:
                return worker
        return None

    def release(self, handle: WorkerHandle) -> None:
        with self._cond:
            self._busy.discard(handle.name)
            self._cond.notify_all()
