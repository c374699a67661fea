"""Scoped environment overlays.

An overlay is an ordered list of ``KEY=value`` bindings. Overlays are pushed onto
a per-track ``OverlayStack`` for the duration of a block of work and popped on
every exit path. The process environment is never mutated; actions receive the
resolved mapping explicitly.
"""

from __future__ import annotations

import os
import re
from collections.abc import Iterable, Iterator, Mapping, Sequence
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Callable, TypeVar

T = TypeVar("T")

_VAR_RE = re.compile(r"\$(?:\{(?P<braced>[A-Za-z_][A-Za-z0-9_]*)\}|(?P<bare>[A-Za-z_][A-Za-z0-9_]*))")


def parse_binding(text: str) -> tuple[str, str]:
    if not isinstance(text, str):
        raise TypeError(f"Environment binding must be a string (type={type(text).__name__})")
    key, sep, value = text.partition("=")
    key = key.strip()
    if not sep:
        raise ValueError(f"Environment binding must look like KEY=value (got {text!r})")
    if not key:
        raise ValueError(f"Environment binding has an empty key (got {text!r})")
    name, plus, suffix = key.partition("+")
    if not name or (plus and not suffix):
        raise ValueError(f"Invalid additive binding key: {key!r} (expected NAME+SUFFIX)")
    return key, value


def split_additive_key(key: str) -> tuple[str, str | None]:
    """Return ``(NAME, SUFFIX)`` for ``NAME+SUFFIX`` keys and ``(key, None)`` otherwise."""

    name, plus, suffix = key.partition("+")
    if not plus:
        return key, None
    return name, suffix


def expand_vars(value: str, env: Mapping[str, str]) -> str:
    def _replace(match: re.Match[str]) -> str:
        name = match.group("braced") or match.group("bare")
        if name in env:
            return env[name]
        return match.group(0)

    return _VAR_RE.sub(_replace, value)


@dataclass(frozen=True)
class EnvironmentOverlay:
    bindings: tuple[tuple[str, str], ...] = ()

    @classmethod
    def from_strings(cls, bindings: Iterable[str]) -> "EnvironmentOverlay":
        return cls(bindings=tuple(parse_binding(item) for item in bindings))

    def as_strings(self) -> tuple[str, ...]:
        return tuple(f"{key}={value}" for key, value in self.bindings)

    def apply_to(self, env: dict[str, str], *, path_separator: str = os.pathsep) -> None:
        """Fold this overlay into ``env`` in place."""

        for key, raw_value in self.bindings:
            value = expand_vars(raw_value, env)
            name, suffix = split_additive_key(key)
            if suffix is None:
                env[name] = value
                continue
            existing = env.get(name)
            env[name] = f"{value}{path_separator}{existing}" if existing else value


class OverlayStack:
    """Stack of overlays active for one running track."""

    def __init__(self, *, path_separator: str = os.pathsep) -> None:
        self._layers: list[EnvironmentOverlay] = []
        self.path_separator = path_separator

    def __len__(self) -> int:
        return len(self._layers)

    @property
    def layers(self) -> tuple[EnvironmentOverlay, ...]:
        return tuple(self._layers)

    @contextmanager
    def apply(self, bindings: Sequence[str] | EnvironmentOverlay) -> Iterator[EnvironmentOverlay]:
        overlay = (
            bindings
            if isinstance(bindings, EnvironmentOverlay)
            else EnvironmentOverlay.from_strings(bindings)
        )
        depth = len(self._layers)
        self._layers.append(overlay)
        try:
            yield overlay
        finally:
            del self._layers[depth:]

    def run(self, bindings: Sequence[str] | EnvironmentOverlay, body: Callable[[], T]) -> T:
        with self.apply(bindings):
            return body()

    def resolve(self, ambient: Mapping[str, str]) -> dict[str, str]:
        env = dict(ambient)
        for overlay in self._layers:
            overlay.apply_to(env, path_separator=self.path_separator)
        return env
