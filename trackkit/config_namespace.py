"""Strict configuration namespace helper for `trackkit`."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Iterable

_MISSING = object()


def _join_path(parent: str, key: str) -> str:
    if not parent:
        return key
    return f"{parent}.{key}"


@dataclass
class ConfigNamespace:
    """Small helper for config parsing with consumed-keys enforcement.

    Every key read through the helper is marked consumed; ``assert_consumed``
    rejects anything left over (typos, stale keys) with the dotted key path.
    """

    data: Mapping[str, Any]
    path: str
    _consumed: set[str] = field(default_factory=set, init=False, repr=False)
    _children: dict[str, "ConfigNamespace"] = field(default_factory=dict, init=False, repr=False)
    _items: dict[str, list["ConfigNamespace"]] = field(default_factory=dict, init=False, repr=False)
    _effective: dict[str, Any] = field(default_factory=dict, init=False, repr=False)

    @classmethod
    def empty(cls, *, path: str) -> "ConfigNamespace":
        return cls({}, path=path)

    def _consume(self, key: str) -> None:
        self._consumed.add(key)

    def consumed_keys(self) -> tuple[str, ...]:
        return tuple(sorted(self._consumed))

    def unconsumed_keys(self) -> tuple[str, ...]:
        return tuple(sorted(str(k) for k in self.data.keys() if k not in self._consumed))

    def assert_consumed(self) -> None:
        unknown = list(self.unconsumed_keys())
        if unknown:
            path = self.path or "<root>"
            consumed = ", ".join(self.consumed_keys()) or "<none>"
            raise ValueError(
                f"Unknown config keys under {path}: {', '.join(unknown)} (consumed: {consumed})"
            )
        for child in self._children.values():
            child.assert_consumed()
        for items in self._items.values():
            for item in items:
                item.assert_consumed()

    def effective_values(self) -> dict[str, Any]:
        out = dict(self._effective)
        for key, child in self._children.items():
            child_effective = child.effective_values()
            if child_effective:
                out[key] = child_effective
        for key, items in self._items.items():
            out[key] = [item.effective_values() for item in items]
        return out

    def _record_effective(self, key: str, value: Any) -> None:
        self._effective[key.strip()] = value

    def _get_raw(self, key: str, *, default: Any) -> Any:
        if not isinstance(key, str) or not key.strip():
            raise TypeError("ConfigNamespace key must be a non-empty string")
        normalized = key.strip()
        if normalized in self._children or normalized in self._items:
            raise ValueError(
                f"{_join_path(self.path, normalized)} already accessed as a nested namespace"
            )

        if normalized not in self.data:
            if default is _MISSING:
                raise ValueError(f"Missing required config key: {_join_path(self.path, normalized)}")
            self._consume(normalized)
            return default

        self._consume(normalized)
        return self.data.get(normalized)

    def namespace(
        self,
        key: str,
        *,
        default: Mapping[str, Any] | None | object = _MISSING,
    ) -> "ConfigNamespace":
        normalized = (key or "").strip()
        if not normalized:
            raise TypeError("ConfigNamespace key must be a non-empty string")
        if normalized in self._children:
            return self._children[normalized]

        raw = self.data.get(normalized)
        if raw is None:
            if default is _MISSING:
                raise ValueError(f"Missing required config namespace: {_join_path(self.path, normalized)}")
            if default is not None and not isinstance(default, Mapping):
                raise TypeError(
                    f"default for {_join_path(self.path, normalized)} must be a mapping or None"
                )
            raw = dict(default) if default is not None else {}
        elif not isinstance(raw, Mapping):
            raise TypeError(
                f"{_join_path(self.path, normalized)} must be a mapping (type={type(raw).__name__})"
            )

        self._consume(normalized)
        child = ConfigNamespace(dict(raw), path=_join_path(self.path, normalized))
        self._children[normalized] = child
        return child

    def namespaces(
        self,
        key: str,
        *,
        default: list[Mapping[str, Any]] | tuple[Mapping[str, Any], ...] | object = _MISSING,
        allow_empty: bool = False,
    ) -> list["ConfigNamespace"]:
        """Parse a list of mappings into child namespaces (``key[0]``, ``key[1]``, ...)."""

        if default is not _MISSING and not isinstance(default, (list, tuple)):
            raise TypeError(f"{_join_path(self.path, key.strip())} default must be a list of mappings")

        raw = self._get_raw(key, default=default)
        normalized = key.strip()
        if raw is None:
            raw = []
        if not isinstance(raw, (list, tuple)):
            raise TypeError(
                f"{_join_path(self.path, normalized)} must be a list of mappings (type={type(raw).__name__})"
            )

        items: list[ConfigNamespace] = []
        for idx, item in enumerate(raw):
            item_path = f"{_join_path(self.path, normalized)}[{idx}]"
            if not isinstance(item, Mapping):
                raise TypeError(f"{item_path} must be a mapping (type={type(item).__name__})")
            items.append(ConfigNamespace(dict(item), path=item_path))

        if not items and not allow_empty:
            raise ValueError(f"{_join_path(self.path, normalized)} cannot be empty")

        self._items[normalized] = items
        return items

    def get_bool(self, key: str, *, default: bool | object = _MISSING) -> bool:
        if default is not _MISSING and not isinstance(default, bool):
            raise TypeError(f"{_join_path(self.path, key.strip())} default must be a boolean")

        value = self._get_raw(key, default=default)
        if not isinstance(value, bool):
            raise TypeError(
                f"{_join_path(self.path, key.strip())} must be a boolean (type={type(value).__name__})"
            )
        self._record_effective(key, value)
        return value

    def get_float(
        self,
        key: str,
        *,
        default: float | object = _MISSING,
        min_value: float | None = None,
    ) -> float:
        if default is not _MISSING and (
            isinstance(default, bool) or not isinstance(default, (int, float))
        ):
            raise TypeError(f"{_join_path(self.path, key.strip())} default must be a float")

        raw = self._get_raw(key, default=default)
        if isinstance(raw, bool) or not isinstance(raw, (int, float)):
            raise TypeError(
                f"{_join_path(self.path, key.strip())} must be a float (type={type(raw).__name__})"
            )
        value = float(raw)
        if min_value is not None and value < float(min_value):
            raise ValueError(
                f"{_join_path(self.path, key.strip())} must be >= {float(min_value)} (got {value})"
            )
        self._record_effective(key, value)
        return value

    def get_str(
        self,
        key: str,
        *,
        default: str | None | object = _MISSING,
        allow_empty: bool = False,
        choices: Iterable[str] | None = None,
    ) -> str | None:
        if default is not _MISSING and default is not None and not isinstance(default, str):
            raise TypeError(f"{_join_path(self.path, key.strip())} default must be a string or None")

        raw = self._get_raw(key, default=default)
        if raw is None:
            self._record_effective(key, None)
            return None

        if not isinstance(raw, str):
            raise TypeError(
                f"{_join_path(self.path, key.strip())} must be a string (type={type(raw).__name__})"
            )
        value = raw.strip()
        if not value and not allow_empty:
            raise ValueError(f"{_join_path(self.path, key.strip())} cannot be empty")
        if choices is not None:
            choice_set = {str(item).strip() for item in choices if str(item).strip()}
            if value not in choice_set:
                allowed = ", ".join(sorted(choice_set)) or "<none>"
                raise ValueError(
                    f"{_join_path(self.path, key.strip())} must be one of: {allowed} (got {value!r})"
                )
        self._record_effective(key, value)
        return value

    def get_list_str(
        self,
        key: str,
        *,
        default: list[str] | tuple[str, ...] | object = _MISSING,
        allow_empty: bool = False,
    ) -> list[str]:
        if default is not _MISSING and not isinstance(default, (list, tuple)):
            raise TypeError(f"{_join_path(self.path, key.strip())} default must be a list[str]")

        raw = self._get_raw(key, default=default)
        if raw is None:
            raw = []

        if not isinstance(raw, (list, tuple)):
            raise TypeError(
                f"{_join_path(self.path, key.strip())} must be a list[str] (type={type(raw).__name__})"
            )

        items: list[str] = []
        for idx, item in enumerate(raw):
            if not isinstance(item, str):
                raise TypeError(
                    f"{_join_path(self.path, key.strip())}[{idx}] must be a string (type={type(item).__name__})"
                )
            trimmed = item.strip()
            if not trimmed:
                raise ValueError(f"{_join_path(self.path, key.strip())}[{idx}] cannot be empty")
            items.append(trimmed)

        if not items and not allow_empty:
            raise ValueError(f"{_join_path(self.path, key.strip())} cannot be empty")

        self._record_effective(key, list(items))
        return items
