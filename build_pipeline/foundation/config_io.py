"""Config file discovery and loading.

``config/config.yaml`` under the repo root is the checked-in base; an optional
``config/config.local.yaml`` beside it is deep-merged on top for machine-specific
settings (worker names, workspace paths). ``BUILD_PIPELINE_CONFIG`` or an explicit
path replaces both with one complete file.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml

CONFIG_ENV_VAR = "BUILD_PIPELINE_CONFIG"
CONFIG_DIR = "config"
BASE_CONFIG_NAME = "config.yaml"
LOCAL_CONFIG_NAME = "config.local.yaml"
REPO_ROOT_MARKERS = ("pyproject.toml", ".git")


def find_repo_root(start: str | os.PathLike[str] | None = None) -> str:
    """Walk up from ``start`` (default: cwd) to the first directory holding a repo marker."""

    origin = Path(start or os.getcwd()).resolve()
    if origin.is_file():
        origin = origin.parent

    for candidate in (origin, *origin.parents):
        if any((candidate / marker).exists() for marker in REPO_ROOT_MARKERS):
            return str(candidate)

    raise FileNotFoundError(
        f"Cannot locate repo root: searched from {origin} for {', '.join(REPO_ROOT_MARKERS)}"
    )


def _read_yaml_file(path: str) -> dict[str, Any]:
    try:
        with open(path, "r", encoding="utf-8") as handle:
            payload = yaml.safe_load(handle)
    except yaml.YAMLError as exc:
        raise ValueError(f"Invalid YAML in {path}: {exc}") from exc

    if payload is None:
        return {}
    if not isinstance(payload, Mapping):
        raise ValueError(f"Config file must contain a YAML mapping: {path}")
    return dict(payload)


def _kind(value: Any) -> str:
    if isinstance(value, Mapping):
        return "mapping"
    if isinstance(value, (list, tuple)):
        return "list"
    return "scalar"


def deep_merge(base: Any, overlay: Any, *, path: str = "") -> Any:
    """Merge ``overlay`` onto ``base``.

    Mappings merge key by key, lists and scalars are replaced wholesale, and an
    explicit ``null`` in the overlay clears the value. Changing the kind of a value
    (mapping, list or scalar) is an error naming the dotted key.
    """

    if overlay is None or base is None:
        return overlay

    base_kind, overlay_kind = _kind(base), _kind(overlay)
    if base_kind != overlay_kind:
        raise ValueError(
            f"Invalid config overlay merge at {path or '<root>'}: "
            f"base is {base_kind} but overlay is {type(overlay).__name__}"
        )

    if base_kind == "list":
        return list(overlay)
    if base_kind == "scalar":
        return overlay

    merged: dict[str, Any] = dict(base)
    for key, value in overlay.items():
        child_path = f"{path}.{key}" if path else str(key)
        merged[key] = deep_merge(base[key], value, path=child_path) if key in base else value
    return merged


def _explicit_path(config_path: str | os.PathLike[str] | None, env_var: str | None) -> str | None:
    raw = config_path if config_path is not None else (os.environ.get(env_var, "") if env_var else "")
    text = str(raw).strip()
    if not text:
        return None
    return os.path.abspath(os.path.expandvars(os.path.expanduser(text)))


def load_config(
    *,
    config_path: str | os.PathLike[str] | None = None,
    env_var: str | None = CONFIG_ENV_VAR,
    start_dir: str | os.PathLike[str] | None = None,
) -> tuple[dict[str, Any], dict[str, Any]]:
    """
    Load the pipeline configuration.

    Returns ``(cfg, meta)``; ``meta["mode"]`` is ``explicit``, ``env``, ``base`` or
    ``base+local`` and ``meta["paths"]`` lists the files read, in merge order.
    """

    single_file = _explicit_path(config_path, env_var)
    if single_file:
        return _read_yaml_file(single_file), {
            "mode": "explicit" if config_path is not None else "env",
            "paths": [single_file],
            "env_var": env_var,
            "repo_root": None,
        }

    repo_root = find_repo_root(start_dir)
    config_dir = os.path.join(repo_root, CONFIG_DIR)
    base_path = os.path.join(config_dir, BASE_CONFIG_NAME)
    local_path = os.path.join(config_dir, LOCAL_CONFIG_NAME)

    if not os.path.isfile(base_path):
        raise FileNotFoundError(f"Missing base config file: {base_path}")

    cfg = _read_yaml_file(base_path)
    paths = [base_path]
    if os.path.isfile(local_path):
        cfg = deep_merge(cfg, _read_yaml_file(local_path))
        paths.append(local_path)

    return cfg, {
        "mode": "base+local" if len(paths) > 1 else "base",
        "paths": paths,
        "env_var": env_var,
        "repo_root": repo_root,
    }
