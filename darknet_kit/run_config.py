from __future__ import annotations

import argparse
import json
from pathlib import Path
from typing import Dict, List, Sequence

from .errors import ConfigError


def load_run_config(path: Path) -> Dict[str, object]:
    if not path.exists():
        raise FileNotFoundError(f"Run config not found: {path}")
    raw = path.read_text(encoding="utf-8")
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ConfigError(f"Invalid run config JSON: {path}") from exc
    if not isinstance(payload, dict):
        raise ConfigError("Run config must be a JSON object")
    return payload


def collect_cli_dests(parser: argparse.ArgumentParser, argv: Sequence[str]) -> set[str]:
    """Destinations set explicitly on the command line; these win over the run config."""

    dests: set[str] = set()
    for opt, action in parser._option_string_actions.items():
        for arg in argv:
            if arg == opt or arg.startswith(f"{opt}="):
                dests.add(action.dest)
                break
    return dests


def _coerce_str_list(value: object, key: str) -> List[str]:
    if isinstance(value, str):
        value = value.strip()
        if not value:
            raise ConfigError(f"{key} must not be an empty string")
        return [value]
    if isinstance(value, list) and all(isinstance(item, str) for item in value):
        cleaned = [item.strip() for item in value]
        if not cleaned or any(not item for item in cleaned):
            raise ConfigError(f"{key} must not contain empty strings")
        return cleaned
    raise ConfigError(f"{key} must be a string or list of strings")


STR_KEYS = {
    "model",
    "config_path",
    "names",
    "framework",
    "backend",
    "dnn_backend",
    "dnn_target",
    "nms",
    "out_dir",
    "log_level",
}
# May be empty strings (e.g. no .cfg for single-file models, let OpenCV guess the framework).
EMPTY_OK_KEYS = {"config_path", "framework"}
INT_KEYS = {"blob_width", "blob_height", "min_outputs"}
FLOAT_KEYS = {"conf", "iou"}
BOOL_KEYS = {"show", "strict_labels", "swap_rb", "class_colors"}


def apply_run_config(
    *,
    args: argparse.Namespace,
    payload: Dict[str, object],
    cli_dests: set[str],
    parser: argparse.ArgumentParser,
    positional_dests: Sequence[str] = ("images",),
) -> None:
    """
    Copy run config values onto `args`, skipping anything given on the command line.

    Positional destinations (images) are only taken from the config when the
    command line left them empty.
    """

    allowed = {action.dest for action in parser._actions if action.dest != "help"}
    if "config" in payload:
        raise ConfigError("run config must not include the 'config' key")
    unknown = sorted(k for k in payload.keys() if k not in allowed)
    if unknown:
        raise ConfigError(f"Unknown run config keys: {unknown}")

    for key, value in payload.items():
        if key in cli_dests:
            continue
        if value is None:
            continue
        if key in positional_dests:
            if getattr(args, key, None):
                continue
            setattr(args, key, _coerce_str_list(value, key))
            continue
        if key == "onnx_providers":
            if isinstance(value, list):
                value = _coerce_str_list(value, key)
                setattr(args, key, ",".join(value))
            elif isinstance(value, str) and value.strip():
                setattr(args, key, value)
            else:
                raise ConfigError("onnx_providers must be a non-empty string or list of strings")
            continue
        if key in STR_KEYS:
            if not isinstance(value, str) or (not value.strip() and key not in EMPTY_OK_KEYS):
                raise ConfigError(f"{key} must be a non-empty string")
            setattr(args, key, value)
            continue
        if key in BOOL_KEYS:
            if not isinstance(value, bool):
                raise ConfigError(f"{key} must be a boolean")
            setattr(args, key, value)
            continue
        if key in INT_KEYS:
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ConfigError(f"{key} must be an integer")
            if isinstance(value, float) and not value.is_integer():
                raise ConfigError(f"{key} must be an integer")
            setattr(args, key, int(value))
            continue
        if key in FLOAT_KEYS:
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ConfigError(f"{key} must be a number")
            setattr(args, key, float(value))
            continue
        raise ConfigError(f"Unsupported run config key: {key}")
