from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, Optional

from .postprocess import PostConfig

_ALLOWED_KEYS = {
    "schema_version",
    "score_threshold",
    "iou_threshold",
    "max_num_boxes",
    "notes",
}


def _optional_number(payload: Dict[str, Any], key: str) -> Optional[float]:
    value = payload.get(key)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"{key} must be a number")
    return float(value)


def _optional_int(payload: Dict[str, Any], key: str) -> Optional[int]:
    value = payload.get(key)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{key} must be an integer")
    return int(value)


def load_post_config(path: Path, base: Optional[PostConfig] = None) -> PostConfig:
    """
    Load detection thresholds from a JSON options file.

        {"schema_version": 1, "score_threshold": 0.4, "iou_threshold": 0.5, "max_num_boxes": 20}

    Keys left out keep their value from `base` (defaults when not given).
    """

    if not path.exists():
        raise FileNotFoundError(f"Options file not found: {path}")
    raw = path.read_text(encoding="utf-8")
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ValueError(f"Invalid options JSON: {path}") from exc
    if not isinstance(payload, dict):
        raise ValueError("Options file must be a JSON object")

    unknown = sorted(set(payload.keys()) - _ALLOWED_KEYS)
    if unknown:
        raise ValueError(f"Unknown option keys: {unknown}")

    schema_version = _optional_int(payload, "schema_version")
    if schema_version is not None and schema_version != 1:
        raise ValueError("options schema_version must be 1")
    notes = payload.get("notes")
    if notes is not None and not isinstance(notes, str):
        raise ValueError("notes must be a string if provided")

    return PostConfig.from_mapping(
        {
            "score_threshold": _optional_number(payload, "score_threshold"),
            "iou_threshold": _optional_number(payload, "iou_threshold"),
            "max_num_boxes": _optional_int(payload, "max_num_boxes"),
        },
        base=base,
    )
