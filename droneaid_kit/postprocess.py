from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, fields
from typing import Any, List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np

from .errors import ShapeMismatchError
from .labels import LABELS, label_for
from .nms import NMSConfig, nms
from .scope import BufferScope
from .types import Detection

logger = logging.getLogger(__name__)

# Starting value of the per-box max scan; a box whose scores never exceed it has no class.
SCORE_FLOOR = float(np.nextafter(0.0, 1.0))

BBOX_DECIMALS = 4

_OPTION_ALIASES = {
    "scoreThreshold": "score_threshold",
    "iouThreshold": "iou_threshold",
    "maxNumBoxes": "max_num_boxes",
}


@dataclass(frozen=True)
class PostConfig:
    """
    Thresholds for turning raw model output into detections.
    """

    score_threshold: float = 0.3
    iou_threshold: float = 0.5
    max_num_boxes: int = 10

    def __post_init__(self) -> None:
        if not np.isfinite(self.score_threshold):
            raise ValueError(f"score_threshold must be finite, got {self.score_threshold}")
        if not 0.0 <= self.iou_threshold <= 1.0:
            raise ValueError(f"iou_threshold must be in [0, 1], got {self.iou_threshold}")
        if isinstance(self.max_num_boxes, bool) or not isinstance(self.max_num_boxes, int):
            raise ValueError("max_num_boxes must be an integer")
        if self.max_num_boxes < 0:
            raise ValueError(f"max_num_boxes must be >= 0, got {self.max_num_boxes}")

    @classmethod
    def from_mapping(cls, options: Optional[Mapping[str, Any]], base: Optional["PostConfig"] = None) -> "PostConfig":
        """
        Build a config from an options mapping.

        Keys may use either snake_case or the camelCase option names
        (`scoreThreshold`, `iouThreshold`, `maxNumBoxes`). Missing or None
        values keep the value from `base` (defaults when not given).
        """

        base = base or cls()
        if not options:
            return base

        known = {f.name for f in fields(cls)}
        values = {f.name: getattr(base, f.name) for f in fields(cls)}
        for key, value in options.items():
            name = _OPTION_ALIASES.get(key, key)
            if name not in known:
                raise ValueError(f"Unknown postprocess option: {key}")
            if value is None:
                continue
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ValueError(f"{key} must be a number")
            values[name] = value

        values["score_threshold"] = float(values["score_threshold"])
        values["iou_threshold"] = float(values["iou_threshold"])
        if isinstance(values["max_num_boxes"], float):
            if not values["max_num_boxes"].is_integer():
                raise ValueError("max_num_boxes must be an integer")
            values["max_num_boxes"] = int(values["max_num_boxes"])
        return cls(**values)

    def nms_config(self) -> NMSConfig:
        return NMSConfig(
            iou_threshold=self.iou_threshold,
            score_threshold=self.score_threshold,
            max_detections=self.max_num_boxes,
        )


PostOptions = Union[PostConfig, Mapping[str, Any], None]


def resolve_post_config(options: PostOptions, base: Optional[PostConfig] = None) -> PostConfig:
    """Normalize `options` (config, override mapping or None) into a `PostConfig`."""
    if isinstance(options, PostConfig):
        return options
    return PostConfig.from_mapping(options, base=base)


def _check_counts(num_boxes: int, num_classes: int) -> None:
    if num_boxes < 0 or num_classes < 0:
        raise ShapeMismatchError(f"Box/class counts must be >= 0, got num_boxes={num_boxes}, num_classes={num_classes}")


def calculate_max_scores(scores: Sequence[float], num_boxes: int, num_classes: int) -> Tuple[np.ndarray, np.ndarray]:
    """
    Best class per box.

    `scores` is the flat row-major (num_boxes, num_classes) score matrix. For
    each box the first class holding the maximum wins. Boxes where no score
    exceeds `SCORE_FLOOR` get class -1 and score `SCORE_FLOOR`.

    Returns:
        (max_scores float64 (N,), class_indices int64 (N,))
    """

    _check_counts(num_boxes, num_classes)
    flat = np.asarray(scores, dtype=np.float64).reshape(-1)
    if flat.size != num_boxes * num_classes:
        raise ShapeMismatchError(
            f"Expected {num_boxes}x{num_classes}={num_boxes * num_classes} scores, got {flat.size}"
        )

    if num_classes == 0:
        return np.full(num_boxes, SCORE_FLOOR), np.full(num_boxes, -1, dtype=np.int64)

    matrix = flat.reshape(num_boxes, num_classes)
    matrix = np.where(np.isnan(matrix), -np.inf, matrix)
    class_indices = np.argmax(matrix, axis=1).astype(np.int64)
    max_scores = matrix[np.arange(num_boxes), class_indices]

    no_class = ~(max_scores > SCORE_FLOOR)
    class_indices[no_class] = -1
    max_scores = np.where(no_class, SCORE_FLOOR, max_scores)
    return max_scores, class_indices


def _flatten_boxes(raw_boxes: Any, num_boxes: int) -> np.ndarray:
    boxes = np.asarray(raw_boxes, dtype=np.float64)
    if boxes.size == 0 and num_boxes == 0:
        return boxes.reshape(0, 4)
    if boxes.ndim == 3 and boxes.shape[1] == 1:
        boxes = boxes.reshape(boxes.shape[0], boxes.shape[2])
    if boxes.ndim != 2 or boxes.shape[1] != 4:
        raise ShapeMismatchError(f"Expected boxes shaped (N, 1, 4) or (N, 4), got {boxes.shape}")
    if boxes.shape[0] != num_boxes:
        raise ShapeMismatchError(f"Expected {num_boxes} boxes, got {boxes.shape[0]}")
    return boxes


def _format_coord(value: float) -> float:
    return max(0.0, round(float(value), BBOX_DECIMALS))


def format_detections(
    indices: Sequence[int],
    boxes: np.ndarray,
    class_indices: np.ndarray,
    max_scores: np.ndarray,
) -> List[Detection]:
    """Build detections in the order given by `indices`."""
    out: List[Detection] = []
    for idx in indices:
        idx = int(idx)
        cls_id = int(class_indices[idx])
        label = label_for(cls_id)
        if label is None:
            raise ValueError(f"No label for class index {cls_id}")
        y1, x1, y2, x2 = (_format_coord(v) for v in boxes[idx])
        out.append(
            Detection(
                class_index=cls_id,
                label=label,
                score=float(max_scores[idx]),
                bbox=(y1, x1, y2, x2),
            )
        )
    return out


class Postprocessor:
    """
    Turns the raw (scores, boxes) pair of the detector into labeled detections.

    Layout (per image):
    - scores: flat or (num_boxes, num_classes), row-major per box
    - boxes: (num_boxes, 1, 4) normalized [y1, x1, y2, x2]
    """

    def __init__(self, cfg: PostConfig = PostConfig()):
        self.cfg = cfg

    def process(
        self,
        raw_scores: Any,
        raw_boxes: Any,
        num_boxes: int,
        num_classes: int,
        cfg: Optional[PostConfig] = None,
    ) -> List[Detection]:
        cfg = cfg or self.cfg
        if len(LABELS) < num_classes:
            logger.warning("model reports %d classes but only %d labels are known", num_classes, len(LABELS))

        max_scores, class_indices = calculate_max_scores(raw_scores, num_boxes, num_classes)

        with BufferScope() as scope:
            boxes = scope.track(_flatten_boxes(raw_boxes, num_boxes))

            # Boxes without a class (or without a label) never enter NMS.
            labeled = scope.track((class_indices >= 0) & (class_indices < len(LABELS)))
            keep = scope.track(nms(boxes, max_scores, cfg.nms_config(), valid=labeled))

            detections = format_detections(keep, boxes, class_indices, max_scores)

        logger.debug("kept %d of %d boxes", len(detections), num_boxes)
        return detections


async def postprocess(
    raw_scores: Any,
    raw_boxes: Any,
    num_boxes: int,
    num_classes: int,
    options: PostOptions = None,
) -> List[Detection]:
    """
    Async entry point: run `Postprocessor.process` in a worker thread.

    `options` is a `PostConfig` or a mapping of overrides such as
    `{"scoreThreshold": 0.5}`.
    """
    post = Postprocessor(resolve_post_config(options))
    return await asyncio.to_thread(post.process, raw_scores, raw_boxes, num_boxes, num_classes)


def split_outputs(outputs: Sequence[Any]) -> Tuple[np.ndarray, np.ndarray, int, int]:
    """
    Unpack the engine output pair.

    Accepts scores shaped (1, N, C) or (N, C) and boxes shaped (1, N, 1, 4),
    (N, 1, 4) or (N, 4). Output handles exposing release()/dispose()/close()
    are released once their data has been copied out.

    Returns:
        (flat_scores, boxes, num_boxes, num_classes)
    """

    if outputs is None or len(outputs) != 2:
        raise ShapeMismatchError("Expected the model to return (scores, boxes).")

    with BufferScope() as scope:
        raw_scores, raw_boxes = scope.track(outputs[0]), scope.track(outputs[1])
        scores = np.array(raw_scores, dtype=np.float64)
        boxes = np.array(raw_boxes, dtype=np.float64)

    if scores.ndim == 3:
        if scores.shape[0] != 1:
            raise ShapeMismatchError(f"Batch > 1 is not supported (got scores shape {scores.shape}).")
        scores = scores[0]
    if scores.ndim != 2:
        raise ShapeMismatchError(f"Expected scores shaped (1, N, C) or (N, C), got {scores.shape}")

    if boxes.ndim == 4:
        if boxes.shape[0] != 1:
            raise ShapeMismatchError(f"Batch > 1 is not supported (got boxes shape {boxes.shape}).")
        boxes = boxes[0]

    num_boxes, num_classes = int(scores.shape[0]), int(scores.shape[1])
    return scores.reshape(-1), boxes, num_boxes, num_classes


async def process_output(outputs: Sequence[Any], options: PostOptions = None) -> List[Detection]:
    """Convert the engine's (scores, boxes) output into detections."""
    scores, boxes, num_boxes, num_classes = split_outputs(outputs)
    cfg = resolve_post_config(options)
    return await postprocess(scores, boxes, num_boxes, num_classes, cfg)
