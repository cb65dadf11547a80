from dataclasses import dataclass
from typing import Optional

import numpy as np


@dataclass(frozen=True)
class NMSConfig:
    iou_threshold: float = 0.5
    score_threshold: float = 0.3
    max_detections: int = 10

    def __post_init__(self) -> None:
        if not np.isfinite(self.score_threshold):
            raise ValueError(f"score_threshold must be finite, got {self.score_threshold}")
        if not 0.0 <= self.iou_threshold <= 1.0:
            raise ValueError(f"iou_threshold must be in [0, 1], got {self.iou_threshold}")
        if self.max_detections < 0:
            raise ValueError(f"max_detections must be >= 0, got {self.max_detections}")


def _corners(boxes: np.ndarray):
    # Boxes may come with swapped corners; normalize per axis.
    y1 = np.minimum(boxes[:, 0], boxes[:, 2])
    x1 = np.minimum(boxes[:, 1], boxes[:, 3])
    y2 = np.maximum(boxes[:, 0], boxes[:, 2])
    x2 = np.maximum(boxes[:, 1], boxes[:, 3])
    return y1, x1, y2, x2


def iou(box_a: np.ndarray, box_b: np.ndarray) -> float:
    """IoU of two (y1, x1, y2, x2) boxes. Zero when either box has no area."""
    y1, x1, y2, x2 = _corners(np.asarray([box_a, box_b], dtype=np.float64))
    areas = (y2 - y1) * (x2 - x1)
    if areas[0] <= 0 or areas[1] <= 0:
        return 0.0
    ih = max(0.0, min(y2[0], y2[1]) - max(y1[0], y1[1]))
    iw = max(0.0, min(x2[0], x2[1]) - max(x1[0], x1[1]))
    inter = ih * iw
    return float(inter / (areas[0] + areas[1] - inter))


def nms(boxes: np.ndarray, scores: np.ndarray, cfg: NMSConfig, valid: Optional[np.ndarray] = None) -> np.ndarray:
    """
    Greedy NumPy NMS. Expects boxes shape (N, 4) as (y1, x1, y2, x2) and scores shape (N,).

    Candidates are boxes scoring at least `cfg.score_threshold`, visited by
    descending score with ties going to the lower index. A candidate is dropped
    when its IoU with an already selected box exceeds `cfg.iou_threshold`.
    Boxes where the optional boolean mask `valid` is False are never selected.

    Returns indices of kept boxes in selection order.
    """

    if boxes.size == 0 or cfg.max_detections == 0:
        return np.empty((0,), dtype=np.int32)

    boxes = np.asarray(boxes, dtype=np.float64)
    scores = np.asarray(scores, dtype=np.float64)

    y1, x1, y2, x2 = _corners(boxes)
    areas = (y2 - y1) * (x2 - x1)

    # NaN compares False, so it never becomes a candidate.
    eligible = scores >= cfg.score_threshold
    if valid is not None:
        eligible &= np.asarray(valid, dtype=bool)
    candidates = np.where(eligible)[0]
    order = candidates[np.argsort(-scores[candidates], kind="stable")]
    keep = []

    while order.size > 0 and len(keep) < cfg.max_detections:
        i = order[0]
        keep.append(i)
        rest = order[1:]

        yy1 = np.maximum(y1[i], y1[rest])
        xx1 = np.maximum(x1[i], x1[rest])
        yy2 = np.minimum(y2[i], y2[rest])
        xx2 = np.minimum(x2[i], x2[rest])

        h = np.maximum(0.0, yy2 - yy1)
        w = np.maximum(0.0, xx2 - xx1)
        inter = h * w
        union = areas[i] + areas[rest] - inter
        has_area = (areas[i] > 0) & (areas[rest] > 0)
        overlap = np.where(has_area, inter / np.where(has_area, union, 1.0), 0.0)

        order = rest[overlap <= cfg.iou_threshold]

    return np.array(keep, dtype=np.int32)
