from __future__ import annotations

from typing import Iterable, Tuple

import numpy as np

from .types import Detection


def _color_for_class_index(class_index: int) -> Tuple[int, int, int]:
    """
    Deterministic color for a class index, in the channel order of the image being drawn on.
    """

    palette = [
        (255, 56, 56),
        (255, 157, 151),
        (255, 112, 31),
        (255, 178, 29),
        (207, 210, 49),
        (72, 249, 10),
        (146, 204, 23),
        (61, 219, 134),
    ]
    if 0 <= class_index < len(palette):
        return palette[class_index]

    rng = np.random.default_rng(abs(int(class_index)))
    c = rng.integers(0, 256, size=3, dtype=np.uint8)
    return int(c[0]), int(c[1]), int(c[2])


def to_pixel_box(det: Detection, width: int, height: int) -> Tuple[int, int, int, int]:
    """Map a normalized (y1, x1, y2, x2) box to pixel (x1, y1, x2, y2), clipped to the image."""
    y1, x1, y2, x2 = det.as_yxyx()
    x1i = int(np.clip(round(x1 * width), 0, width - 1))
    y1i = int(np.clip(round(y1 * height), 0, height - 1))
    x2i = int(np.clip(round(x2 * width), 0, width - 1))
    y2i = int(np.clip(round(y2 * height), 0, height - 1))
    return x1i, y1i, x2i, y2i


def _label_origin(box: Tuple[int, int, int, int], text_size: Tuple[int, int], width: int, height: int) -> Tuple[int, int]:
    """Top-left corner of the label background: above the box, or just inside it at the top edge."""
    x1, y1 = box[0], box[1]
    tw, th = text_size
    left = max(0, min(x1, width - tw))
    top = y1 - th if y1 >= th else y1
    return left, max(0, min(top, height - th))


def _draw_label(cv2, out: np.ndarray, text: str, box, color, font_scale: float, font_thickness: int) -> None:
    h, w = out.shape[:2]
    (tw, th), baseline = cv2.getTextSize(text, cv2.FONT_HERSHEY_SIMPLEX, font_scale, font_thickness)
    left, top = _label_origin(box, (tw, th + baseline), w, h)
    cv2.rectangle(out, (left, top), (left + tw, top + th + baseline), color, thickness=cv2.FILLED)
    cv2.putText(
        out,
        text,
        (left, top + th),
        cv2.FONT_HERSHEY_SIMPLEX,
        font_scale,
        (255, 255, 255),
        thickness=font_thickness,
        lineType=cv2.LINE_AA,
    )


def draw_detections(
    image: np.ndarray,
    detections: Iterable[Detection],
    *,
    show_score: bool = True,
    box_thickness: int = 2,
    font_scale: float = 0.5,
    font_thickness: int = 1,
) -> np.ndarray:
    """
    Draw labeled boxes on an (H, W, 3) image and return a copy.

    Detections carry normalized boxes, so they can be drawn on the original
    image at any resolution.
    """

    try:
        import cv2  # type: ignore
    except Exception as e:  # pragma: no cover
        raise ImportError("OpenCV is required for draw_detections(). Install with `pip install opencv-python`.") from e

    if image is None or not hasattr(image, "shape"):
        raise TypeError("image must be a NumPy array.")
    if image.ndim != 3 or image.shape[2] != 3:
        raise ValueError(f"Expected image shape (H, W, 3), got {getattr(image, 'shape', None)}")

    out = np.ascontiguousarray(image).copy()
    h, w = out.shape[:2]

    for det in detections:
        box = to_pixel_box(det, w, h)
        color = _color_for_class_index(det.class_index)
        cv2.rectangle(out, box[:2], box[2:], color, thickness=box_thickness)
        text = f"{det.label} {det.score:.2f}" if show_score else det.label
        _draw_label(cv2, out, text, box, color, font_scale, font_thickness)

    return out
