from dataclasses import dataclass
from typing import Any, Dict, Tuple


@dataclass(frozen=True)
class Detection:
    """
    One labeled box emitted by the postprocessor.

    `bbox` is normalized (y1, x1, y2, x2), image-relative in [0, 1].
    """

    class_index: int
    label: str
    score: float
    bbox: Tuple[float, float, float, float]

    def as_yxyx(self) -> Tuple[float, float, float, float]:
        return self.bbox

    def as_dict(self) -> Dict[str, Any]:
        return {
            "class": self.class_index,
            "label": self.label,
            "score": self.score,
            "bbox": list(self.bbox),
        }
