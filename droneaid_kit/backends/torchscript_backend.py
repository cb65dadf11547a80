from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Tuple, Union

import numpy as np

from ..errors import ShapeMismatchError


PathLike = Union[str, Path]


@dataclass(frozen=True)
class TorchScriptBackendConfig:
    """
    Configuration for TorchScript inference.

    - device: "cpu" or "cuda" (if available)
    - scores_index/boxes_index: positions of the two outputs in the model's return tuple
    """

    device: str = "cpu"
    scores_index: int = 0
    boxes_index: int = 1


class TorchScriptBackend:
    """
    Minimal TorchScript backend using `torch.jit.load`.

    The scripted model takes a float (1, H, W, 3) tensor and returns a tuple
    holding the scores and boxes tensors.
    """

    def __init__(self, model_path: PathLike, cfg: TorchScriptBackendConfig = TorchScriptBackendConfig()):
        try:
            import torch  # type: ignore
        except Exception as e:  # pragma: no cover
            raise ImportError("torch is required for the TorchScript backend. Install with `pip install torch`.") from e

        self._torch = torch
        self.model_path = Path(model_path)
        if not self.model_path.exists():
            raise FileNotFoundError(str(self.model_path))

        self.device = torch.device(cfg.device)
        self.cfg = cfg

        model = torch.jit.load(str(self.model_path), map_location=self.device)
        model.eval()
        self.model = model

    def infer(self, blob: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        torch = self._torch
        x = torch.as_tensor(blob, device=self.device).float().contiguous()

        with torch.no_grad():
            y = self.model(x)

        if not isinstance(y, (tuple, list)) or len(y) < 2:
            raise ShapeMismatchError("TorchScript model must return (scores, boxes).")

        scores = y[self.cfg.scores_index].detach().to("cpu").numpy()
        boxes = y[self.cfg.boxes_index].detach().to("cpu").numpy()
        return scores, boxes
