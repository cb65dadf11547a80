from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Sequence, Tuple, Union

import numpy as np


PathLike = Union[str, Path]


@dataclass(frozen=True)
class OnnxRuntimeBackendConfig:
    """
    Configuration for ONNX Runtime inference.

    - providers: ORT execution providers (e.g., ["CPUExecutionProvider"])
    - input_name: graph input receiving the image tensor
    - output_names: (scores, boxes) output names; None takes the first two outputs
    """

    providers: Optional[Sequence[str]] = None
    input_name: str = "image_tensor"
    output_names: Optional[Tuple[str, str]] = None


class OnnxRuntimeBackend:
    """
    Minimal ONNX Runtime backend for the exported detector.

    Expects an NHWC blob shaped (1, H, W, 3). Returns (scores, boxes) as NumPy
    arrays, typically (1, N, C) and (1, N, 1, 4).
    """

    def __init__(self, model_path: PathLike, cfg: OnnxRuntimeBackendConfig = OnnxRuntimeBackendConfig()):
        try:
            import onnxruntime as ort  # type: ignore
        except Exception as e:  # pragma: no cover
            raise ImportError(
                "onnxruntime is required for the ONNX backend. Install it with `pip install onnxruntime`."
            ) from e

        self._ort = ort
        self.model_path = Path(model_path)
        if not self.model_path.exists():
            raise FileNotFoundError(str(self.model_path))

        sess_opts = ort.SessionOptions()
        providers = list(cfg.providers) if cfg.providers is not None else None
        self.session = ort.InferenceSession(str(self.model_path), sess_options=sess_opts, providers=providers)

        inputs = list(self.session.get_inputs())
        input_names = [i.name for i in inputs]
        if cfg.input_name not in input_names:
            raise ValueError(f"Input name {cfg.input_name!r} not found. Available: {input_names}")
        self.input_name = cfg.input_name
        self._input_type = next(i.type for i in inputs if i.name == cfg.input_name)

        if cfg.output_names is not None:
            self.output_names = list(cfg.output_names)
        else:
            outputs = [o.name for o in self.session.get_outputs()]
            if len(outputs) < 2:
                raise ValueError(f"Expected at least two outputs (scores, boxes), got {outputs}")
            self.output_names = outputs[:2]

    @property
    def providers_in_use(self) -> Sequence[str]:
        return tuple(self.session.get_providers())

    def infer(self, blob: np.ndarray, extra_inputs: Optional[Dict[str, Any]] = None) -> Tuple[np.ndarray, np.ndarray]:
        # Graphs exported from TF object detection take uint8 images.
        if "uint8" in self._input_type:
            x = np.clip(np.rint(blob), 0, 255).astype(np.uint8)
        else:
            x = np.asarray(blob, dtype=np.float32)

        inputs: Dict[str, Any] = {self.input_name: x}
        if extra_inputs:
            inputs.update(extra_inputs)
        scores, boxes = self.session.run(self.output_names, inputs)
        return scores, boxes
