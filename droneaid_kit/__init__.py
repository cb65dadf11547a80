"""
Image -> detections pipeline for the DroneAid symbol detector.

Preprocessing (decode + aspect-preserving bilinear resize) and postprocessing
(per-box best class + greedy NMS) work on NumPy arrays; the model itself is any
callable mapping a (1, H, W, 3) tensor to raw (scores, boxes) outputs.
Inference runtimes live in `droneaid_kit.backends` and are optional.
"""

from .types import Detection
from .labels import LABELS, label_for
from .errors import DecodeError, DroneAidError, EmptyInputError, ModelUnavailableError, ShapeMismatchError
from .scope import BufferScope
from .preprocess import MAX_SIZE, compute_target_size, decode_image, image_to_tensor, preprocess
from .nms import NMSConfig, nms
from .postprocess import PostConfig, Postprocessor, calculate_max_scores, postprocess, process_output
from .runtime import DroneAidPipeline, ModelHandle, default_model, load_pipeline, find_project_root, resolve_path
from .config import load_post_config
from .visualize import draw_detections

__version__ = "0.0.1"

__all__ = [
    "Detection",
    "LABELS",
    "label_for",
    "DroneAidError",
    "DecodeError",
    "EmptyInputError",
    "ModelUnavailableError",
    "ShapeMismatchError",
    "BufferScope",
    "MAX_SIZE",
    "compute_target_size",
    "decode_image",
    "image_to_tensor",
    "preprocess",
    "NMSConfig",
    "nms",
    "PostConfig",
    "Postprocessor",
    "calculate_max_scores",
    "postprocess",
    "process_output",
    "DroneAidPipeline",
    "ModelHandle",
    "default_model",
    "load_pipeline",
    "find_project_root",
    "resolve_path",
    "load_post_config",
    "draw_detections",
]
