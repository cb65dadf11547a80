from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Tuple, Union

import numpy as np

from .errors import DecodeError
from .scope import BufferScope

logger = logging.getLogger(__name__)

# Longest side of the model input, in pixels.
MAX_SIZE = 400

ImageSource = Union[np.ndarray, bytes, bytearray, memoryview, str, Path]


def _cv2():
    try:
        import cv2  # type: ignore
    except Exception as e:  # pragma: no cover
        raise ImportError("OpenCV is required for image preprocessing. Install with `pip install opencv-python`.") from e
    return cv2


def compute_target_size(width: int, height: int, max_size: int = MAX_SIZE) -> Tuple[int, int]:
    """
    Aspect-preserving size whose longest side is `max_size`.

    Returns:
        (target_width, target_height), each at least 1 pixel.
    """

    if width <= 0 or height <= 0:
        raise ValueError(f"Image dimensions must be positive, got {width}x{height}")
    if max_size <= 0:
        raise ValueError(f"max_size must be positive, got {max_size}")

    r = max_size / max(width, height)
    return max(1, int(round(r * width))), max(1, int(round(r * height)))


def _as_rgb(pixels: np.ndarray) -> np.ndarray:
    if pixels.ndim == 2:
        return np.repeat(pixels[:, :, None], 3, axis=2)
    if pixels.ndim == 3 and pixels.shape[2] == 3:
        return pixels
    if pixels.ndim == 3 and pixels.shape[2] == 4:
        # Alpha is ignored by the model.
        return pixels[:, :, :3]
    raise DecodeError(f"Expected image shape (H, W), (H, W, 3) or (H, W, 4), got {pixels.shape}")


def decode_image(source: ImageSource) -> np.ndarray:
    """
    Decode `source` into an (H, W, 3) uint8 RGB array.

    Accepts an RGB(A)/grayscale NumPy array, encoded image bytes, or a file path.
    Encoded inputs are decoded with OpenCV and converted from BGR to RGB.
    """

    if isinstance(source, np.ndarray):
        pixels = _as_rgb(source)
    elif isinstance(source, (bytes, bytearray, memoryview, str, Path)):
        cv2 = _cv2()
        if isinstance(source, (str, Path)):
            path = Path(source)
            try:
                raw = path.read_bytes()
            except OSError as e:
                raise DecodeError(f"Could not read image at path: {path}") from e
        else:
            raw = bytes(source)
        if not raw:
            raise DecodeError("Image data is empty.")
        bgr = cv2.imdecode(np.frombuffer(raw, dtype=np.uint8), cv2.IMREAD_COLOR)
        if bgr is None:
            raise DecodeError("Could not decode image data.")
        pixels = cv2.cvtColor(bgr, cv2.COLOR_BGR2RGB)
    else:
        raise DecodeError(f"Unsupported image source type: {type(source).__name__}")

    if pixels.shape[0] == 0 or pixels.shape[1] == 0:
        raise DecodeError(f"Image has no pixels (shape {pixels.shape}).")
    if pixels.dtype != np.uint8:
        pixels = np.clip(pixels, 0, 255).astype(np.uint8)
    return pixels


def resize_bilinear(image: np.ndarray, size: Tuple[int, int]) -> np.ndarray:
    """Bilinear resize of an (H, W, C) image to exactly `size` = (width, height), as float32."""
    cv2 = _cv2()
    w, h = size
    src = image if image.dtype == np.float32 else image.astype(np.float32)
    if (src.shape[1], src.shape[0]) == (w, h):
        return src.copy()
    return cv2.resize(src, (w, h), interpolation=cv2.INTER_LINEAR)


def image_to_tensor(pixels: np.ndarray, max_size: int = MAX_SIZE) -> np.ndarray:
    """
    Resize decoded RGB pixels and add the batch axis.

    Returns:
        float32 tensor shaped (1, H', W', 3) with max(H', W') == max_size.
    """

    with BufferScope() as scope:
        h, w = pixels.shape[:2]
        target_w, target_h = compute_target_size(w, h, max_size)
        resized = scope.track(resize_bilinear(pixels, (target_w, target_h)))
        tensor = scope.keep(scope.track(resized[None, ...]))

    logger.debug("preprocessed %dx%d -> %dx%d", w, h, target_w, target_h)
    return tensor


def _decode_and_resize(source: ImageSource, max_size: int) -> np.ndarray:
    with BufferScope() as scope:
        pixels = scope.track(decode_image(source))
        return scope.keep(image_to_tensor(pixels, max_size))


async def preprocess(image: ImageSource, max_size: int = MAX_SIZE) -> np.ndarray:
    """
    Convert `image` into the input tensor required by the model.

    Decoding and resizing run in a worker thread. `DecodeError` propagates to
    the caller after intermediate buffers are released.
    """

    return await asyncio.to_thread(_decode_and_resize, image, max_size)
