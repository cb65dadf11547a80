from __future__ import annotations

import asyncio
import inspect
import logging
from pathlib import Path
from typing import Any, Callable, List, Optional, Sequence, Tuple, Union

import numpy as np

from .errors import DroneAidError, EmptyInputError, ModelUnavailableError
from .postprocess import PostConfig, PostOptions, process_output, resolve_post_config
from .preprocess import MAX_SIZE, ImageSource, preprocess
from .scope import BufferScope
from .types import Detection

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

# Engine: input tensor -> (raw_scores, raw_boxes). May be a plain function or a coroutine function.
InferFn = Callable[[np.ndarray], Any]

WARMUP_SHAPE = (1, 1024, 1024, 3)

ROOT_MARKERS = ("pyproject.toml", ".git")


def find_project_root(start: Optional[PathLike] = None, markers: Sequence[str] = ROOT_MARKERS) -> Path:
    """
    Nearest directory at or above `start` (default: cwd) holding one of `markers`.

    Falls back to `start` itself, so relative model paths such as
    `models/droneaid.onnx` still resolve when run outside a checkout.
    """

    start_dir = Path(start).resolve() if start is not None else Path.cwd().resolve()
    if start_dir.is_file():
        start_dir = start_dir.parent

    return next(
        (d for d in (start_dir, *start_dir.parents) if any((d / m).exists() for m in markers)),
        start_dir,
    )


def resolve_path(path: PathLike, root: Optional[PathLike] = "auto") -> Path:
    """Absolute `path`, anchoring relative ones at `root` or at the project root for "auto"/None."""
    p = Path(path)
    if p.is_absolute():
        return p
    base = find_project_root() if root in ("auto", None) else Path(root)
    return (base / p).resolve()


class ModelHandle:
    """
    Process-lifetime holder of the inference engine.

    State is created on the first `load()` (engine + warmed flag) and never torn
    down. The handle does not serialize concurrent loads; callers sharing one
    handle across tasks must do that themselves.
    """

    def __init__(self, factory: Optional[Callable[[], InferFn]] = None):
        self._factory = factory
        self._engine: Optional[InferFn] = None
        self._warmed = False

    @property
    def loaded(self) -> bool:
        return self._engine is not None

    @property
    def warmed(self) -> bool:
        return self._warmed

    def set_factory(self, factory: Callable[[], InferFn]) -> None:
        if self._engine is not None:
            raise RuntimeError("Model is already loaded; the factory can no longer change.")
        self._factory = factory

    async def load(self, initialize: bool = True) -> InferFn:
        """
        Load the engine if needed and optionally warm it up.

        Args:
            initialize: run one warm-up inference when the model is not warm yet
        """

        if self._engine is None:
            if self._factory is None:
                raise ModelUnavailableError("No model factory configured.")
            try:
                engine = self._factory()
                if inspect.isawaitable(engine):
                    engine = await engine
            except DroneAidError:
                raise
            except Exception as e:
                raise ModelUnavailableError(f"Failed to load model: {e}") from e
            self._engine = engine
            logger.info("model loaded")

        if initialize and not self._warmed:
            await self.warmup()
        return self._engine

    async def warmup(self) -> None:
        try:
            await self.run(np.ones(WARMUP_SHAPE, dtype=np.float32))
        except Exception:
            # A failed warm-up leaves the model usable; the first real run pays the cost.
            logger.warning("model warm-up failed", exc_info=True)
        else:
            logger.debug("model warmed up")

    async def run(self, input_tensor: Optional[np.ndarray]) -> Any:
        """Run the engine on `input_tensor` and return its raw (scores, boxes) output."""
        if input_tensor is None:
            raise EmptyInputError("No image provided.")
        engine = self._engine
        if engine is None:
            raise ModelUnavailableError("Model not available.")

        if inspect.iscoroutinefunction(engine) or inspect.iscoroutinefunction(getattr(engine, "__call__", None)):
            results = await engine(input_tensor)
        else:
            results = await asyncio.to_thread(engine, input_tensor)
            if inspect.isawaitable(results):
                results = await results
        self._warmed = True
        return results


# Process-wide handle used when a pipeline is not given its own.
default_model = ModelHandle()


class DroneAidPipeline:
    """
    Plug-and-play pipeline: preprocess (resize) -> inference -> postprocess (NMS).

    Accepts RGB arrays, encoded image bytes or image paths, and returns a list of
    `Detection` with normalized boxes.
    """

    def __init__(
        self,
        model: Optional[ModelHandle] = None,
        *,
        backend_name: Optional[str] = None,
        max_size: int = MAX_SIZE,
        post_cfg: PostConfig = PostConfig(),
    ):
        self.model = model if model is not None else default_model
        self.backend_name = backend_name
        self.max_size = max_size
        self.post_cfg = post_cfg

    @classmethod
    def from_infer_fn(cls, infer_fn: InferFn, **kwargs: Any) -> "DroneAidPipeline":
        return cls(ModelHandle(lambda: infer_fn), **kwargs)

    async def load_model(self, initialize: bool = True) -> InferFn:
        return await self.model.load(initialize)

    async def process_input(self, image: ImageSource) -> np.ndarray:
        return await preprocess(image, self.max_size)

    async def run_inference(self, input_tensor: Optional[np.ndarray]) -> Any:
        with BufferScope() as scope:
            scope.track(input_tensor)
            await self.model.load(initialize=False)
            return await self.model.run(input_tensor)

    def resolve_options(self, options: PostOptions) -> PostConfig:
        return resolve_post_config(options, base=self.post_cfg)

    async def process_output(self, outputs: Sequence[Any], options: PostOptions = None) -> List[Detection]:
        return await process_output(outputs, self.resolve_options(options))

    async def predict(self, image: ImageSource, options: PostOptions = None) -> List[Detection]:
        """
        Full image -> detections run.

        Pipeline failures are logged and reported as an empty list; every inner
        stage raises them unchanged.
        """

        try:
            cfg = self.resolve_options(options)
            input_tensor = await self.process_input(image)
            outputs = await self.run_inference(input_tensor)
            return await self.process_output(outputs, cfg)
        except DroneAidError:
            logger.exception("prediction failed")
            return []


def load_pipeline(
    model_path: PathLike,
    *,
    backend: Optional[str] = None,
    root: Optional[PathLike] = "auto",
    model: Optional[ModelHandle] = None,
    max_size: int = MAX_SIZE,
    post_cfg: PostConfig = PostConfig(),
    onnx_providers: Optional[Sequence[str]] = None,
    onnx_input_name: str = "image_tensor",
    onnx_output_names: Optional[Tuple[str, str]] = None,
    torch_device: str = "cpu",
) -> DroneAidPipeline:
    """
    Create a pipeline for a model on disk.

    The backend is built lazily on the first `load_model()`/`predict()` call.

    Args:
        model_path: path to the exported detector; relative paths resolve against project root by default
        backend: "onnxruntime" or "torchscript", or None to infer from extension
        model: handle to hold the engine; a fresh handle when omitted
    """

    resolved = resolve_path(model_path, root=root)
    chosen = backend
    if chosen is None:
        suffix = resolved.suffix.lower()
        if suffix == ".onnx":
            chosen = "onnxruntime"
        elif suffix in {".torchscript", ".ts", ".pt"}:
            chosen = "torchscript"
        else:
            raise ValueError(
                f"Could not infer backend from extension '{suffix}'. Pass backend=... explicitly."
            )

    chosen = chosen.lower()
    handle = model if model is not None else ModelHandle()

    if chosen == "onnxruntime":
        from .backends.onnxruntime_backend import OnnxRuntimeBackend, OnnxRuntimeBackendConfig

        cfg = OnnxRuntimeBackendConfig(
            providers=onnx_providers,
            input_name=onnx_input_name,
            output_names=onnx_output_names,
        )
        handle.set_factory(lambda: OnnxRuntimeBackend(resolved, cfg).infer)
        return DroneAidPipeline(handle, backend_name="onnxruntime", max_size=max_size, post_cfg=post_cfg)

    if chosen == "torchscript":
        from .backends.torchscript_backend import TorchScriptBackend, TorchScriptBackendConfig

        ts_cfg = TorchScriptBackendConfig(device=torch_device)
        handle.set_factory(lambda: TorchScriptBackend(resolved, ts_cfg).infer)
        return DroneAidPipeline(handle, backend_name="torchscript", max_size=max_size, post_cfg=post_cfg)

    raise ValueError(f"Unsupported backend: {backend!r}")
