from __future__ import annotations

import argparse
import asyncio
import json
import logging
from pathlib import Path
from typing import List, Optional, Sequence

from .config import load_post_config
from .errors import DecodeError, DroneAidError
from .log import setup_logging
from .postprocess import PostConfig
from .preprocess import decode_image
from .runtime import DroneAidPipeline, load_pipeline
from .visualize import draw_detections

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Detect DroneAid symbols in images.")
    parser.add_argument("images", nargs="+", help="Image file(s) to run detection on.")
    parser.add_argument("--model", default="models/droneaid.onnx", help="Path to detector (.onnx/.pt).")
    parser.add_argument("--backend", default=None, help="Force backend: onnxruntime / torchscript.")
    parser.add_argument(
        "--onnx-providers",
        default=None,
        help='Comma-separated ORT providers, e.g. "CPUExecutionProvider".',
    )
    parser.add_argument("--options", default=None, help="JSON options file (thresholds).")
    parser.add_argument("--score", type=float, default=None, help="Minimum score for a box to be kept.")
    parser.add_argument("--iou", type=float, default=None, help="IoU threshold for NMS.")
    parser.add_argument("--max-boxes", type=int, default=None, help="Maximum number of detections per image.")
    parser.add_argument("--no-warmup", action="store_true", help="Skip the warm-up inference after loading.")
    parser.add_argument("--save-vis", default=None, help="Directory to write annotated images to.")
    parser.add_argument("--log-level", default="INFO", help="Logging level (DEBUG, INFO, WARNING, ...).")
    parser.add_argument("--log-file", default=None, help="Also write logs to this file.")
    return parser


def _post_config(args: argparse.Namespace) -> PostConfig:
    cfg = load_post_config(Path(args.options)) if args.options else PostConfig()
    return PostConfig.from_mapping(
        {
            "score_threshold": args.score,
            "iou_threshold": args.iou,
            "max_num_boxes": args.max_boxes,
        },
        base=cfg,
    )


def _save_visualization(image_path: str, rgb, detections, out_dir: Path) -> Path:
    import cv2  # type: ignore

    vis = draw_detections(rgb, detections)
    out_dir.mkdir(parents=True, exist_ok=True)
    out_path = out_dir / f"{Path(image_path).stem}_detections.png"
    if not cv2.imwrite(str(out_path), cv2.cvtColor(vis, cv2.COLOR_RGB2BGR)):
        raise ValueError(f"cv2.imwrite failed for {out_path}")
    return out_path


async def predict_images(pipeline: DroneAidPipeline, images: Sequence[str], save_vis: Optional[str] = None) -> int:
    """
    Print one JSON line per image and return the number of images that failed.

    An image that cannot be read or decoded is logged and counted, and the
    remaining images still run.
    """

    failures = 0
    for image_path in images:
        try:
            rgb = decode_image(image_path)
        except DecodeError:
            logger.exception("could not read image %s", image_path)
            failures += 1
            continue

        detections = await pipeline.predict(rgb)
        if not detections:
            logger.info("no detections for %s", image_path)
        print(json.dumps({"image": image_path, "detections": [d.as_dict() for d in detections]}))

        if save_vis:
            try:
                out_path = _save_visualization(image_path, rgb, detections, Path(save_vis))
            except ValueError:
                logger.exception("could not write visualization for %s", image_path)
                failures += 1
            else:
                logger.info("wrote %s", out_path)
    return failures


async def run(args: argparse.Namespace) -> int:
    post_cfg = _post_config(args)
    providers: Optional[List[str]] = None
    if args.onnx_providers:
        providers = [p.strip() for p in args.onnx_providers.split(",") if p.strip()]

    pipeline = load_pipeline(args.model, backend=args.backend, post_cfg=post_cfg, onnx_providers=providers)
    try:
        await pipeline.load_model(initialize=not args.no_warmup)
    except DroneAidError:
        logger.exception("could not load model %s", args.model)
        return 2

    failures = await predict_images(pipeline, args.images, args.save_vis)
    return 1 if failures else 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(args.log_level, args.log_file)
    return asyncio.run(run(args))


if __name__ == "__main__":
    raise SystemExit(main())
