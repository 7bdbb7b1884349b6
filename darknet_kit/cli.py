from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional, Sequence

from .config import (
    DEFAULT_CONFIG_PATH,
    DEFAULT_FRAMEWORK,
    DEFAULT_IMAGES,
    DEFAULT_MODEL_PATH,
    DEFAULT_NAMES_PATH,
    ModelConfig,
)
from .errors import ClassNamesError, ConfigError, ModelLoadError
from .nms import NMS_METHODS
from .run_config import apply_run_config, collect_cli_dests, load_run_config
from .runtime import load_pipeline
from .types import ImageResult

logger = logging.getLogger("darknet_kit")

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")
# cv::utils::logging::LOG_LEVEL_WARNING
CV_LOG_LEVEL_WARNING = 3


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="darknet_kit",
        description="Run a Darknet YOLO detector over images and overlay labeled boxes.",
    )
    parser.add_argument("images", nargs="*", help="Images to process (default: the bundled net/ sample list).")
    parser.add_argument("--config", default=None, help="Optional JSON run config; explicit flags override it.")
    parser.add_argument("--model", default=DEFAULT_MODEL_PATH, help="Model weights (.weights/.onnx/...).")
    parser.add_argument("--cfg", dest="config_path", default=DEFAULT_CONFIG_PATH, help="Network config (.cfg).")
    parser.add_argument("--names", default=DEFAULT_NAMES_PATH, help="Class names file, one name per line.")
    parser.add_argument("--framework", default=DEFAULT_FRAMEWORK, help='readNet framework hint, e.g. "Darknet".')
    parser.add_argument("--backend", default=None, help="Force backend: opencv / onnxruntime.")
    parser.add_argument("--dnn-backend", default="opencv", help="OpenCV DNN backend (opencv, cuda, ...).")
    parser.add_argument("--dnn-target", default="cpu", help="OpenCV DNN target (cpu, opencl, cuda, ...).")
    parser.add_argument(
        "--onnx-providers",
        default=None,
        help='Comma-separated ORT providers, e.g. "CUDAExecutionProvider,CPUExecutionProvider".',
    )
    parser.add_argument("--blob-width", type=int, default=416, help="Network input width.")
    parser.add_argument("--blob-height", type=int, default=416, help="Network input height.")
    parser.add_argument("--swap-rb", action="store_true", help="Swap R and B channels when building the blob.")
    parser.add_argument("--conf", type=float, default=0.3, help="Confidence threshold.")
    parser.add_argument("--iou", type=float, default=0.4, help="IoU threshold for NMS.")
    parser.add_argument("--nms", default="numpy", choices=NMS_METHODS, help="NMS implementation.")
    parser.add_argument("--min-outputs", type=int, default=2, help="Minimum output tensors per forward pass.")
    parser.add_argument(
        "--strict-labels",
        action="store_true",
        help="Fail the whole image on an unknown class id instead of skipping that label.",
    )
    parser.add_argument("--class-colors", action="store_true", help="Color boxes per class instead of white.")
    parser.add_argument("--out-dir", default=None, help="Directory to write annotated images to.")
    parser.add_argument("--show", action="store_true", help="Show one window per annotated image.")
    parser.add_argument("--log-level", default="INFO", help=f"One of {', '.join(LOG_LEVELS)}.")
    return parser


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    argv = list(sys.argv[1:] if argv is None else argv)
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.config:
        payload = load_run_config(Path(args.config))
        apply_run_config(args=args, payload=payload, cli_dests=collect_cli_dests(parser, argv), parser=parser)
    if str(args.log_level).upper() not in LOG_LEVELS:
        raise ConfigError(f"log_level must be one of {LOG_LEVELS}")
    if args.nms not in NMS_METHODS:
        raise ConfigError(f"nms must be one of {NMS_METHODS}")
    return args


def model_config_from_args(args: argparse.Namespace) -> ModelConfig:
    return ModelConfig(
        model_path=args.model,
        config_path=args.config_path,
        names_path=args.names,
        framework=args.framework,
        blob_size=(int(args.blob_width), int(args.blob_height)),
        confidence_threshold=float(args.conf),
        overlap_threshold=float(args.iou),
        swap_rb=bool(args.swap_rb),
        dnn_backend=args.dnn_backend,
        dnn_target=args.dnn_target,
        min_output_tensors=int(args.min_outputs),
    )


def _quiet_opencv() -> None:
    import cv2

    set_level = getattr(cv2, "setLogLevel", None)
    if set_level is not None:
        set_level(CV_LOG_LEVEL_WARNING)


def output_path_for(image_path: str, out_dir: Path) -> Path:
    p = Path(image_path)
    return out_dir / f"{p.stem}_det{p.suffix or '.jpg'}"


def _write_results(results: List[ImageResult], out_dir: Path) -> None:
    import cv2

    out_dir.mkdir(parents=True, exist_ok=True)
    for result in results:
        if not result.ok:
            continue
        out_path = output_path_for(result.path, out_dir)
        if not cv2.imwrite(str(out_path), result.image):
            logger.error("Failed to write output image: %s", out_path)
            continue
        logger.info("wrote %s", out_path)


def _show_results(results: List[ImageResult]) -> None:
    import cv2

    shown = False
    for result in results:
        if result.ok:
            cv2.imshow(Path(result.path).name, result.image)
            shown = True
    if shown:
        cv2.waitKey(0)
        cv2.destroyAllWindows()


def main(argv: Optional[Sequence[str]] = None) -> int:
    try:
        args = parse_args(argv)
        config = model_config_from_args(args)
    except (ConfigError, FileNotFoundError) as exc:
        logging.basicConfig(level=logging.ERROR, format="%(levelname)s %(name)s: %(message)s")
        logger.error("%s", exc)
        return 1

    logging.basicConfig(level=str(args.log_level).upper(), format="%(levelname)s %(name)s: %(message)s")
    _quiet_opencv()

    onnx_providers = None
    if args.onnx_providers:
        onnx_providers = [p.strip() for p in str(args.onnx_providers).split(",") if p.strip()]

    try:
        pipeline = load_pipeline(
            config,
            backend=args.backend,
            strict_labels=bool(args.strict_labels),
            nms_method=args.nms,
            class_colors=bool(args.class_colors),
            onnx_providers=onnx_providers,
        )
    except (ModelLoadError, ClassNamesError, ValueError) as exc:
        logger.error("Startup failed: %s", exc)
        return 1

    images = list(args.images) if args.images else list(DEFAULT_IMAGES)
    results = pipeline.run(images)

    for result in results:
        if result.ok:
            logger.info("%s: %d detection(s)", result.path, len(result.keep))

    if args.out_dir:
        _write_results(results, Path(args.out_dir))
    if args.show:
        _show_results(results)

    return 0
