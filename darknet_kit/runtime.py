from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Sequence, Tuple, Union

import numpy as np

from .annotate import WHITE, annotate
from .config import ModelConfig
from .decode import decode_outputs
from .errors import ImageProcessingError, LabelLookupError
from .metadata import load_class_names
from .nms import NMS_METHODS, suppress
from .types import Candidate, ImageResult

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]
InferFn = Callable[[np.ndarray], Sequence[np.ndarray]]


def find_project_root(
    start: Optional[PathLike] = None,
    markers: Sequence[str] = ("pyproject.toml", "setup.py", ".git", "requirements.txt"),
) -> Path:
    """
    Best-effort project root discovery.

    Lets the default `net/...` model and image paths resolve when the runner
    is started from a subdirectory.
    """

    p = Path(start) if start is not None else Path.cwd()
    p = p.resolve()

    # If a file is provided, start from its directory.
    if p.is_file():
        p = p.parent

    for parent in (p, *p.parents):
        for m in markers:
            if (parent / m).exists():
                return parent
    return p


def resolve_path(path: PathLike, root: Optional[PathLike] = "auto") -> Path:
    """
    Resolve `path` to an absolute Path.

    - Absolute paths are returned as-is.
    - Relative paths are resolved against:
      - `root` if provided
      - project root (auto) otherwise
    """

    p = Path(path)
    if p.is_absolute():
        return p

    if root == "auto" or root is None:
        base = find_project_root()
    else:
        base = Path(root).resolve()

    return (base / p).resolve()


class DetectionPipeline:
    """
    blob -> inference -> decode -> suppress -> annotate, one image at a time.

    Only the config, the class names and the backend outlive a single image.
    Per-image failures are reported through `ImageResult.error` so that a
    bad image never stops `run()`.
    """

    def __init__(
        self,
        infer_fn: InferFn,
        config: ModelConfig,
        class_names: Sequence[str] = (),
        *,
        backend: Optional[object] = None,
        backend_name: Optional[str] = None,
        strict_labels: bool = False,
        nms_method: str = "numpy",
        class_colors: bool = False,
    ):
        if nms_method not in NMS_METHODS:
            raise ValueError(f"Unsupported NMS method: {nms_method!r} (expected one of {NMS_METHODS})")
        self._infer_fn = infer_fn
        self.config = config
        self.class_names = list(class_names)
        self.backend = backend
        self.backend_name = backend_name
        self.strict_labels = strict_labels
        self.nms_method = nms_method
        self.class_colors = class_colors

    def preprocess(self, image_bgr: np.ndarray) -> np.ndarray:
        import cv2

        try:
            blob = cv2.dnn.blobFromImage(
                image_bgr,
                self.config.scale_factor,
                tuple(self.config.blob_size),
                swapRB=self.config.swap_rb,
                crop=False,
            )
        except cv2.error as exc:
            raise ImageProcessingError("blob", f"failed to create blob: {exc}") from exc
        if blob is None or blob.size == 0:
            raise ImageProcessingError("blob", "failed to create blob")
        return blob

    def infer(self, blob: np.ndarray) -> List[np.ndarray]:
        try:
            outputs = self._infer_fn(blob)
        except ImageProcessingError:
            raise
        except Exception as exc:
            raise ImageProcessingError("inference", f"forward pass failed: {exc}") from exc

        if isinstance(outputs, np.ndarray):
            outputs = [outputs]
        outputs = list(outputs) if outputs is not None else []
        if len(outputs) < self.config.min_output_tensors:
            raise ImageProcessingError(
                "inference",
                f"bad output size: got {len(outputs)} tensor(s), expected at least {self.config.min_output_tensors}",
            )
        return outputs

    def detect(self, image_bgr: np.ndarray) -> Tuple[List[Candidate], List[int]]:
        """Return the candidate pool and the surviving indices for one image."""

        if image_bgr is None or not hasattr(image_bgr, "shape"):
            raise ImageProcessingError("read", "image must be a NumPy array (BGR)")
        if image_bgr.ndim != 3 or image_bgr.shape[2] != 3:
            raise ImageProcessingError("read", f"expected image shape (H, W, 3), got {image_bgr.shape}")

        img_h, img_w = image_bgr.shape[:2]
        blob = self.preprocess(image_bgr)
        outputs = self.infer(blob)

        candidates = decode_outputs(
            outputs,
            (img_w, img_h),
            self.config.confidence_threshold,
            self.config.overlap_threshold,
        )
        keep = suppress(
            candidates,
            self.config.confidence_threshold,
            self.config.overlap_threshold,
            method=self.nms_method,
        )
        logger.debug("%d candidate(s), %d kept after NMS", len(candidates), len(keep))
        return candidates, keep

    def annotate(self, image_bgr: np.ndarray, candidates: Sequence[Candidate], keep: Iterable[int]) -> np.ndarray:
        try:
            return annotate(
                image_bgr,
                candidates,
                keep,
                self.class_names,
                strict=self.strict_labels,
                color=None if self.class_colors else WHITE,
            )
        except LabelLookupError as exc:
            raise ImageProcessingError("annotate", str(exc)) from exc

    def process_image(self, image_path: PathLike) -> ImageResult:
        """Read, detect and annotate one image file. Never raises for per-image failures."""

        import cv2

        path = str(image_path)
        try:
            image = cv2.imread(path, cv2.IMREAD_COLOR)
            if image is None:
                raise ImageProcessingError("read", "failed to read image")
            candidates, keep = self.detect(image)
            vis = self.annotate(image, candidates, keep)
        except ImageProcessingError as exc:
            if exc.path is None:
                exc = ImageProcessingError(exc.stage, exc.message, path)
            logger.error("Image %s failed at stage %r: %s", path, exc.stage, exc)
            return ImageResult(path=path, error=str(exc))

        return ImageResult(path=path, image=vis, candidates=candidates, keep=list(keep))

    def run(self, image_paths: Iterable[PathLike]) -> List[ImageResult]:
        results = []
        for image_path in image_paths:
            results.append(self.process_image(image_path))
        failed = sum(1 for r in results if not r.ok)
        if failed:
            logger.warning("%d of %d image(s) failed", failed, len(results))
        return results

    def __call__(self, image_bgr: np.ndarray) -> List[Candidate]:
        candidates, keep = self.detect(image_bgr)
        return [candidates[i] for i in keep]


def load_pipeline(
    config: ModelConfig,
    *,
    backend: Optional[str] = None,
    root: Optional[PathLike] = "auto",
    strict_labels: bool = False,
    nms_method: str = "numpy",
    class_colors: bool = False,
    onnx_providers: Optional[Sequence[str]] = None,
) -> DetectionPipeline:
    """
    Load class names and the network described by `config`.

    Raises ClassNamesError or ModelLoadError; nothing should be processed
    after either.

    Args:
        backend: "opencv" or "onnxruntime"; None infers from the model extension
        root: base directory for resolving relative paths ("auto" uses best-effort project root)
    """

    names_path = resolve_path(config.names_path, root=root)
    class_names = load_class_names(names_path)
    logger.info("Loaded %d class name(s) from %s", len(class_names), names_path)

    model_path = resolve_path(config.model_path, root=root)
    chosen = backend
    if chosen is None:
        chosen = "onnxruntime" if model_path.suffix.lower() == ".onnx" else "opencv"
    chosen = chosen.lower()

    if chosen == "opencv":
        from .backends.opencv_backend import OpenCvDnnBackend, OpenCvDnnBackendConfig

        config_path = resolve_path(config.config_path, root=root) if config.config_path else None
        cv_backend = OpenCvDnnBackend(
            model_path,
            OpenCvDnnBackendConfig(
                config_path=config_path,
                framework=config.framework,
                dnn_backend=config.dnn_backend,
                dnn_target=config.dnn_target,
            ),
        )
        return DetectionPipeline(
            cv_backend.infer,
            config,
            class_names,
            backend=cv_backend,
            backend_name="opencv",
            strict_labels=strict_labels,
            nms_method=nms_method,
            class_colors=class_colors,
        )

    if chosen == "onnxruntime":
        from .backends.onnxruntime_backend import OnnxRuntimeBackend, OnnxRuntimeBackendConfig

        ort_backend = OnnxRuntimeBackend(model_path, OnnxRuntimeBackendConfig(providers=onnx_providers))
        return DetectionPipeline(
            ort_backend.infer,
            config,
            class_names,
            backend=ort_backend,
            backend_name="onnxruntime",
            strict_labels=strict_labels,
            nms_method=nms_method,
            class_colors=class_colors,
        )

    raise ValueError(f"Unsupported backend: {backend!r}")
