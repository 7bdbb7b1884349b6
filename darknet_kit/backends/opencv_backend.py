from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Union

import numpy as np

from ..errors import ModelLoadError

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

_BACKEND_IDS = {
    "default": "DNN_BACKEND_DEFAULT",
    "opencv": "DNN_BACKEND_OPENCV",
    "cuda": "DNN_BACKEND_CUDA",
    "inference_engine": "DNN_BACKEND_INFERENCE_ENGINE",
    "vkcom": "DNN_BACKEND_VKCOM",
}

_TARGET_IDS = {
    "cpu": "DNN_TARGET_CPU",
    "opencl": "DNN_TARGET_OPENCL",
    "opencl_fp16": "DNN_TARGET_OPENCL_FP16",
    "cuda": "DNN_TARGET_CUDA",
    "cuda_fp16": "DNN_TARGET_CUDA_FP16",
    "myriad": "DNN_TARGET_MYRIAD",
    "vulkan": "DNN_TARGET_VULKAN",
}


@dataclass(frozen=True)
class OpenCvDnnBackendConfig:
    """
    Configuration for OpenCV DNN inference.

    - config_path: network description (e.g. yolov3.cfg); empty for single-file formats
    - framework: readNet framework hint ("Darknet", "ONNX", ...); empty lets OpenCV guess
    - dnn_backend/dnn_target: preferable backend and target names
    """

    config_path: Optional[PathLike] = None
    framework: str = ""
    dnn_backend: str = "opencv"
    dnn_target: str = "cpu"


def _dnn_constant(table: dict, name: str, kind: str) -> int:
    import cv2

    attr = table.get(name)
    if attr is None or not hasattr(cv2.dnn, attr):
        raise ModelLoadError(f"Unsupported DNN {kind}: {name!r}")
    return int(getattr(cv2.dnn, attr))


def output_layer_names(net) -> List[str]:
    """Names of the unconnected output layers, in the order the net reports them."""

    layer_names = list(net.getLayerNames())
    out_layers = np.asarray(net.getUnconnectedOutLayers()).reshape(-1)
    return [layer_names[int(i) - 1] for i in out_layers]


class OpenCvDnnBackend:
    """
    OpenCV DNN backend for Darknet (or any readNet-compatible) detectors.

    Output layer names are resolved once when the net is loaded and kept on
    the instance, so several models with different heads can coexist.
    Returns one NumPy array per output layer.
    """

    def __init__(self, model_path: PathLike, cfg: OpenCvDnnBackendConfig = OpenCvDnnBackendConfig()):
        import cv2

        self.model_path = Path(model_path)
        if not self.model_path.exists():
            raise ModelLoadError(f"Model weights not found: {self.model_path}")
        self.config_path = Path(cfg.config_path) if cfg.config_path else None
        if self.config_path is not None and not self.config_path.exists():
            raise ModelLoadError(f"Model config not found: {self.config_path}")

        try:
            self.net = cv2.dnn.readNet(
                str(self.model_path),
                str(self.config_path) if self.config_path is not None else "",
                cfg.framework,
            )
        except cv2.error as exc:
            raise ModelLoadError(f"Failed to initialise net from {self.model_path}: {exc}") from exc
        if self.net.empty():
            raise ModelLoadError(f"Failed to initialise net from {self.model_path}")

        self.net.setPreferableBackend(_dnn_constant(_BACKEND_IDS, cfg.dnn_backend, "backend"))
        self.net.setPreferableTarget(_dnn_constant(_TARGET_IDS, cfg.dnn_target, "target"))

        self.output_names = output_layer_names(self.net)
        logger.info("Loaded %s with output layers %s", self.model_path.name, self.output_names)

    def infer(self, blob: np.ndarray) -> List[np.ndarray]:
        self.net.setInput(blob)
        outputs = self.net.forward(self.output_names)
        return [np.asarray(out) for out in outputs]
