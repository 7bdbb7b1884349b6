from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Tuple, Union

from .errors import ConfigError


PathLike = Union[str, Path]

DEFAULT_MODEL_PATH = "net/models/yolov3.weights"
DEFAULT_CONFIG_PATH = "net/config/yolov3.cfg"
DEFAULT_NAMES_PATH = "net/names/coco.names"
DEFAULT_FRAMEWORK = "Darknet"

DEFAULT_IMAGES = (
    "net/shibuya_crossing.jpg",
    "net/people_walking.jpg",
    "net/giraffe.jpg",
    "net/horses.jpg",
    "net/scream.jpg",
    "net/person.jpg",
    "net/eagle.jpg",
    "net/kite.jpg",
    "net/dog.jpg",
)

DNN_BACKENDS = ("default", "opencv", "cuda", "inference_engine", "vkcom")
DNN_TARGETS = ("cpu", "opencl", "opencl_fp16", "cuda", "cuda_fp16", "myriad", "vulkan")


@dataclass(frozen=True)
class ModelConfig:
    """
    Per-run model parameters. Set once before the first image and never mutated.

    - confidence_threshold: minimum best class score for a row to become a candidate
    - overlap_threshold: maximum IoU between two kept boxes
    """

    model_path: str = DEFAULT_MODEL_PATH
    config_path: str = DEFAULT_CONFIG_PATH
    names_path: str = DEFAULT_NAMES_PATH
    framework: str = DEFAULT_FRAMEWORK
    blob_size: Tuple[int, int] = (416, 416)
    confidence_threshold: float = 0.3
    overlap_threshold: float = 0.4
    scale_factor: float = 1.0 / 255.0
    swap_rb: bool = False
    dnn_backend: str = "opencv"
    dnn_target: str = "cpu"
    # YOLOv3 has three detection heads, yolov3-tiny two; fewer means a broken forward pass.
    min_output_tensors: int = 2

    def __post_init__(self) -> None:
        if not self.model_path:
            raise ConfigError("model_path must not be empty")
        if len(self.blob_size) != 2:
            raise ConfigError(f"blob_size must be (width, height), got {self.blob_size!r}")
        blob_w, blob_h = self.blob_size
        if isinstance(blob_w, bool) or isinstance(blob_h, bool) or not isinstance(blob_w, int) or not isinstance(blob_h, int):
            raise ConfigError("blob_size entries must be integers")
        if blob_w < 32 or blob_h < 32:
            raise ConfigError("blob_size entries must be >= 32")
        if not 0.0 <= self.confidence_threshold <= 1.0:
            raise ConfigError("confidence_threshold must be within [0, 1]")
        if not 0.0 < self.overlap_threshold <= 1.0:
            raise ConfigError("overlap_threshold must be within (0, 1]")
        if self.scale_factor <= 0:
            raise ConfigError("scale_factor must be > 0")
        if self.dnn_backend not in DNN_BACKENDS:
            raise ConfigError(f"Unknown dnn_backend {self.dnn_backend!r}; expected one of {DNN_BACKENDS}")
        if self.dnn_target not in DNN_TARGETS:
            raise ConfigError(f"Unknown dnn_target {self.dnn_target!r}; expected one of {DNN_TARGETS}")
        if self.min_output_tensors < 1:
            raise ConfigError("min_output_tensors must be >= 1")
