"""
Decode, suppress and annotate helpers for Darknet YOLO detectors run through
OpenCV's DNN module.

The core (decode / nms / annotate) works on plain NumPy output tensors, so any
backend that returns the (N, 5 + C) per-layer grids can feed it.
"""

from .types import Candidate, ImageResult
from .errors import (
    ClassNamesError,
    ConfigError,
    DarknetKitError,
    DecodeError,
    ImageProcessingError,
    LabelLookupError,
    ModelLoadError,
)
from .config import ModelConfig
from .decode import decode_output, decode_outputs
from .nms import nms, suppress
from .annotate import annotate, draw_candidate, format_label
from .metadata import load_class_names
from .runtime import DetectionPipeline, load_pipeline, find_project_root, resolve_path

__all__ = [
    "Candidate",
    "ImageResult",
    "ClassNamesError",
    "ConfigError",
    "DarknetKitError",
    "DecodeError",
    "ImageProcessingError",
    "LabelLookupError",
    "ModelLoadError",
    "ModelConfig",
    "decode_output",
    "decode_outputs",
    "nms",
    "suppress",
    "annotate",
    "draw_candidate",
    "format_label",
    "load_class_names",
    "DetectionPipeline",
    "load_pipeline",
    "find_project_root",
    "resolve_path",
]
