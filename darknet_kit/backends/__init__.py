"""
Inference backends for darknet_kit.

Each backend exposes `infer(blob) -> list of output tensors`. ONNX Runtime is
imported only when its backend is constructed, so the default OpenCV path
works without it installed.
"""

from __future__ import annotations

from .opencv_backend import OpenCvDnnBackend, OpenCvDnnBackendConfig, output_layer_names

__all__ = ["OpenCvDnnBackend", "OpenCvDnnBackendConfig", "output_layer_names"]
