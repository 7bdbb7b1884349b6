from __future__ import annotations

from typing import Optional


class DarknetKitError(Exception):
    """Base class for errors raised by darknet_kit."""


class ConfigError(DarknetKitError, ValueError):
    pass


class ModelLoadError(DarknetKitError, RuntimeError):
    """The network could not be loaded. Nothing can be processed."""


class ClassNamesError(DarknetKitError, OSError):
    """The class name file could not be opened or read."""


class DecodeError(DarknetKitError, ValueError):
    """An output tensor has no usable row data."""


class LabelLookupError(DarknetKitError, IndexError):
    def __init__(self, class_id: int, num_names: int):
        super().__init__(f"class id {class_id} is out of range for {num_names} class names")
        self.class_id = class_id
        self.num_names = num_names


class ImageProcessingError(DarknetKitError, RuntimeError):
    """
    Processing of a single image failed; later images are still attempted.

    `stage` is one of "read", "blob", "inference", "annotate".
    """

    def __init__(self, stage: str, message: str, path: Optional[str] = None):
        where = f" ({path})" if path else ""
        super().__init__(f"[{stage}] {message}{where}")
        self.message = message
        self.stage = stage
        self.path = path
