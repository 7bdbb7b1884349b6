from dataclasses import dataclass, field
from typing import List, Optional, Tuple

import numpy as np


@dataclass
class Candidate:
    """
    One decoded detection, before suppression.

    Geometry is in pixel space of the original image, top-left corner form.
    """

    class_id: int
    confidence: float
    x: int
    y: int
    width: int
    height: int

    def as_xywh(self) -> Tuple[int, int, int, int]:
        return self.x, self.y, self.width, self.height

    def as_xyxy(self) -> Tuple[int, int, int, int]:
        return self.x, self.y, self.x + self.width, self.y + self.height


@dataclass
class ImageResult:
    path: str
    image: Optional[np.ndarray] = None
    candidates: List[Candidate] = field(default_factory=list)
    keep: List[int] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def detections(self) -> List[Candidate]:
        """Surviving candidates, in suppression order."""
        return [self.candidates[i] for i in self.keep]
