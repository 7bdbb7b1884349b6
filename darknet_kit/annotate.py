from __future__ import annotations

import logging
from typing import Iterable, Optional, Sequence, Tuple

import numpy as np

from .errors import LabelLookupError
from .types import Candidate

logger = logging.getLogger(__name__)

WHITE = (255, 255, 255)


def _color_for_class_id(class_id: int) -> Tuple[int, int, int]:
    """
    Deterministic BGR color for a class id (OpenCV expects BGR).
    """

    palette = [
        (255, 56, 56),
        (255, 157, 151),
        (255, 112, 31),
        (255, 178, 29),
        (207, 210, 49),
        (72, 249, 10),
        (146, 204, 23),
        (61, 219, 134),
        (26, 147, 52),
        (0, 212, 187),
        (44, 153, 168),
        (0, 194, 255),
        (52, 69, 147),
        (100, 115, 255),
        (0, 24, 236),
        (132, 56, 255),
        (82, 0, 133),
        (203, 56, 255),
        (255, 149, 200),
        (255, 55, 199),
    ]
    if 0 <= class_id < len(palette):
        return palette[class_id]

    rng = np.random.default_rng(abs(int(class_id)))
    bgr = rng.integers(0, 256, size=3, dtype=np.uint8)
    return int(bgr[0]), int(bgr[1]), int(bgr[2])


def format_label(name: str, confidence: float) -> str:
    return f"{name}, {confidence:.2f}"


def lookup_class_name(class_names: Sequence[str], class_id: int) -> str:
    if not 0 <= class_id < len(class_names):
        raise LabelLookupError(class_id, len(class_names))
    return class_names[class_id]


def draw_candidate(
    image_bgr: np.ndarray,
    candidate: Candidate,
    class_names: Sequence[str],
    *,
    color: Optional[Tuple[int, int, int]] = WHITE,
    box_thickness: int = 1,
    font_scale: float = 1.0,
    font_thickness: int = 1,
) -> Optional[str]:
    """
    Draw one candidate's rectangle, and its label when class names are known.

    Draws in place. Returns the label text, or None when no label was drawn.
    Raises LabelLookupError for a class id outside `class_names`; the
    rectangle is already drawn by then.

    Args:
        color: BGR color; None picks a per-class color.
    """

    import cv2

    box_color = _color_for_class_id(candidate.class_id) if color is None else color
    x, y, w, h = candidate.as_xywh()
    cv2.rectangle(image_bgr, (x, y), (x + w, y + h), box_color, thickness=box_thickness)

    if not class_names:
        return None

    name = lookup_class_name(class_names, candidate.class_id)
    label = format_label(name, candidate.confidence)
    cv2.putText(
        image_bgr,
        label,
        (x, y),
        cv2.FONT_HERSHEY_SIMPLEX,
        font_scale,
        box_color,
        thickness=font_thickness,
    )
    return label


def annotate(
    image_bgr: np.ndarray,
    candidates: Sequence[Candidate],
    keep: Iterable[int],
    class_names: Sequence[str],
    *,
    strict: bool = False,
    color: Optional[Tuple[int, int, int]] = WHITE,
    box_thickness: int = 1,
    font_scale: float = 1.0,
    font_thickness: int = 1,
) -> np.ndarray:
    """
    Draw every surviving candidate onto `image_bgr` in place and return it.

    An unknown class id keeps its box but loses its label; the error is
    logged and the remaining candidates are still drawn. With `strict=True`
    the LabelLookupError propagates instead.
    """

    if image_bgr is None or not hasattr(image_bgr, "shape"):
        raise TypeError("image_bgr must be a NumPy array (BGR).")
    if image_bgr.ndim != 3 or image_bgr.shape[2] != 3:
        raise ValueError(f"Expected image shape (H, W, 3), got {getattr(image_bgr, 'shape', None)}")

    if not class_names:
        logger.info("No class names loaded; drawing boxes without labels")

    for idx in keep:
        candidate = candidates[idx]
        try:
            label = draw_candidate(
                image_bgr,
                candidate,
                class_names,
                color=color,
                box_thickness=box_thickness,
                font_scale=font_scale,
                font_thickness=font_thickness,
            )
        except LabelLookupError as exc:
            if strict:
                raise
            logger.error("Candidate %d: %s; label skipped", idx, exc)
            continue
        if label is not None:
            logger.info("%s %s", class_names[candidate.class_id], candidate.confidence)

    return image_bgr
