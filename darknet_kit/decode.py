from __future__ import annotations

import logging
from typing import List, Optional, Sequence, Tuple

import numpy as np

from .errors import DecodeError
from .types import Candidate

logger = logging.getLogger(__name__)

# [cx, cy, w, h, objectness] precede the per-class scores in every row.
NUM_BOX_FIELDS = 5


def _as_rows(tensor: object) -> np.ndarray:
    """
    Return the tensor as a 2-D (rows, 5 + C) array, or raise DecodeError.

    Leading unit axes are dropped so a (1, N, 5 + C) blob-style output
    decodes the same as (N, 5 + C).
    """

    if tensor is None:
        raise DecodeError("output tensor is None")
    p = np.asarray(tensor)
    if p.dtype.kind not in "fiu":
        raise DecodeError(f"output tensor must be numeric, got dtype {p.dtype}")
    while p.ndim > 2 and p.shape[0] == 1:
        p = p[0]
    if p.ndim != 2:
        raise DecodeError(f"output tensor must be 2-D (rows, 5 + classes), got shape {p.shape}")
    if p.shape[1] <= NUM_BOX_FIELDS:
        raise DecodeError(f"output tensor has no class score columns (shape {p.shape})")
    return p


def decode_output(
    tensor: np.ndarray,
    image_size: Tuple[int, int],
    confidence_threshold: float,
    overlap_threshold: Optional[float] = None,
) -> List[Candidate]:
    """
    Decode one raw output tensor into candidates.

    Each row is [cx, cy, w, h, objectness, class scores...] with geometry
    normalized to the image. The best class score is the candidate's
    confidence; rows below `confidence_threshold` are dropped. Boxes are
    returned in pixel space, top-left form, truncated to integers.

    Args:
        tensor: (N, 5 + C) array from one output layer
        image_size: (width, height) of the original image
        confidence_threshold: minimum best class score to keep a row
        overlap_threshold: not used while decoding; accepted so the decoder
            and suppressor take the same threshold pair
    """

    p = _as_rows(tensor)
    if p.shape[0] == 0:
        return []

    img_w, img_h = image_size
    class_scores = p[:, NUM_BOX_FIELDS:]
    class_ids = np.argmax(class_scores, axis=1)
    confidences = class_scores[np.arange(class_scores.shape[0]), class_ids]

    keep = confidences >= confidence_threshold
    if not np.any(keep):
        return []

    rows = p[keep].astype(np.float64)
    if not np.all(np.isfinite(rows[:, :4])):
        raise DecodeError("output tensor has non-finite box geometry in a kept row")
    abs_w = np.trunc(rows[:, 2] * img_w)
    abs_h = np.trunc(rows[:, 3] * img_h)
    abs_x = np.trunc(rows[:, 0] * img_w - abs_w / 2)
    abs_y = np.trunc(rows[:, 1] * img_h - abs_h / 2)

    return [
        Candidate(
            class_id=int(cls_id),
            confidence=float(conf),
            x=int(x),
            y=int(y),
            width=int(w),
            height=int(h),
        )
        for cls_id, conf, x, y, w, h in zip(class_ids[keep], confidences[keep], abs_x, abs_y, abs_w, abs_h)
    ]


def decode_outputs(
    tensors: Sequence[np.ndarray],
    image_size: Tuple[int, int],
    confidence_threshold: float,
    overlap_threshold: Optional[float] = None,
) -> List[Candidate]:
    """
    Pool candidates from every output tensor, in tensor order then row order.

    A tensor that cannot be decoded is logged and skipped; candidates from
    the other tensors are kept.
    """

    pool: List[Candidate] = []
    for idx, tensor in enumerate(tensors):
        try:
            pool.extend(decode_output(tensor, image_size, confidence_threshold, overlap_threshold))
        except DecodeError as exc:
            logger.error("Skipping output tensor %d: %s", idx, exc)
    return pool
