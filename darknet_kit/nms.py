from __future__ import annotations

from typing import List, Optional, Sequence

import numpy as np

from .types import Candidate

NMS_METHODS = ("numpy", "opencv")


def nms(
    boxes: np.ndarray,
    scores: np.ndarray,
    score_threshold: float,
    iou_threshold: float,
    max_detections: Optional[int] = None,
) -> np.ndarray:
    """
    Greedy NumPy NMS. Expects boxes shape (N,4) in xywh and scores shape (N,).
    Returns indices of boxes to keep, highest score first.

    Boxes scoring below `score_threshold` are dropped before suppression.
    The comparison is done in float32, the precision the network scores and
    the decoder threshold check use.
    Equal scores keep their original order. Classes are not considered.
    """

    boxes = np.asarray(boxes, dtype=np.float64).reshape(-1, 4)
    scores = np.asarray(scores, dtype=np.float64).reshape(-1)
    if boxes.shape[0] != scores.shape[0]:
        raise ValueError(f"boxes and scores length mismatch: {boxes.shape[0]} != {scores.shape[0]}")
    if boxes.size == 0:
        return np.empty((0,), dtype=np.int32)

    x1 = boxes[:, 0]
    y1 = boxes[:, 1]
    x2 = x1 + boxes[:, 2]
    y2 = y1 + boxes[:, 3]
    areas = boxes[:, 2] * boxes[:, 3]

    passing = scores.astype(np.float32) >= np.float32(score_threshold)
    candidates = np.where(passing)[0]
    order = candidates[np.argsort(-scores[candidates], kind="stable")]
    keep = []

    while order.size > 0:
        if max_detections is not None and len(keep) >= max_detections:
            break
        i = order[0]
        keep.append(i)

        xx1 = np.maximum(x1[i], x1[order[1:]])
        yy1 = np.maximum(y1[i], y1[order[1:]])
        xx2 = np.minimum(x2[i], x2[order[1:]])
        yy2 = np.minimum(y2[i], y2[order[1:]])

        w = np.maximum(0.0, xx2 - xx1)
        h = np.maximum(0.0, yy2 - yy1)
        inter = w * h
        union = areas[i] + areas[order[1:]] - inter
        iou = inter / np.maximum(union, 1e-6)

        inds = np.where(iou <= iou_threshold)[0]
        order = order[inds + 1]

    return np.array(keep, dtype=np.int32)


def _nms_opencv(boxes: List[List[int]], scores: List[float], score_threshold: float, iou_threshold: float) -> List[int]:
    import cv2

    # NMSBoxes keeps score > threshold; step one float32 ulp down so a score
    # equal to the threshold survives, as with the NumPy path.
    inclusive = float(np.nextafter(np.float32(score_threshold), np.float32(-np.inf)))
    indices = cv2.dnn.NMSBoxes(boxes, scores, inclusive, iou_threshold)
    # Older OpenCV builds return an (N, 1) array, newer ones a flat one.
    return [int(i) for i in np.asarray(indices, dtype=np.int64).reshape(-1)]


def suppress(
    candidates: Sequence[Candidate],
    confidence_threshold: float,
    overlap_threshold: float,
    method: str = "numpy",
) -> List[int]:
    """
    Class-agnostic suppression over the pooled candidates of one image.

    Two overlapping boxes of different classes still suppress each other.
    Returns indices into `candidates` in suppression order.
    """

    if method not in NMS_METHODS:
        raise ValueError(f"Unsupported NMS method: {method!r} (expected one of {NMS_METHODS})")
    if not candidates:
        return []

    if method == "opencv":
        boxes = [list(c.as_xywh()) for c in candidates]
        scores = [float(c.confidence) for c in candidates]
        return _nms_opencv(boxes, scores, confidence_threshold, overlap_threshold)

    boxes = np.array([c.as_xywh() for c in candidates], dtype=np.float64)
    scores = np.array([c.confidence for c in candidates], dtype=np.float64)
    return nms(boxes, scores, confidence_threshold, overlap_threshold).tolist()
