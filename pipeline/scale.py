"""
Target resolution selection from a map's placed images.

All functions take an iterable of Warpables and only look at images whose
width and cm_per_pixel are known (i.e. placed uploads).
"""
from __future__ import annotations

from typing import Iterable, List

import numpy as np

from common.errors import DataError
from common.logging_setup import get_logger
from common.types import Warpable


log = get_logger("pipeline.scale")


def _qualifying(warpables: Iterable[Warpable]) -> List[float]:
    return [
        float(w.cm_per_pixel)
        for w in warpables
        if w.width is not None and w.cm_per_pixel is not None
    ]


def images_histogram(warpables: Iterable[Warpable]) -> np.ndarray:
    """
    Count of images per integer cm/px bucket, zero-filled from 0 to the largest
    observed bucket. Empty input → empty array.
    """
    res = [int(c) for c in _qualifying(warpables)]
    return np.bincount(np.asarray(res, dtype=np.int64), minlength=0)


def grouped_images_histogram(warpables: Iterable[Warpable], binsize: float) -> np.ndarray:
    """Same as images_histogram but bucketed by cm_per_pixel / (0.001 + binsize)."""
    res = [int(c / (0.001 + binsize)) for c in _qualifying(warpables)]
    return np.bincount(np.asarray(res, dtype=np.int64), minlength=0)


def smoothed_scores(hist: np.ndarray) -> np.ndarray:
    """
    7-wide running sum around each bucket.

    NOTE: the clamps are lopsided. Bucket i only picks up
    i-3/i-2/i-1 when i > 3/2/1, and i+1/i+2/i+3 when i < n-2/n-3/n-4, so the
    window drops one neighbour on each side earlier than a symmetric clip would
    (e.g. bucket 1 never sees bucket 0, bucket n-2 never sees bucket n-1).
    """
    hist = np.asarray(hist)
    n = len(hist)
    scores = np.zeros(n, dtype=np.int64)
    for i in range(n):
        s = int(hist[i])
        if i > 3:
            s += int(hist[i - 3])
        if i > 2:
            s += int(hist[i - 2])
        if i > 1:
            s += int(hist[i - 1])
        if i < n - 2:
            s += int(hist[i + 1])
        if i < n - 3:
            s += int(hist[i + 2])
        if i < n - 4:
            s += int(hist[i + 3])
        scores[i] = s
    return scores


def best_cm_per_pixel(hist: np.ndarray) -> int:
    """
    Bucket index with the highest smoothed score; the first one wins ties.
    """
    if len(hist) == 0:
        raise DataError("no placed images with a known scale")
    scores = smoothed_scores(hist)
    highest = 0
    for i, s in enumerate(scores):
        if s > scores[highest]:
            highest = i
    return highest


def average_cm_per_pixel(warpables: Iterable[Warpable]) -> float:
    scales = _qualifying(warpables)
    if not scales:
        raise DataError("no placed images with a known width")
    average = sum(scales) / len(scales)
    log.info("average scale", extra={"extra": {"cm_per_px": average, "images": len(scales)}})
    return average


def average_px_per_meter(warpables: Iterable[Warpable]) -> float:
    """Mean of 100 / cm_per_pixel over qualifying images."""
    pxperm = [100.0 / c for c in _qualifying(warpables) if c > 0]
    if not pxperm:
        raise DataError("no placed images with a known width")
    return sum(pxperm) / len(pxperm)


def choose_scale(warpables: Iterable[Warpable]) -> float:
    """
    Target cm/px for an export: the histogram peak, or the mean when every
    image sits in bucket 0 (sub-centimetre imagery).
    """
    ws = list(warpables)
    best = best_cm_per_pixel(images_histogram(ws))
    if best > 0:
        return float(best)
    return average_cm_per_pixel(ws)
